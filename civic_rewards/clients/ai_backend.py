"""
AI Backend Client - Image classification and urgency detection.

Both calls are fail-soft: a missing key, transport error, timeout, non-2xx
response or malformed payload resolves to the documented fallback result.
Nothing raised here ever reaches the caller.
"""

import base64
import logging

import httpx
from pydantic import BaseModel, ValidationError
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from civic_rewards.config import settings
from civic_rewards.exceptions import UpstreamUnavailableError
from civic_rewards.models.api import ReportCategory, Urgency
from civic_rewards.models.domain import (
    FALLBACK_CLASSIFICATION,
    FALLBACK_URGENCY,
    ClassificationResult,
    UrgencyResult,
)
from civic_rewards.observability.metrics import metrics

logger = get_logger(__name__)
_tenacity_logger = logging.getLogger(f"{__name__}.retry")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
OPENROUTER_BASE_URL = "https://openrouter.ai"

# Descriptions shorter than this carry too little signal for urgency detection
MIN_DESCRIPTION_LENGTH = 10

DEFAULT_CONFIDENCE = 0.7

CLASSIFY_PROMPT = (
    "Analyze this image of an urban infrastructure issue. Classify it into one of these "
    f"categories: {', '.join(c.value for c in ReportCategory)}. Respond with only a JSON "
    "object with these fields: classification (string), confidence (number between 0 and 1)."
)

URGENCY_PROMPT = (
    'Analyze the urgency of this urban infrastructure issue report. Description: "{description}". '
    'Classify the urgency as "low", "medium", "high", or "critical". Respond with only a JSON '
    "object with these fields: urgency (string), confidence (number between 0 and 1)."
)


class ClassificationPayload(BaseModel):
    """Model answer for image classification."""

    classification: str = ReportCategory.OTHER.value
    confidence: float = DEFAULT_CONFIDENCE


class UrgencyPayload(BaseModel):
    """Model answer for urgency detection."""

    urgency: str = Urgency.MEDIUM.value
    confidence: float = DEFAULT_CONFIDENCE


def extract_json_object(text: str) -> str:
    """Cut the outermost JSON object out of a model reply that may wrap it in prose."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object in model reply")
    return text[start : end + 1]


def _clamp_confidence(value: float) -> float:
    return min(max(value, 0.0), 1.0)


class AIBackendClient:
    """
    Client for the configured AI provider (gemini or openrouter).

    Each call gets a bounded timeout and `ai_max_retries` attempts with a
    fixed backoff between them.
    """

    def __init__(
        self,
        provider: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.provider = provider or settings.ai_provider
        self.api_key = settings.ai_api_key if api_key is None else api_key
        self.model = model or settings.ai_model
        self.base_url = (
            base_url
            or settings.ai_base_url
            or (GEMINI_BASE_URL if self.provider == "gemini" else OPENROUTER_BASE_URL)
        ).rstrip("/")
        self.max_retries = settings.ai_max_retries if max_retries is None else max_retries
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        self.retry_backoff_seconds = (
            settings.ai_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.ai_timeout_seconds)
        return self._http_client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def classify(self, image_url: str) -> ClassificationResult:
        """Classify the issue shown in an image. Never raises."""
        if not self.api_key:
            return self._fallback_classification("missing_api_key")

        try:
            reply = await self._generate_with_retry(CLASSIFY_PROMPT, image_url)
        except UpstreamUnavailableError as exc:
            logger.error("ai_classification_failed", error=str(exc), attempts=self.max_retries)
            return self._fallback_classification("upstream_unavailable")

        try:
            payload = ClassificationPayload.model_validate_json(extract_json_object(reply))
        except (ValueError, ValidationError) as exc:
            logger.warning("ai_classification_malformed", error=str(exc))
            return self._fallback_classification("malformed_response")

        classification = payload.classification
        if classification not in {c.value for c in ReportCategory}:
            classification = ReportCategory.OTHER.value

        return ClassificationResult(
            classification=classification,
            confidence=_clamp_confidence(payload.confidence),
        )

    async def detect_urgency(self, description: str, image_url: str | None = None) -> UrgencyResult:
        """Estimate how urgent a reported issue is. Never raises."""
        if not self.api_key:
            return self._fallback_urgency("missing_api_key")

        if not description or len(description.strip()) < MIN_DESCRIPTION_LENGTH:
            return self._fallback_urgency("description_too_short")

        prompt = URGENCY_PROMPT.format(description=description)
        try:
            reply = await self._generate_with_retry(prompt, image_url, image_optional=True)
        except UpstreamUnavailableError as exc:
            logger.error("ai_urgency_detection_failed", error=str(exc), attempts=self.max_retries)
            return self._fallback_urgency("upstream_unavailable")

        try:
            payload = UrgencyPayload.model_validate_json(extract_json_object(reply))
        except (ValueError, ValidationError) as exc:
            logger.warning("ai_urgency_malformed", error=str(exc))
            return self._fallback_urgency("malformed_response")

        if payload.urgency not in {u.value for u in Urgency}:
            logger.warning("ai_urgency_unrecognized", urgency=payload.urgency)
            return self._fallback_urgency("unrecognized_urgency")

        return UrgencyResult(
            urgency=payload.urgency,
            confidence=_clamp_confidence(payload.confidence),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _generate_with_retry(
        self, prompt: str, image_url: str | None, image_optional: bool = False
    ) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_backoff_seconds),
            retry=retry_if_exception_type(UpstreamUnavailableError),
            before_sleep=before_sleep_log(_tenacity_logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                reply = await self._generate(prompt, image_url, image_optional)
        return reply

    async def _generate(self, prompt: str, image_url: str | None, image_optional: bool) -> str:
        if self.provider == "gemini":
            return await self._generate_gemini(prompt, image_url, image_optional)
        if self.provider == "openrouter":
            return await self._generate_openrouter(prompt, image_url)
        raise UpstreamUnavailableError(f"Unsupported AI provider: {self.provider}")

    async def _generate_gemini(
        self, prompt: str, image_url: str | None, image_optional: bool
    ) -> str:
        parts: list[dict[str, object]] = [{"text": prompt}]
        if image_url:
            try:
                mime_type, data = await self._fetch_image(image_url)
                parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
            except UpstreamUnavailableError:
                if not image_optional:
                    raise
                logger.warning("ai_image_skipped", image_url=image_url)

        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": 0.2,
                "topK": 32,
                "topP": 0.95,
                "maxOutputTokens": 1024,
                "responseMimeType": "application/json",
            },
        }
        data = await self._post(
            f"{self.base_url}/v1beta/models/{self.model}:generateContent",
            body,
            {"x-goog-api-key": self.api_key},
        )
        try:
            return str(data["candidates"][0]["content"]["parts"][0]["text"])
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailableError("Unexpected Gemini response shape") from exc

    async def _generate_openrouter(self, prompt: str, image_url: str | None) -> str:
        content: list[dict[str, object]] = [{"type": "text", "text": prompt}]
        if image_url:
            content.append({"type": "image_url", "image_url": {"url": image_url}})

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }
        data = await self._post(
            f"{self.base_url}/api/v1/chat/completions",
            body,
            {
                "Authorization": f"Bearer {self.api_key}",
                "HTTP-Referer": settings.ai_http_referrer,
                "X-Title": settings.api_title,
            },
        )
        try:
            return str(data["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailableError("Unexpected OpenRouter response shape") from exc

    async def _post(self, url: str, body: dict[str, object], headers: dict[str, str]) -> dict:
        try:
            response = await self.http_client.post(url, json=body, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError("AI request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                f"AI backend returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"AI request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailableError("AI backend returned invalid JSON") from exc

    async def _fetch_image(self, image_url: str) -> tuple[str, str]:
        """Download an image and return (mime type, base64 payload)."""
        try:
            response = await self.http_client.get(image_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"Image fetch failed: {image_url}") from exc

        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        return mime_type, base64.b64encode(response.content).decode("ascii")

    def _fallback_classification(self, reason: str) -> ClassificationResult:
        metrics.record_ai_fallback("classify", reason)
        logger.warning("ai_classification_fallback", reason=reason, provider=self.provider)
        return FALLBACK_CLASSIFICATION

    def _fallback_urgency(self, reason: str) -> UrgencyResult:
        metrics.record_ai_fallback("detect_urgency", reason)
        logger.warning("ai_urgency_fallback", reason=reason, provider=self.provider)
        return FALLBACK_URGENCY
