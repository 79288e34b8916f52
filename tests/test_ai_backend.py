"""
Tests for AIBackendClient.

Uses httpx.MockTransport in place of the provider. Every failure mode must
resolve to the fallback result instead of raising.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from civic_rewards.clients.ai_backend import AIBackendClient, extract_json_object
from civic_rewards.models.domain import FALLBACK_CLASSIFICATION, FALLBACK_URGENCY

IMAGE_URL = "https://img.example.com/pothole.png"
DESCRIPTION = "Water main burst, street flooded up to the curb"

Handler = Callable[[httpx.Request], httpx.Response]


def gemini_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def openrouter_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def image_response() -> httpx.Response:
    return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})


def make_client(handler: Handler, provider: str = "gemini", api_key: str = "test-key"):
    return AIBackendClient(
        provider=provider,
        api_key=api_key,
        model="test-model",
        base_url="http://ai.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        max_retries=2,
        retry_backoff_seconds=0,
    )


class RecordingHandler:
    """Serves images and answers model calls with the queued responses."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.model_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return image_response()
        self.model_requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestExtractJsonObject:
    """Tests for pulling JSON out of a model reply."""

    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_object_wrapped_in_prose(self):
        reply = 'Sure! Here it is:\n```json\n{"urgency": "high"}\n```'
        assert json.loads(extract_json_object(reply)) == {"urgency": "high"}

    def test_no_object(self):
        with pytest.raises(ValueError):
            extract_json_object("I cannot help with that")


class TestClassify:
    """Tests for image classification."""

    async def test_missing_api_key_uses_fallback(self):
        handler = RecordingHandler()

        result = await make_client(handler, api_key="").classify(IMAGE_URL)

        assert result == FALLBACK_CLASSIFICATION
        assert handler.model_requests == []

    async def test_gemini_success(self):
        handler = RecordingHandler(
            gemini_reply('{"classification": "road_damage", "confidence": 0.92}')
        )

        result = await make_client(handler).classify(IMAGE_URL)

        assert result.classification == "road_damage"
        assert result.confidence == pytest.approx(0.92)
        assert result.is_fallback is False

        [request] = handler.model_requests
        assert request.url.path == "/v1beta/models/test-model:generateContent"
        assert request.headers["x-goog-api-key"] == "test-key"
        body = json.loads(request.content)
        inline = body["contents"][0]["parts"][1]["inline_data"]
        assert inline["mime_type"] == "image/png"

    async def test_unknown_category_maps_to_other(self):
        handler = RecordingHandler(gemini_reply('{"classification": "ufo", "confidence": 0.8}'))

        result = await make_client(handler).classify(IMAGE_URL)

        assert result.classification == "other"
        assert result.is_fallback is False

    async def test_confidence_clamped(self):
        handler = RecordingHandler(
            gemini_reply('{"classification": "water_issue", "confidence": 1.7}')
        )

        result = await make_client(handler).classify(IMAGE_URL)

        assert result.confidence == 1.0

    async def test_server_error_retried_then_succeeds(self):
        handler = RecordingHandler(
            httpx.Response(503),
            gemini_reply('{"classification": "street_lighting", "confidence": 0.75}'),
        )

        result = await make_client(handler).classify(IMAGE_URL)

        assert result.classification == "street_lighting"
        assert len(handler.model_requests) == 2

    async def test_persistent_server_error_uses_fallback(self):
        handler = RecordingHandler(httpx.Response(500), httpx.Response(500))

        result = await make_client(handler).classify(IMAGE_URL)

        assert result == FALLBACK_CLASSIFICATION
        assert len(handler.model_requests) == 2

    async def test_single_attempt_is_honoured(self):
        handler = RecordingHandler(httpx.Response(500), httpx.Response(500))
        client = AIBackendClient(
            provider="gemini",
            api_key="test-key",
            model="test-model",
            base_url="http://ai.test",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            max_retries=1,
            retry_backoff_seconds=0,
        )

        result = await client.classify(IMAGE_URL)

        assert result == FALLBACK_CLASSIFICATION
        assert len(handler.model_requests) == 1

    def test_zero_retries_rejected(self):
        with pytest.raises(ValueError, match="at least 1"):
            AIBackendClient(api_key="test-key", max_retries=0)

    async def test_timeout_uses_fallback(self):
        handler = RecordingHandler(
            httpx.ReadTimeout("slow"), httpx.ReadTimeout("still slow")
        )

        result = await make_client(handler).classify(IMAGE_URL)

        assert result == FALLBACK_CLASSIFICATION

    async def test_malformed_reply_uses_fallback(self):
        handler = RecordingHandler(gemini_reply("road damage, quite sure"))

        result = await make_client(handler).classify(IMAGE_URL)

        assert result == FALLBACK_CLASSIFICATION
        assert len(handler.model_requests) == 1

    async def test_openrouter_request_shape(self):
        handler = RecordingHandler(
            openrouter_reply('{"classification": "sewage_problem", "confidence": 0.81}')
        )

        result = await make_client(handler, provider="openrouter").classify(IMAGE_URL)

        assert result.classification == "sewage_problem"
        [request] = handler.model_requests
        assert request.url.path == "/api/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["messages"][0]["content"][1]["image_url"]["url"] == IMAGE_URL


class TestDetectUrgency:
    """Tests for urgency detection."""

    async def test_success(self):
        handler = RecordingHandler(gemini_reply('{"urgency": "critical", "confidence": 0.88}'))

        result = await make_client(handler).detect_urgency(DESCRIPTION)

        assert result.urgency == "critical"
        assert result.confidence == pytest.approx(0.88)
        body = json.loads(handler.model_requests[0].content)
        assert DESCRIPTION in body["contents"][0]["parts"][0]["text"]

    async def test_short_description_uses_fallback(self):
        handler = RecordingHandler()

        result = await make_client(handler).detect_urgency("help")

        assert result == FALLBACK_URGENCY
        assert handler.model_requests == []

    async def test_unrecognized_urgency_uses_fallback(self):
        handler = RecordingHandler(gemini_reply('{"urgency": "apocalyptic", "confidence": 0.99}'))

        result = await make_client(handler).detect_urgency(DESCRIPTION)

        assert result == FALLBACK_URGENCY

    async def test_image_fetch_failure_is_skipped(self):
        """The image is optional context for urgency detection."""
        model_requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(404)
            model_requests.append(request)
            return gemini_reply('{"urgency": "high", "confidence": 0.8}')

        result = await make_client(handler).detect_urgency(DESCRIPTION, IMAGE_URL)

        assert result.urgency == "high"
        body = json.loads(model_requests[0].content)
        assert len(body["contents"][0]["parts"]) == 1

    async def test_missing_api_key_uses_fallback(self):
        result = await make_client(RecordingHandler(), api_key="").detect_urgency(DESCRIPTION)

        assert result == FALLBACK_URGENCY
