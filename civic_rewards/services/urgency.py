"""
Urgency ordering and the escalation-only merge rule for AI results.
"""

from civic_rewards.config import settings
from civic_rewards.models.api import Urgency

URGENCY_RANKS: dict[str, int] = {
    Urgency.LOW.value: 1,
    Urgency.MEDIUM.value: 2,
    Urgency.HIGH.value: 3,
    Urgency.CRITICAL.value: 4,
}
DEFAULT_URGENCY_RANK = 2


def urgency_rank(urgency: Urgency | str | None) -> int:
    """Rank of an urgency value; unrecognized values rank as medium."""
    key = urgency.value if isinstance(urgency, Urgency) else urgency
    return URGENCY_RANKS.get(key or "", DEFAULT_URGENCY_RANK)


def should_escalate_urgency(
    ai_urgency: str,
    current_urgency: Urgency | str,
    confidence: float,
    threshold: float | None = None,
) -> bool:
    """
    Decide whether an AI urgency guess may replace the live urgency.

    Only a strictly higher, recognized urgency with confidence strictly above
    the threshold escalates. AI input never lowers urgency.
    """
    if ai_urgency not in URGENCY_RANKS:
        return False
    limit = settings.ai_urgency_confidence_threshold if threshold is None else threshold
    return confidence > limit and urgency_rank(ai_urgency) > urgency_rank(current_urgency)
