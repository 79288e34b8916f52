"""
Reward Policy - how many points a report earns.

Amounts are design constants, never user input.
"""

from civic_rewards.config import settings
from civic_rewards.models.api import Urgency

RESOLUTION_REWARDS: dict[str, int] = {
    Urgency.LOW.value: 50,
    Urgency.MEDIUM.value: 100,
    Urgency.HIGH.value: 150,
    Urgency.CRITICAL.value: 200,
}
DEFAULT_RESOLUTION_REWARD = 100


def resolution_reward(urgency: Urgency | str | None) -> int:
    """Points for a resolved report, scaled by its urgency at resolution time."""
    key = urgency.value if isinstance(urgency, Urgency) else urgency
    return RESOLUTION_REWARDS.get(key or "", DEFAULT_RESOLUTION_REWARD)


def submission_reward() -> int:
    """Fixed points for submitting a report."""
    return settings.submission_reward_points
