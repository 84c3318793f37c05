"""
Event Types.

The closed set of domain event kinds the worker knows how to dispatch,
and the delivery priorities a message can carry.
"""

from enum import StrEnum


class EventType(StrEnum):
    CAMPAIGN_PUBLISH_CONTENT = "CAMPAIGN_PUBLISH_CONTENT"
    CAMPAIGN_PUBLISH_DO_SM_TRANSACTION = "CAMPAIGN_PUBLISH_DO_SM_TRANSACTION"
    CAMPAIGN_PUBLISH_SECOND_CONTENT = "CAMPAIGN_PUBLISH_SECOND_CONTENT"
    CAMPAIGN_PUBLISH_ERROR = "CAMPAIGN_PUBLISH_ERROR"
    CAMPAIGN_DRAFT_SUCCESS = "CAMPAIGN_DRAFT_SUCCESS"
    CAMPAIGN_CLOSING_COLLECT_ENGAGEMENT_LIKE_AND_RETWEET = "CAMPAIGN_CLOSING_COLLECT_ENGAGEMENT_LIKE_AND_RETWEET"
    CAMPAIGN_CLOSING_RECALCULATE_REWARDS_RATES = "CAMPAIGN_CLOSING_RECALCULATE_REWARDS_RATES"
    CAMPAIGN_CLOSING_DISTRIBUTE_AUTO_REWARDS = "CAMPAIGN_CLOSING_DISTRIBUTE_AUTO_REWARDS"
    CAMPAIGNER_FUNGIBLE_BALANCE_UPDATE = "CAMPAIGNER_FUNGIBLE_BALANCE_UPDATE"
    CAMPAIGNER_HABR_BALANCE_UPDATE = "CAMPAIGNER_HABR_BALANCE_UPDATE"

    @classmethod
    def parse(cls, value: str) -> "EventType | None":
        """Return the member for `value`, or None for unknown strings."""
        try:
            return cls(value)
        except ValueError:
            return None


class Priority(StrEnum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
