"""Notification messages published for external delivery workers."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """User-facing notification kinds emitted by state transitions."""

    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RETRY_REMINDER = "payment_retry_reminder"
    GRACE_PERIOD_STARTED = "grace_period_started"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"


class NotificationMessage(BaseModel):
    """Message published to the notifications topic.

    ``dedup_key`` is deterministic for a given transition so delivery
    workers can drop replays.
    """

    kind: NotificationKind = Field(..., description="Notification kind")
    user_id: str = Field(..., description="Recipient user id")
    dedup_key: str = Field(..., description="Deterministic key for replay suppression")
    external_subscription_id: Optional[str] = Field(
        None, description="Processor subscription id"
    )
    payment_retry_count: int = Field(default=0, description="Retry count at dispatch time")
    grace_period_ends_millis: Optional[int] = Field(
        None, description="Grace period end (Unix millis), if any"
    )
    event_time_millis: int = Field(..., description="Dispatch time (Unix millis)")

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "grace_period_started",
                "user_id": "user-123",
                "dedup_key": "grace_period_started:I-BW452GLLEP1G:3",
                "external_subscription_id": "I-BW452GLLEP1G",
                "payment_retry_count": 3,
                "grace_period_ends_millis": 1700604800000,
                "event_time_millis": 1700000000000,
            }
        }
