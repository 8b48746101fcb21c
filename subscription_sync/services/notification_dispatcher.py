"""Notification publishing to Google Cloud Pub/Sub.

Responsibilities:
- Format NotificationMessage payloads
- Publish to the notifications topic
- Never let a publish failure propagate into the transition that triggered it
"""

from threading import RLock
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import pubsub_v1

from subscription_sync.logging_config import get_logger
from subscription_sync.models.notifications import NotificationKind, NotificationMessage
from subscription_sync.models.profile import SubscriptionProfile
from subscription_sync.models.settings import NotificationsConfig
from subscription_sync.services.escalation_policy import notification_key
from subscription_sync.services.time_controller import TimeController

logger = get_logger(__name__)

PUBLISH_TIMEOUT_SECONDS = 5.0


class NotificationDispatcher:
    """Publishes user notifications to Pub/Sub.

    Delivery (email, realtime push) happens in external workers that
    subscribe to the topic.

    Args:
        config: Notification settings
        clock: Service clock, used for event_time_millis
        publisher: Optional pre-built PublisherClient
    """

    def __init__(
        self,
        config: NotificationsConfig,
        clock: TimeController,
        publisher: Optional[pubsub_v1.PublisherClient] = None,
    ):
        self._lock = RLock()
        self._config = config
        self._clock = clock
        self._publisher: Optional[pubsub_v1.PublisherClient] = None
        self._topic_path: Optional[str] = None
        self._enabled = config.enabled

        if not self._enabled:
            logger.info(
                "notification_dispatcher_disabled",
                message="Notifications are disabled in config",
            )
            return

        try:
            self._publisher = publisher or pubsub_v1.PublisherClient()
            self._topic_path = self._publisher.topic_path(config.project_id, config.topic)
            logger.info(
                "notification_dispatcher_initialized",
                project_id=config.project_id,
                topic=config.topic,
                topic_path=self._topic_path,
            )
        except Exception as e:
            logger.error(
                "notification_dispatcher_init_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self._enabled = False

    def is_enabled(self) -> bool:
        """Check if the dispatcher is enabled and the publisher is ready."""
        return self._enabled and self._publisher is not None

    def build_message(
        self, kind: NotificationKind, profile: SubscriptionProfile
    ) -> NotificationMessage:
        """Build the message for a notification about a profile's current state."""
        return NotificationMessage(
            kind=kind,
            user_id=profile.user_id,
            dedup_key=notification_key(
                kind, profile.external_subscription_id, profile.payment_retry_count
            ),
            external_subscription_id=profile.external_subscription_id,
            payment_retry_count=profile.payment_retry_count,
            grace_period_ends_millis=profile.grace_period_ends_millis,
            event_time_millis=self._clock.now_millis(),
        )

    def dispatch(self, kind: NotificationKind, profile: SubscriptionProfile) -> bool:
        """Publish a notification.

        Errors are logged and swallowed.

        Args:
            kind: Notification kind
            profile: Profile after the transition that triggered the notification

        Returns:
            True if published successfully, False otherwise
        """
        if not self.is_enabled():
            logger.debug(
                "notification_skipped",
                kind=kind.value,
                user_id=profile.user_id,
                message="Dispatcher disabled",
            )
            return False

        with self._lock:
            try:
                message = self.build_message(kind, profile)
                self._publish(message)

                logger.info(
                    "notification_published",
                    kind=kind.value,
                    user_id=profile.user_id,
                    dedup_key=message.dedup_key,
                )
                return True

            except GoogleAPIError as e:
                logger.error(
                    "pubsub_publish_failed",
                    kind=kind.value,
                    user_id=profile.user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return False
            except Exception as e:
                logger.error(
                    "notification_publish_failed",
                    kind=kind.value,
                    user_id=profile.user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return False

    def _publish(self, message: NotificationMessage) -> None:
        """Publish one message and wait for the server ack.

        Raises:
            GoogleAPIError: If publication fails
        """
        if not self._publisher or not self._topic_path:
            raise RuntimeError("Publisher is not initialized")

        future = self._publisher.publish(
            self._topic_path,
            message.model_dump_json().encode("utf-8"),
            kind=message.kind.value,
            dedup_key=message.dedup_key,
        )
        message_id = future.result(timeout=PUBLISH_TIMEOUT_SECONDS)
        logger.debug("pubsub_message_published", message_id=message_id)

    def shutdown(self) -> None:
        """Drop the publisher client."""
        with self._lock:
            if self._publisher:
                logger.info("notification_dispatcher_shutting_down")
                self._publisher = None
                self._topic_path = None
                logger.info("notification_dispatcher_shutdown_complete")
