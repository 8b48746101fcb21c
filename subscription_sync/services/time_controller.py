"""Service clock.

Every service reads "now" from a TimeController so time can be frozen or
moved forward in tests and local runs without touching the system clock.
"""

import threading
import time
from typing import Optional

from subscription_sync.logging_config import get_logger
from subscription_sync.utils.billing_period import (
    MILLIS_PER_DAY,
    MILLIS_PER_HOUR,
    MILLIS_PER_MINUTE,
)

logger = get_logger(__name__)


class TimeController:
    """Clock returning wall-clock time plus an adjustable offset.

    Args:
        frozen_at_millis: If given, the clock starts frozen at this instant
    """

    def __init__(self, frozen_at_millis: Optional[int] = None) -> None:
        self._lock = threading.RLock()
        self._offset_millis = 0
        self._frozen_at_millis = frozen_at_millis

    @staticmethod
    def _wall_clock_millis() -> int:
        return int(time.time() * 1000)

    def now_millis(self) -> int:
        """Get the current time in milliseconds.

        Returns:
            Current time as Unix timestamp in milliseconds.
        """
        with self._lock:
            if self._frozen_at_millis is not None:
                return self._frozen_at_millis + self._offset_millis
            return self._wall_clock_millis() + self._offset_millis

    @property
    def is_frozen(self) -> bool:
        return self._frozen_at_millis is not None

    def freeze(self, at_millis: Optional[int] = None) -> int:
        """Stop the clock at a given instant (defaults to the current time)."""
        with self._lock:
            frozen_at = at_millis if at_millis is not None else self.now_millis()
            self._frozen_at_millis = frozen_at
            self._offset_millis = 0
            logger.info("time_frozen", frozen_at_millis=frozen_at)
            return frozen_at

    def advance_time(self, days: int = 0, hours: int = 0, minutes: int = 0) -> dict:
        """Move the clock forward.

        Args:
            days: number of days to advance
            hours: number of hours to advance
            minutes: number of minutes to advance

        Returns:
            Dictionary with old_time_millis, new_time_millis and
            time_advanced_millis

        Raises:
            ValueError: if any value is negative
        """
        if days < 0 or hours < 0 or minutes < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed")

        millis_to_advance = (
            days * MILLIS_PER_DAY + hours * MILLIS_PER_HOUR + minutes * MILLIS_PER_MINUTE
        )

        with self._lock:
            old_time = self.now_millis()
            self._offset_millis += millis_to_advance
            new_time = self.now_millis()

        if millis_to_advance:
            logger.info(
                "time_advanced",
                old_time_millis=old_time,
                new_time_millis=new_time,
                days=days,
                hours=hours,
                minutes=minutes,
            )

        return {
            "old_time_millis": old_time,
            "new_time_millis": new_time,
            "time_advanced_millis": millis_to_advance,
        }

    def set_time(self, timestamp_millis: int) -> dict:
        """Set the clock to a specific instant.

        Raises:
            ValueError: If the timestamp is before the current time
        """
        with self._lock:
            old_time = self.now_millis()
            if timestamp_millis < old_time:
                raise ValueError(
                    f"Cannot set time backwards, current: {old_time}, requested: {timestamp_millis}"
                )
            self._offset_millis += timestamp_millis - old_time

        logger.info("time_set", old_time_millis=old_time, new_time_millis=timestamp_millis)
        return {"old_time_millis": old_time, "new_time_millis": timestamp_millis}

    def reset_time(self) -> dict:
        """Return to unfrozen wall-clock time."""
        with self._lock:
            old_time = self.now_millis()
            self._offset_millis = 0
            self._frozen_at_millis = None
            new_time = self.now_millis()

        logger.info("time_reset", old_time_millis=old_time, new_time_millis=new_time)
        return {"old_time_millis": old_time, "new_time_millis": new_time}
