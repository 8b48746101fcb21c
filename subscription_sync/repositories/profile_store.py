"""Profile store - in-memory storage for subscription profiles.

Profiles are keyed by user_id with a secondary index on the processor's
external subscription id, which is how webhooks find their target.
"""

import threading
from typing import Callable, Dict, List, Optional

from subscription_sync.exceptions import ProfileNotFoundError
from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus

ProfileMutation = Callable[[SubscriptionProfile], Optional[SubscriptionProfile]]


class ProfileStore:
    """In-memory storage for subscription profiles.

    Thread-safe. Records handed out are copies; the only way to change a
    stored profile is ``add``, ``upsert`` or the conditional ``update_with``.
    """

    def __init__(self):
        """Initialize profile store with empty storage."""
        self._profiles: Dict[str, SubscriptionProfile] = {}
        self._by_external_id: Dict[str, str] = {}
        self._lock = threading.RLock()

    def _index(self, old: Optional[SubscriptionProfile], new: SubscriptionProfile) -> None:
        if old is not None and old.external_subscription_id:
            if self._by_external_id.get(old.external_subscription_id) == old.user_id:
                del self._by_external_id[old.external_subscription_id]
        if new.external_subscription_id:
            self._by_external_id[new.external_subscription_id] = new.user_id

    def add(self, profile: SubscriptionProfile) -> None:
        """Add a profile to the store.

        Args:
            profile: SubscriptionProfile to store

        Raises:
            ValueError: If a profile for the user already exists
        """
        with self._lock:
            if profile.user_id in self._profiles:
                raise ValueError(f"Profile for user '{profile.user_id}' already exists")
            stored = profile.model_copy(deep=True)
            self._profiles[profile.user_id] = stored
            self._index(None, stored)

    def upsert(self, profile: SubscriptionProfile) -> None:
        """Add or replace a profile."""
        with self._lock:
            stored = profile.model_copy(deep=True)
            self._index(self._profiles.get(profile.user_id), stored)
            self._profiles[profile.user_id] = stored

    def get_or_create(self, user_id: str) -> SubscriptionProfile:
        """Return the user's profile, creating an Expired one if missing.

        Args:
            user_id: User identifier

        Returns:
            Copy of the stored SubscriptionProfile
        """
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                profile = SubscriptionProfile(
                    user_id=user_id,
                    subscription_status=SubscriptionStatus.EXPIRED,
                )
                self._profiles[user_id] = profile
            return profile.model_copy(deep=True)

    def get(self, user_id: str) -> SubscriptionProfile:
        """Get profile by user id.

        Raises:
            ProfileNotFoundError: If no profile exists for the user
        """
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise ProfileNotFoundError(f"Profile not found for user: {user_id}")
            return profile.model_copy(deep=True)

    def find(self, user_id: str) -> Optional[SubscriptionProfile]:
        """Find profile by user id (returns None if not found)."""
        with self._lock:
            profile = self._profiles.get(user_id)
            return profile.model_copy(deep=True) if profile else None

    def find_by_external_subscription_id(
        self, external_subscription_id: str
    ) -> Optional[SubscriptionProfile]:
        """Find the profile linked to a processor subscription id.

        Args:
            external_subscription_id: Processor subscription id

        Returns:
            SubscriptionProfile if linked, None otherwise
        """
        with self._lock:
            user_id = self._by_external_id.get(external_subscription_id)
            if user_id is None:
                return None
            return self.find(user_id)

    def update_with(self, user_id: str, mutate: ProfileMutation) -> Optional[SubscriptionProfile]:
        """Atomically apply a conditional mutation to one profile.

        ``mutate`` receives a private copy of the stored profile while the
        store lock is held. Returning a profile commits it; returning None
        leaves the store untouched.

        Args:
            user_id: User identifier
            mutate: Callable applied to a copy of the current profile

        Returns:
            Copy of the committed profile, or None if nothing was committed

        Raises:
            ProfileNotFoundError: If no profile exists for the user
        """
        with self._lock:
            current = self._profiles.get(user_id)
            if current is None:
                raise ProfileNotFoundError(f"Profile not found for user: {user_id}")

            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return None
            if updated.user_id != user_id:
                raise ValueError("Profile mutation must not change user_id")

            self._index(current, updated)
            self._profiles[user_id] = updated
            return updated.model_copy(deep=True)

    def exists(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._profiles

    def get_all(self) -> List[SubscriptionProfile]:
        """Get copies of all profiles."""
        with self._lock:
            return [p.model_copy(deep=True) for p in self._profiles.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._profiles)

    def count_by_status(self, status: SubscriptionStatus) -> int:
        with self._lock:
            return sum(1 for p in self._profiles.values() if p.subscription_status == status)

    def clear(self) -> None:
        """Clear all profiles from the store."""
        with self._lock:
            self._profiles.clear()
            self._by_external_id.clear()

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, user_id: str) -> bool:
        return self.exists(user_id)

    def __repr__(self) -> str:
        return f"ProfileStore(profiles={self.count()})"
