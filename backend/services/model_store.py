"""
User Model Store

Keyed store for the per-user mutable state of the engine: behavioral
profiles and trained classifiers. Each user gets a re-entrant lock so that
"read profile -> score -> update profile" and feedback updates for the same
user are serialized, while different users never contend.

In production, this would be backed by Redis/PostgreSQL.
"""

import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class UserModelStore:
    """In-memory per-user profile/classifier store with per-user locks."""

    def __init__(self):
        self._profiles: Dict[str, Any] = {}
        self._classifiers: Dict[str, Any] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def user_lock(self, user_id: str) -> threading.RLock:
        """Lock scoping all state changes for one user."""
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    # -------------------------------------------------------------------------
    # Behavioral profiles
    # -------------------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Any]:
        return self._profiles.get(user_id)

    def set_profile(self, user_id: str, profile: Any) -> None:
        self._profiles[user_id] = profile

    def remove_profile(self, user_id: str) -> None:
        self._profiles.pop(user_id, None)

    # -------------------------------------------------------------------------
    # Classifiers
    # -------------------------------------------------------------------------

    def get_classifier(self, user_id: str) -> Optional[Any]:
        return self._classifiers.get(user_id)

    def set_classifier(self, user_id: str, classifier: Any) -> None:
        self._classifiers[user_id] = classifier

    def has_classifier(self, user_id: str) -> bool:
        return user_id in self._classifiers

    def get_stats(self) -> dict:
        return {
            "profiles": len(self._profiles),
            "classifiers": len(self._classifiers),
        }

    def clear(self) -> None:
        """Clear all stored state."""
        with self._guard:
            self._profiles.clear()
            self._classifiers.clear()
            self._locks.clear()
        logger.info("UserModelStore cleared")
