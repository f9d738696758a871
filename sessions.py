"""Per-user session state: query cache and in-flight request guard.

A ``UserSession`` is established on a profile's first authenticated request
and dropped on sign-out. Orchestration code reads list queries through the
session's ``QueryCache`` and invalidates the affected keys after mutations.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, Set, Tuple

import structlog

from exceptions import RequestInFlight

logger = structlog.get_logger(__name__)

# Cache keys
APPLICATIONS = "applications"
SAVED_JOBS = "saved-jobs"
RESUME = "resume"
MY_JOBS = "my-jobs"
HR_APPLICATIONS = "hr-applications"


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any:
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> Any:
        self._entries[key] = value
        return value

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        if key in self._entries:
            return self._entries[key]
        return self.set(key, loader())

    def update(self, key: str, patch: Callable[[Any], Any]) -> bool:
        """Apply ``patch`` to a cached value in place. No-op when nothing is cached."""
        if key not in self._entries:
            return False
        self._entries[key] = patch(self._entries[key])
        return True

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class UserSession:
    def __init__(self, profile_id: int, user_type: str) -> None:
        self.profile_id = profile_id
        self.user_type = user_type
        self.started_at = datetime.now(timezone.utc)
        self.cache = QueryCache()
        self._in_flight: Set[Tuple[str, Hashable]] = set()

    def is_in_flight(self, action: str, entity_id: Hashable) -> bool:
        return (action, entity_id) in self._in_flight

    @contextmanager
    def in_flight(self, action: str, entity_id: Hashable) -> Iterator[None]:
        """Reject a second request for the same action on the same entity while one is running."""
        key = (action, entity_id)
        if key in self._in_flight:
            logger.info("Rejected duplicate in-flight request", action=action, entity_id=entity_id)
            raise RequestInFlight()
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[int, UserSession] = {}

    def establish(self, profile_id: int, user_type: str) -> UserSession:
        session = self._sessions.get(profile_id)
        if session is None:
            session = UserSession(profile_id, user_type)
            self._sessions[profile_id] = session
            logger.info("Session established", profile_id=profile_id, user_type=user_type)
        return session

    def get(self, profile_id: int) -> Optional[UserSession]:
        return self._sessions.get(profile_id)

    def end(self, profile_id: int) -> bool:
        session = self._sessions.pop(profile_id, None)
        if session is None:
            return False
        session.cache.clear()
        logger.info("Session ended", profile_id=profile_id)
        return True

    def invalidate(self, profile_id: Optional[int], *keys: str) -> None:
        """Invalidate cache keys in another user's session, if that user has one."""
        if profile_id is None:
            return
        session = self._sessions.get(profile_id)
        if session is not None:
            session.cache.invalidate(*keys)

    def patch(self, profile_id: Optional[int], key: str, patch: Callable[[Any], Any]) -> bool:
        if profile_id is None:
            return False
        session = self._sessions.get(profile_id)
        if session is None:
            return False
        return session.cache.update(key, patch)
