# Overview: Failed-attempt counting for OTP verification.

"""
Attempt Throttling

WHY: A 6-digit OTP has only a million values. Without a per-invite limit
on failed attempts the code can be brute-forced inside its validity window.

The counting backend is injectable (THROTTLE_BACKEND):
- "memory": per-application dict, fine for a single process
- "database": counts OTP_FAILED rows in security_events, shared by every
  worker behind a load balancer

Stores live on the Flask app (app.extensions), never at module level, so
test apps and workers do not share state.
"""

import logging
import threading
from collections import defaultdict
from datetime import timedelta

from flask import current_app

from ..errors import RateLimitedError
from ..extensions import db
from ..models import SecurityEvent
from ..models.constants import SecurityEventType
from ledgerlink.time_utils import utcnow


logger = logging.getLogger(__name__)

EXTENSION_KEY = "ledgerlink.attempt_store"


class AttemptStore:
    """Interface for failed-attempt counters keyed by an opaque string."""

    def count(self, key: str, window: timedelta) -> int:
        raise NotImplementedError

    def hit(self, key: str, window: timedelta) -> int:
        """Record one failure and return the count inside the window."""
        raise NotImplementedError


class MemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._attempts: dict[str, list] = defaultdict(list)
        self._lock = threading.Lock()

    def _prune(self, key: str, window: timedelta) -> list:
        cutoff = utcnow() - window
        recent = [ts for ts in self._attempts.get(key, []) if ts >= cutoff]
        if recent:
            self._attempts[key] = recent
        else:
            self._attempts.pop(key, None)
        return recent

    def _sweep(self, window: timedelta) -> None:
        # Drops every key whose attempts have all aged out
        for stale in list(self._attempts):
            self._prune(stale, window)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._attempts)

    def count(self, key: str, window: timedelta) -> int:
        with self._lock:
            return len(self._prune(key, window))

    def hit(self, key: str, window: timedelta) -> int:
        with self._lock:
            self._sweep(window)
            recent = self._prune(key, window)
            recent.append(utcnow())
            self._attempts[key] = recent
            return len(recent)


class DatabaseAttemptStore(AttemptStore):
    """
    Counts OTP_FAILED security events for the key.

    Failed attempts are never cleared; they simply age out of the window.
    """

    def count(self, key: str, window: timedelta) -> int:
        cutoff = utcnow() - window
        return db.session.query(SecurityEvent).filter(
            SecurityEvent.event_type == SecurityEventType.OTP_FAILED,
            SecurityEvent.subject_id == key,
            SecurityEvent.occurred_at >= cutoff,
        ).count()

    def hit(self, key: str, window: timedelta) -> int:
        event = SecurityEvent(
            user_id=None,
            event_type=SecurityEventType.OTP_FAILED,
            subject_id=key,
            occurred_at=utcnow(),
        )
        db.session.add(event)
        db.session.commit()
        return self.count(key, window)


def build_attempt_store(backend: str) -> AttemptStore:
    if backend == "memory":
        return MemoryAttemptStore()
    if backend == "database":
        return DatabaseAttemptStore()
    raise ValueError(f"Unknown THROTTLE_BACKEND: {backend!r}")


def get_attempt_store() -> AttemptStore:
    store = current_app.extensions.get(EXTENSION_KEY)
    if store is None:
        store = build_attempt_store(current_app.config.get("THROTTLE_BACKEND", "memory"))
        current_app.extensions[EXTENSION_KEY] = store
    return store


def _window() -> timedelta:
    return timedelta(minutes=current_app.config.get("OTP_ATTEMPT_WINDOW_MINUTES", 15))


def _max_attempts() -> int:
    return current_app.config.get("OTP_MAX_ATTEMPTS", 5)


def ensure_not_limited(key: str) -> None:
    """Raise RateLimitedError once the key has used up its attempts."""
    if get_attempt_store().count(key, _window()) >= _max_attempts():
        logger.warning("Attempt limit reached for %s", key)
        raise RateLimitedError()


def register_failure(key: str) -> int:
    """Record a failed attempt; returns attempts used in the current window."""
    return get_attempt_store().hit(key, _window())


def remaining_attempts(key: str) -> int:
    return max(0, _max_attempts() - get_attempt_store().count(key, _window()))
