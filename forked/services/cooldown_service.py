"""Per reporter, hall and action cooldown windows."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol, Union

from forked.domain.identity import Identity
from forked.domain.models import CooldownCheck
from forked.utils.logger import get_logger


logger = get_logger(__name__)

Action = Union[str, Enum]


class TimestampStore(Protocol):
    def get_timestamp(self, key: str) -> Optional[float]:
        ...

    def set_timestamp(self, key: str, value: float) -> None:
        ...


def remaining_cooldown(last: Optional[float], now: float, window_seconds: float) -> float:
    """Seconds left before another submission is accepted; 0 when open."""
    if last is None:
        return 0.0
    elapsed = now - last
    if elapsed < window_seconds:
        return window_seconds - elapsed
    return 0.0


def _action_value(action: Action) -> str:
    return action.value if isinstance(action, Enum) else str(action)


class CooldownGate:
    """Rate limiter backed by last-accepted timestamps in a key-value store.

    Callers decide when ``record`` happens. The wait-time path records at
    vote-queue time; the seating path records only after the value is applied.
    """

    KEY_PREFIX = "cooldown"

    def __init__(self, store: TimestampStore, window_seconds: float) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._store = store
        self._window_seconds = window_seconds

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def storage_key(self, identity: Identity, hall_id: str, action: Action) -> Optional[str]:
        marker_id = identity.marker_id(hall_id, _action_value(action))
        if marker_id is None:
            return None
        return f"{self.KEY_PREFIX}.{marker_id}"

    def check(
        self,
        identity: Identity,
        hall_id: str,
        action: Action,
        now: float,
    ) -> CooldownCheck:
        key = self.storage_key(identity, hall_id, action)
        if key is None:
            return CooldownCheck(allowed=True)
        remaining = remaining_cooldown(
            self._store.get_timestamp(key),
            now,
            self._window_seconds,
        )
        if remaining > 0:
            logger.info("Cooldown active | key=%s | remaining_seconds=%.1f", key, remaining)
            return CooldownCheck(allowed=False, remaining_seconds=remaining)
        return CooldownCheck(allowed=True)

    def record(self, identity: Identity, hall_id: str, action: Action, now: float) -> None:
        key = self.storage_key(identity, hall_id, action)
        if key is None:
            return
        self._store.set_timestamp(key, now)
