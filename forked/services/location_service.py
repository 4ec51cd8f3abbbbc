"""Device location access consumed by the submission flow."""

from __future__ import annotations

from enum import Enum
from threading import RLock
from typing import Callable, Optional, Protocol

from forked.domain.models import ReporterLocation
from forked.utils.logger import get_logger


logger = get_logger(__name__)


class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


AuthorizationListener = Callable[[AuthorizationStatus], None]


class LocationProvider(Protocol):
    @property
    def authorization_status(self) -> AuthorizationStatus:
        ...

    def request_permission(self) -> None:
        ...

    def request_fresh_fix(self) -> None:
        ...

    def last_known_location(self) -> Optional[ReporterLocation]:
        ...


class ManualLocationProvider:
    """Location provider driven by pushed authorization changes and fixes.

    ``fix_source`` is polled when a fresh fix is requested; fixes may also be
    pushed at any time with :meth:`push_fix`. Once authorization is granted a
    fix is requested proactively.
    """

    def __init__(
        self,
        status: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED,
        fix_source: Optional[Callable[[], Optional[ReporterLocation]]] = None,
    ) -> None:
        self._status = status
        self._fix_source = fix_source
        self._last_location: Optional[ReporterLocation] = None
        self._listeners: list[AuthorizationListener] = []
        self._permission_requests = 0
        self._lock = RLock()

    @property
    def authorization_status(self) -> AuthorizationStatus:
        with self._lock:
            return self._status

    @property
    def permission_requests(self) -> int:
        return self._permission_requests

    def on_authorization_change(self, listener: AuthorizationListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update_authorization(self, status: AuthorizationStatus) -> None:
        with self._lock:
            changed = status != self._status
            self._status = status
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info("Location authorization changed | status=%s", status.value)
        for listener in listeners:
            listener(status)
        if status == AuthorizationStatus.AUTHORIZED:
            self.request_fresh_fix()

    def request_permission(self) -> None:
        with self._lock:
            self._permission_requests += 1

    def request_fresh_fix(self) -> None:
        if self._fix_source is None or self.authorization_status != AuthorizationStatus.AUTHORIZED:
            return
        fix = self._fix_source()
        if fix is not None:
            self.push_fix(fix)

    def push_fix(self, location: ReporterLocation) -> None:
        with self._lock:
            self._last_location = location

    def last_known_location(self) -> Optional[ReporterLocation]:
        with self._lock:
            return self._last_location
