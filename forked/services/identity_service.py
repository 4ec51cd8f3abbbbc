"""Signed-in user sessions supplied by the identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from threading import RLock
from typing import Optional, Protocol

from forked.domain.identity import Identity, resolve_identity


@dataclass(frozen=True)
class UserSession:
    uid: str
    email_verified: bool
    client_identifier_hash: Optional[str] = None

    @property
    def identity(self) -> Identity:
        return resolve_identity(self.uid, self.client_identifier_hash)


class IdentityProvider(Protocol):
    def current_session(self) -> Optional[UserSession]:
        ...


class StaticIdentityProvider:
    """In-process identity provider holding at most one session."""

    def __init__(self, session: Optional[UserSession] = None) -> None:
        self._session = session
        self._lock = RLock()

    def sign_in(
        self,
        uid: str,
        *,
        email_verified: bool = True,
        client_identifier_hash: Optional[str] = None,
    ) -> UserSession:
        session = UserSession(
            uid=uid,
            email_verified=email_verified,
            client_identifier_hash=client_identifier_hash,
        )
        with self._lock:
            self._session = session
        return session

    def mark_email_verified(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session = UserSession(
                    uid=self._session.uid,
                    email_verified=True,
                    client_identifier_hash=self._session.client_identifier_hash,
                )

    def sign_out(self) -> None:
        with self._lock:
            self._session = None

    def current_session(self) -> Optional[UserSession]:
        with self._lock:
            return self._session

