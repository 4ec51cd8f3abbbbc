"""Reporter identities used to key rate-limit markers."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class AuthenticatedIdentity:
    uid: str

    def marker_id(self, hall_id: str, action: str) -> Optional[str]:
        return f"uid_{self.uid}_{hall_id}_{action}"


@dataclass(frozen=True)
class AnonymousIdentity:
    client_hash: str

    def marker_id(self, hall_id: str, action: str) -> Optional[str]:
        return f"anon_{self.client_hash}_{hall_id}_{action}"


@dataclass(frozen=True)
class NoIdentity:
    """Reporter that cannot be keyed; rate limiting does not apply."""

    def marker_id(self, hall_id: str, action: str) -> Optional[str]:
        return None


Identity = Union[AuthenticatedIdentity, AnonymousIdentity, NoIdentity]


def resolve_identity(uid: Optional[str], client_hash: Optional[str]) -> Identity:
    """Prefer the authenticated uid, then the anonymized client hash."""
    if uid:
        return AuthenticatedIdentity(uid=uid)
    if client_hash:
        return AnonymousIdentity(client_hash=client_hash)
    return NoIdentity()


def hash_client_identifier(device_id: str, salt: str = "") -> str:
    """Anonymize a device identifier for use as a rate-limit key."""
    digest = hashlib.sha256(f"{salt}:{device_id}".encode("utf-8"))
    return digest.hexdigest()
