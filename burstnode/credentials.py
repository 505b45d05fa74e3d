"""Per-node login credentials and the keyed store backends share.

A backend's credential store is usually process-local and forgotten on
restart. Nodes keep their own durable copy and re-seed the store on first
access through ``ensure_credential``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

CREDENTIAL_KEY_PREFIX = "node#"


@dataclass(frozen=True, slots=True)
class LoginCredentials:
    """User and private key used to log into a node."""

    user: str
    private_key: str | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, str | None]:
        return {"user": self.user, "private_key": self.private_key}


def credential_key(node_id: str) -> str:
    """Store key for a node's credential."""
    return f"{CREDENTIAL_KEY_PREFIX}{node_id}"


@runtime_checkable
class CredentialStore(Protocol):
    """Keyed store of login credentials, shared by every node of a backend."""

    def contains_key(self, key: str) -> bool: ...

    def put(self, key: str, credential: LoginCredentials) -> None: ...

    def get(self, key: str) -> LoginCredentials | None: ...


class InMemoryCredentialStore:
    """Non-durable store; per-key put and contains are atomic."""

    def __init__(self) -> None:
        self._entries: dict[str, LoginCredentials] = {}
        self._lock = threading.Lock()

    def contains_key(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def put(self, key: str, credential: LoginCredentials) -> None:
        with self._lock:
            self._entries[key] = credential

    def get(self, key: str) -> LoginCredentials | None:
        with self._lock:
            return self._entries.get(key)

    def remove(self, key: str) -> LoginCredentials | None:
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains_key(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def ensure_credential(
    store: CredentialStore,
    node_id: str,
    credential: LoginCredentials,
) -> bool:
    """Insert ``credential`` for ``node_id`` unless the store already has one.

    Not atomic across callers: two concurrent first calls may both insert.
    They insert the same value, so this is safe as long as the store itself
    is safe for per-key put/contains.

    Returns:
        True if an entry was inserted.
    """
    key = credential_key(node_id)
    if store.contains_key(key):
        return False
    store.put(key, credential)
    return True


__all__ = [
    "CREDENTIAL_KEY_PREFIX",
    "CredentialStore",
    "InMemoryCredentialStore",
    "LoginCredentials",
    "credential_key",
    "ensure_credential",
]
