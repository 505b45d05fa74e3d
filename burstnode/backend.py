"""Compute backend contract.

A backend is the remote cloud API surface for one cloud profile: it looks
nodes up by id and suspends or destroys them. Every node state transition is
driven by the backend; callers only observe them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from burstnode.credentials import CredentialStore, LoginCredentials


class NodeStatus(StrEnum):
    """Backend-reported node state."""

    PROVISIONING = "provisioning"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class NodeMetadata:
    """Snapshot of a node as reported by its backend."""

    id: str
    name: str
    status: NodeStatus
    credential: LoginCredentials | None = None
    public_ips: tuple[str, ...] = ()
    private_ips: tuple[str, ...] = ()

    # Backend-specific key-value pairs (e.g. region, instance type)
    extra: frozenset[tuple[str, Any]] = field(default_factory=frozenset)

    @property
    def is_running(self) -> bool:
        return self.status is NodeStatus.RUNNING

    def get_extra(self, key: str, default: Any = None) -> Any:
        for k, v in self.extra:
            if k == key:
                return v
        return default


@runtime_checkable
class ComputeBackend(Protocol):
    """Remote compute API for one cloud profile.

    Implementations raise ``BackendUnavailable`` for transient failures and
    ``OperationFailed`` when a mutating call is refused.
    """

    @property
    def credential_store(self) -> CredentialStore:
        """Credential store of this backend context."""
        ...

    def get_node_metadata(self, node_id: str) -> NodeMetadata | None:
        """Current metadata for ``node_id``, or None if the node is gone.

        The returned metadata carries the credential stored under
        ``credential_key(node_id)``, if any.
        """
        ...

    def suspend_node(self, node_id: str) -> None:
        """Stop the node, keeping it resumable."""
        ...

    def destroy_node(self, node_id: str) -> None:
        """Permanently destroy the node."""
        ...


__all__ = [
    "ComputeBackend",
    "NodeMetadata",
    "NodeStatus",
]
