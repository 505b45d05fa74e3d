"""In-process compute backend.

Keeps nodes in a dict and behaves like a small cloud: ids are path-like
("<region>/<hex>"), credentials live in a non-durable store, and
``restart()`` drops that store the way a process restart would.

Example:
    from burstnode.backends.memory import InMemoryBackend

    backend = InMemoryBackend()
    metadata = backend.launch("worker")
    registry.register("local", backend)
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, replace

from loguru import logger

from burstnode.backend import NodeMetadata, NodeStatus
from burstnode.credentials import InMemoryCredentialStore, LoginCredentials, credential_key
from burstnode.errors import BackendUnavailable, OperationFailed

log = logger.bind(component="memory")


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class InMemory:
    """In-process backend configuration.

    Args:
        region: Prefix of generated node ids.
        retry_attempts: Attempts per backend call. 1 disables retry.
    """

    region: str = "local"
    retry_attempts: int = 1


# =============================================================================
# Backend
# =============================================================================


class InMemoryBackend:
    """Thread-safe in-process backend."""

    def __init__(self, region: str = "local") -> None:
        self.region = region
        self.unavailable = False
        self.calls: list[tuple[str, str]] = []
        self._nodes: dict[str, NodeMetadata] = {}
        self._store = InMemoryCredentialStore()
        self._lock = threading.Lock()

    @property
    def credential_store(self) -> InMemoryCredentialStore:
        return self._store

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    def launch(
        self,
        name: str,
        *,
        user: str = "root",
        private_key: str | None = None,
        status: NodeStatus = NodeStatus.RUNNING,
    ) -> NodeMetadata:
        """Create a node and return its metadata, credentials included."""
        node_id = f"{self.region}/{uuid.uuid4().hex[:8]}"
        credential = LoginCredentials(
            user=user,
            private_key=private_key or f"fake-key-{uuid.uuid4().hex}",
        )
        metadata = NodeMetadata(
            id=node_id,
            name=name,
            status=status,
            private_ips=("127.0.0.1",),
            extra=frozenset([("region", self.region)]),
        )
        with self._lock:
            self._nodes[node_id] = metadata
        self._store.put(credential_key(node_id), credential)
        log.debug("Launched node {id} ({name})", id=node_id, name=name)
        return replace(metadata, credential=credential)

    def set_status(self, node_id: str, status: NodeStatus) -> None:
        with self._lock:
            self._nodes[node_id] = replace(self._require(node_id), status=status)

    def remove(self, node_id: str) -> None:
        """Forget a node entirely, as if the cloud had reaped it."""
        with self._lock:
            self._nodes.pop(node_id, None)

    def restart(self) -> None:
        """Drop the credential store, keeping nodes."""
        self._store.clear()

    # -------------------------------------------------------------------------
    # ComputeBackend
    # -------------------------------------------------------------------------

    def get_node_metadata(self, node_id: str) -> NodeMetadata | None:
        self._record("get_node_metadata", node_id)
        with self._lock:
            metadata = self._nodes.get(node_id)
        if metadata is None:
            return None
        return replace(metadata, credential=self._store.get(credential_key(node_id)))

    def suspend_node(self, node_id: str) -> None:
        self._record("suspend_node", node_id)
        with self._lock:
            metadata = self._require(node_id)
            if metadata.status is not NodeStatus.RUNNING:
                raise OperationFailed(
                    f"Cannot suspend node {node_id} in state {metadata.status}",
                    operation="suspend_node",
                )
            self._nodes[node_id] = replace(metadata, status=NodeStatus.SUSPENDED)
        log.debug("Suspended node {id}", id=node_id)

    def destroy_node(self, node_id: str) -> None:
        self._record("destroy_node", node_id)
        with self._lock:
            metadata = self._require(node_id)
            self._nodes[node_id] = replace(metadata, status=NodeStatus.TERMINATED)
        self._store.remove(credential_key(node_id))
        log.debug("Destroyed node {id}", id=node_id)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _record(self, operation: str, node_id: str) -> None:
        if self.unavailable:
            raise BackendUnavailable(
                f"Backend '{self.region}' is unavailable",
                operation=operation,
            )
        self.calls.append((operation, node_id))

    def _require(self, node_id: str) -> NodeMetadata:
        metadata = self._nodes.get(node_id)
        if metadata is None:
            raise OperationFailed(f"Node {node_id} not found", operation="lookup")
        return metadata

    def count(self, operation: str) -> int:
        """Number of recorded calls of ``operation``."""
        return sum(1 for op, _ in self.calls if op == operation)


__all__ = ["InMemory", "InMemoryBackend"]
