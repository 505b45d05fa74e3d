"""burstnode - lifecycle of cloud-burst compute nodes.

Example:
    from burstnode import CloudRegistry, InMemoryBackend, ManagedNode, NodeTemplate

    registry = CloudRegistry()
    backend = InMemoryBackend()
    registry.register("local", backend)

    node = ManagedNode.from_metadata(
        "local",
        backend.launch("worker"),
        NodeTemplate(termination_policy="suspend"),
        registry=registry,
    )
    node.terminate()
"""

from burstnode.backend import ComputeBackend, NodeMetadata, NodeStatus
from burstnode.backends.memory import InMemory, InMemoryBackend
from burstnode.config import build_registry, configure_logging, load_config, resolve_template
from burstnode.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    LoginCredentials,
    credential_key,
    ensure_credential,
)
from burstnode.errors import (
    BackendUnavailable,
    BurstnodeError,
    ConfigurationError,
    OperationFailed,
)
from burstnode.logging import LogConfig, setup_logging, teardown_logging
from burstnode.node import (
    ManagedNode,
    NodeRecord,
    NodeTemplate,
    TerminationPolicy,
    display_name,
    sanitize_node_id,
)
from burstnode.records import NodeRecordStore
from burstnode.registry import CloudRegistry, create_backend, get_registry
from burstnode.retry import RetryingBackend

__all__ = [
    "BackendUnavailable",
    "BurstnodeError",
    "CloudRegistry",
    "ComputeBackend",
    "ConfigurationError",
    "CredentialStore",
    "InMemory",
    "InMemoryBackend",
    "InMemoryCredentialStore",
    "LogConfig",
    "LoginCredentials",
    "ManagedNode",
    "NodeMetadata",
    "NodeRecord",
    "NodeRecordStore",
    "NodeStatus",
    "NodeTemplate",
    "OperationFailed",
    "RetryingBackend",
    "TerminationPolicy",
    "build_registry",
    "configure_logging",
    "create_backend",
    "credential_key",
    "display_name",
    "ensure_credential",
    "get_registry",
    "load_config",
    "resolve_template",
    "sanitize_node_id",
    "setup_logging",
    "teardown_logging",
]
