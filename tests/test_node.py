from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from burstnode.backend import NodeMetadata, NodeStatus
from burstnode.backends.memory import InMemoryBackend
from burstnode.credentials import InMemoryCredentialStore, LoginCredentials, credential_key
from burstnode.errors import BackendUnavailable, ConfigurationError, OperationFailed
from burstnode.node import (
    ManagedNode,
    MetadataCache,
    NodeRecord,
    NodeTemplate,
    TerminationPolicy,
    display_name,
    sanitize_node_id,
)
from burstnode.registry import CloudRegistry

pytestmark = [pytest.mark.xdist_group("unit")]


class _CountingStore(InMemoryCredentialStore):
    def __init__(self) -> None:
        super().__init__()
        self.puts: list[str] = []

    def put(self, key: str, credential: LoginCredentials) -> None:
        self.puts.append(key)
        super().put(key, credential)


class _CountingBackend(InMemoryBackend):
    def __init__(self) -> None:
        super().__init__(region="eu")
        self._store = _CountingStore()


def _restored(backend: InMemoryBackend, registry: CloudRegistry, **kwargs) -> ManagedNode:
    metadata = backend.launch("worker")
    return ManagedNode.restore(
        "local",
        metadata.id,
        credential=metadata.credential,
        registry=registry,
        **kwargs,
    )


class TestDisplayName:
    def test_path_separator_replaced(self):
        assert display_name("vm", "abc/123") == "vm-abc_123"

    def test_no_path_separators(self):
        name = display_name("vm", "us-east-1/a/b\\c")
        assert "/" not in name
        assert "\\" not in name
        assert name == "vm-us-east-1_a_b_c"

    def test_deterministic(self):
        assert display_name("n", "x/y") == display_name("n", "x/y")

    def test_plain_id_unchanged(self):
        assert sanitize_node_id("i-0abc") == "i-0abc"


class TestNodeTemplate:
    def test_defaults(self):
        template = NodeTemplate()
        assert template.num_executors == 1
        assert template.termination_policy is TerminationPolicy.DESTROY

    def test_labels_from_string(self):
        assert NodeTemplate(labels="linux  docker").labels == ("linux", "docker")

    def test_policy_from_string(self):
        assert NodeTemplate(termination_policy="suspend").termination_policy is TerminationPolicy.SUSPEND

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fs_root": ""},
            {"num_executors": 0},
            {"num_executors": "2"},
            {"termination_policy": "hibernate"},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            NodeTemplate(**kwargs)


class TestFromMetadata:
    def test_captures_identity_and_credentials(self, backend, registry):
        metadata = backend.launch("worker", user="ubuntu", private_key="KEY")
        node = ManagedNode.from_metadata(
            "local",
            metadata,
            NodeTemplate(labels="gpu", num_executors=4, termination_policy="suspend"),
            registry=registry,
        )

        assert node.node_id == metadata.id
        assert node.cloud_name == "local"
        assert node.display_name == f"worker-{metadata.id.replace('/', '_')}"
        assert node.credential == LoginCredentials(user="ubuntu", private_key="KEY")
        assert node.labels == ("gpu",)
        assert node.num_executors == 4
        assert node.termination_policy is TerminationPolicy.SUSPEND

    def test_seeds_cache_without_backend_call(self, backend, registry):
        metadata = backend.launch("worker")
        node = ManagedNode.from_metadata("local", metadata, registry=registry)

        assert node.is_cached
        assert node.get_metadata() == metadata
        assert backend.count("get_node_metadata") == 0

    @pytest.mark.parametrize(
        "metadata",
        [
            NodeMetadata(id="a/1", name="", status=NodeStatus.RUNNING, credential=LoginCredentials("u")),
            NodeMetadata(id="", name="vm", status=NodeStatus.RUNNING, credential=LoginCredentials("u")),
            NodeMetadata(id="a/1", name="vm", status=NodeStatus.RUNNING),
        ],
    )
    def test_missing_fields(self, registry, metadata):
        with pytest.raises(ConfigurationError):
            ManagedNode.from_metadata("local", metadata, registry=registry)


class TestGetMetadata:
    def test_fetches_once_then_caches(self, backend, registry):
        node = _restored(backend, registry)
        assert not node.is_cached

        first = node.get_metadata()
        second = node.get_metadata()

        assert first is second
        assert backend.count("get_node_metadata") == 1

    def test_reseeds_credentials_once(self):
        backend = _CountingBackend()
        registry = CloudRegistry()
        registry.register("local", backend)
        metadata = backend.launch("worker")
        backend.restart()
        backend.credential_store.puts.clear()

        node = ManagedNode.restore("local", metadata.id, credential=metadata.credential, registry=registry)
        fetched = node.get_metadata()

        assert backend.credential_store.puts == [credential_key(metadata.id)]
        assert fetched is not None
        assert fetched.credential == metadata.credential

        # A second node object for the same id finds the entry already there
        other = ManagedNode.restore("local", metadata.id, credential=metadata.credential, registry=registry)
        other.get_metadata()
        assert backend.credential_store.puts == [credential_key(metadata.id)]

    def test_does_not_overwrite_existing_credential(self, backend, registry):
        metadata = backend.launch("worker", private_key="ORIGINAL")
        node = ManagedNode.restore(
            "local",
            metadata.id,
            credential=LoginCredentials(user="root", private_key="OTHER"),
            registry=registry,
        )

        node.get_metadata()

        stored = backend.credential_store.get(credential_key(metadata.id))
        assert stored is not None
        assert stored.private_key == "ORIGINAL"

    def test_without_credential_skips_seeding(self, backend, registry):
        metadata = backend.launch("worker")
        backend.restart()
        node = ManagedNode.restore("local", metadata.id, registry=registry)

        fetched = node.get_metadata()

        assert fetched is not None
        assert fetched.credential is None
        assert len(backend.credential_store) == 0

    def test_unknown_profile(self, backend):
        node = ManagedNode.restore("gone", "x/1", registry=CloudRegistry())
        with pytest.raises(ConfigurationError):
            node.get_metadata()

    def test_failure_leaves_cache_empty(self, backend, registry):
        node = _restored(backend, registry)

        backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            node.get_metadata()
        assert not node.is_cached

        backend.unavailable = False
        assert node.get_metadata() is not None
        assert node.is_cached

    def test_missing_node_is_not_cached(self, backend, registry):
        node = ManagedNode.restore("local", "us-east-1/nothere", registry=registry)

        assert node.get_metadata() is None
        assert node.get_metadata() is None
        assert backend.count("get_node_metadata") == 2

    def test_restored_matches_provisioned(self, backend, registry):
        metadata = backend.launch("worker")
        provisioned = ManagedNode.from_metadata("local", metadata, registry=registry)

        backend.restart()
        restored = ManagedNode.from_record(provisioned.to_record(), registry=registry)

        assert restored.get_metadata() == provisioned.get_metadata()


class TestTerminate:
    def test_running_destroy(self, backend, registry):
        node = _restored(backend, registry, template=NodeTemplate(termination_policy="destroy"))

        node.terminate()

        assert backend.count("destroy_node") == 1
        assert backend.count("suspend_node") == 0
        assert backend.get_node_metadata(node.node_id).status is NodeStatus.TERMINATED

    def test_running_suspend(self, backend, registry):
        node = _restored(backend, registry, template=NodeTemplate(termination_policy="suspend"))

        node.terminate()

        assert backend.count("suspend_node") == 1
        assert backend.count("destroy_node") == 0
        assert backend.get_node_metadata(node.node_id).status is NodeStatus.SUSPENDED

    def test_gone_node_is_noop(self, backend, registry):
        node = _restored(backend, registry)
        backend.remove(node.node_id)

        node.terminate()

        assert backend.count("suspend_node") == 0
        assert backend.count("destroy_node") == 0

    @pytest.mark.parametrize(
        "status",
        [NodeStatus.SUSPENDED, NodeStatus.TERMINATED, NodeStatus.PROVISIONING, NodeStatus.ERROR],
    )
    def test_not_running_is_noop(self, backend, registry, status):
        node = _restored(backend, registry)
        backend.set_status(node.node_id, status)

        node.terminate()

        assert backend.count("suspend_node") == 0
        assert backend.count("destroy_node") == 0

    def test_idempotent(self, backend, registry):
        node = _restored(backend, registry)

        node.terminate()
        node.terminate()

        assert backend.count("destroy_node") == 1

    def test_unknown_profile_makes_no_calls(self, backend):
        node = ManagedNode.restore("removed", "us-east-1/abc", registry=CloudRegistry())

        with pytest.raises(ConfigurationError):
            node.terminate()
        assert backend.calls == []

    def test_backend_failure_propagates(self, backend, registry):
        node = _restored(backend, registry)
        backend.unavailable = True

        with pytest.raises(BackendUnavailable):
            node.terminate()

    def test_destroy_failure_propagates(self, registry, backend):
        class _Refusing(InMemoryBackend):
            def destroy_node(self, node_id: str) -> None:
                raise OperationFailed("quota", operation="destroy_node")

        refusing = _Refusing()
        registry.register("refusing", refusing)
        metadata = refusing.launch("worker")
        node = ManagedNode.from_metadata("refusing", metadata, registry=registry)

        with pytest.raises(OperationFailed):
            node.terminate()

    def test_does_not_touch_cached_metadata(self, backend, registry):
        metadata = backend.launch("worker")
        node = ManagedNode.from_metadata("local", metadata, registry=registry)

        node.terminate()

        assert node.get_metadata() == metadata


class TestRecord:
    def test_round_trip(self, backend, registry):
        metadata = backend.launch("worker", user="ubuntu", private_key="K")
        node = ManagedNode.from_metadata(
            "local",
            metadata,
            NodeTemplate(description="builder", labels=("a", "b"), termination_policy="suspend"),
            registry=registry,
        )

        record = NodeRecord.from_dict(node.to_record().to_dict())
        restored = ManagedNode.from_record(record, registry=registry)

        assert restored == node
        assert not restored.is_cached

    def test_missing_identity(self):
        with pytest.raises(ConfigurationError):
            NodeRecord.from_dict({"cloud_profile": "local"})

    def test_display_name_defaults_to_sanitized_id(self):
        record = NodeRecord.from_dict({"cloud_profile": "local", "node_id": "r/1"})
        assert record.display_name == "r_1"
        assert record.termination_policy is TerminationPolicy.DESTROY


class TestMetadataCache:
    def test_none_is_not_cached(self):
        cache: MetadataCache[str] = MetadataCache()
        calls = []

        def loader():
            calls.append(1)
            return None

        assert cache.get_or_load(loader) is None
        assert cache.get_or_load(loader) is None
        assert len(calls) == 2

    def test_value_is_kept(self):
        cache: MetadataCache[str] = MetadataCache()
        assert cache.get_or_load(lambda: "a") == "a"
        assert cache.get_or_load(lambda: "b") == "a"
        assert cache.peek() == "a"


class TestIdentity:
    @pytest.mark.parametrize(
        "field, value",
        [("node_id", "other/1"), ("cloud_profile", "elsewhere"), ("credential", None)],
    )
    def test_fields_cannot_be_reassigned(self, backend, registry, field, value):
        node = ManagedNode.from_metadata("local", backend.launch("worker"), registry=registry)

        with pytest.raises(FrozenInstanceError):
            setattr(node, field, value)

    def test_cache_still_fills_on_frozen_node(self, backend, registry):
        node = _restored(backend, registry)

        assert node.get_metadata() is not None
        assert node.is_cached
