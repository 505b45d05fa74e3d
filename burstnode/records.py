"""Durable node records on disk.

The node core never persists anything itself. Orchestrators use this store
to keep node records across restarts and to restore ``ManagedNode``s from
them.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from loguru import logger

from burstnode.errors import ConfigurationError
from burstnode.node import ManagedNode, NodeRecord
from burstnode.registry import CloudRegistry

RECORDS_DIR = Path.home() / ".burstnode"
RECORDS_VERSION = 1

log = logger.bind(component="records")


class NodeRecordStore:
    """JSON file of node records keyed by node id."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else RECORDS_DIR / "nodes.json"
        self._data: dict[str, dict[str, Any]] | None = None
        self._lock = threading.RLock()

    @property
    def data(self) -> dict[str, dict[str, Any]]:
        """Lazy load records."""
        with self._lock:
            if self._data is None:
                self._data = self._load()
            return self._data

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read node records from {self.path}: {e}") from e

        if not isinstance(raw, dict) or raw.get("version") != RECORDS_VERSION:
            log.warning("Ignoring node records with unknown version in {path}", path=self.path)
            return {}
        return dict(raw.get("records", {}))

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"version": RECORDS_VERSION, "records": self.data}, indent=2)
        )
        tmp.replace(self.path)

    def save(self, record: NodeRecord) -> None:
        with self._lock:
            self.data[record.node_id] = record.to_dict()
            self._save()
        log.debug("Saved record for node {id}", id=record.node_id)

    def get(self, node_id: str) -> NodeRecord | None:
        with self._lock:
            raw = self.data.get(node_id)
        return NodeRecord.from_dict(raw) if raw is not None else None

    def remove(self, node_id: str) -> bool:
        with self._lock:
            if self.data.pop(node_id, None) is None:
                return False
            self._save()
        log.debug("Removed record for node {id}", id=node_id)
        return True

    def all(self) -> list[NodeRecord]:
        with self._lock:
            raws = list(self.data.values())
        return [NodeRecord.from_dict(raw) for raw in raws]

    def restore_nodes(self, registry: CloudRegistry | None = None) -> list[ManagedNode]:
        """Rebuild every stored node. Metadata is fetched lazily later."""
        nodes = [ManagedNode.from_record(record, registry) for record in self.all()]
        log.info("Restored {count} nodes from {path}", count=len(nodes), path=self.path)
        return nodes

    def __len__(self) -> int:
        return len(self.data)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.data


__all__ = ["NodeRecordStore"]
