"""Read-only cluster store snapshots.

The durable cluster store belongs to the persistence layer. These classes
give the pipeline (and the CLI) something that satisfies
:class:`effortmap.candidates.ClusterStore` from memory or from a JSON export.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from effortmap.models import ClusterSummary

logger = logging.getLogger(__name__)

CLUSTER_STORE_FILENAME = ".effortmap-clusters.json"

_SUMMARIES = TypeAdapter(list[ClusterSummary])


class InMemoryClusterStore:
    """Cluster summaries held in a dict keyed by id."""

    def __init__(self, summaries: Iterable[ClusterSummary] = ()) -> None:
        self._clusters: dict[str, ClusterSummary] = {}
        for summary in summaries:
            self._clusters[summary.id] = summary

    def recent_clusters(self, since: datetime) -> list[ClusterSummary]:
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        return [
            c
            for c in self._clusters.values()
            if c.last_active is not None and c.last_active >= since
        ]

    def get_clusters(self, cluster_ids: Iterable[str]) -> list[ClusterSummary]:
        return [self._clusters[cid] for cid in cluster_ids if cid in self._clusters]

    def __len__(self) -> int:
        return len(self._clusters)


class JsonClusterStore(InMemoryClusterStore):
    """Cluster summaries loaded from a JSON array on disk.

    A missing file is an empty store. A corrupt file is logged and treated
    as empty so a bad export degrades to "no known clusters".
    """

    def __init__(self, path: Path) -> None:
        if path.is_dir():
            path = path / CLUSTER_STORE_FILENAME
        self._path = path
        super().__init__(self._load())

    def _load(self) -> list[ClusterSummary]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return _SUMMARIES.validate_python(data)
        except (json.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning("Could not load cluster store %s: %s", self._path, exc)
            return []
