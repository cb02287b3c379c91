"""End-to-end clustering run for one user's sync.

``cluster_activities`` is a pure function of its arguments apart from the
single refinement exchange: no module-level state is read or written, so
runs for different users can proceed independently.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from datetime import datetime

from effortmap.applier import apply_assignments, initial_partition
from effortmap.candidates import ClusterStore, select_candidates
from effortmap.config import EffortmapConfig
from effortmap.graph import build_clusters
from effortmap.models import (
    ActivityRecord,
    ClusteringMetrics,
    ClusteringRun,
    DateRange,
    FinalPartition,
    HeuristicResult,
    RefinementResult,
)
from effortmap.refinement import RefinementClient
from effortmap.signals import extract_all

logger = logging.getLogger(__name__)


def _metrics(
    partition: FinalPartition,
    heuristic: HeuristicResult,
    *,
    total: int,
    filtered: int,
    candidate_count: int,
    heuristic_ms: float,
    refinement_ms: float,
) -> ClusteringMetrics:
    sizes = [len(g.activity_ids) for g in partition.groups]
    clustered = sum(sizes)
    return ClusteringMetrics(
        total_activities=total,
        filtered_activities=filtered,
        clustered_activities=clustered,
        candidate_count=candidate_count,
        orphan_count=len(partition.orphans),
        cluster_count=len(sizes),
        avg_cluster_size=clustered / len(sizes) if sizes else 0.0,
        largest_cluster=max(sizes, default=0),
        edge_counts=heuristic.edge_counts,
        heuristic_ms=round(heuristic_ms, 2),
        refinement_ms=round(refinement_ms, 2),
    )


def cluster_activities(
    records: Iterable[ActivityRecord],
    self_identities: str | Iterable[str],
    store: ClusterStore,
    *,
    config: EffortmapConfig | None = None,
    client: RefinementClient | None = None,
    now: datetime | None = None,
    date_range: DateRange | None = None,
) -> ClusteringRun:
    """Cluster one user's activities into a final partition.

    Args:
        records: Activities from the ingestion layer.
        self_identities: The acting user's identifier(s).
        store: Read access to existing clusters.
        config: Thresholds and refinement settings (defaults if omitted).
        client: Refinement client; built from ``config.refinement`` if omitted.
        now: Reference time for the recency window (defaults to now, UTC).
        date_range: If given, records outside it are ignored for this run.

    Returns:
        The run's partition, refinement outcome, candidates, summaries and metrics.
    """
    config = config or EffortmapConfig()
    all_records = list(records)
    selected = all_records
    if date_range is not None:
        selected = [r for r in all_records if date_range.contains(r.timestamp)]
        if len(selected) < len(all_records):
            logger.info(
                "Filtered %d activities outside %s..%s",
                len(all_records) - len(selected),
                date_range.start.date(),
                date_range.end.date(),
            )

    started = time.perf_counter()
    signals = extract_all(selected, self_identities)
    heuristic = build_clusters(signals, config.clustering)
    candidates, summaries = select_candidates(
        heuristic.resolved,
        heuristic.candidates,
        store,
        signals=signals,
        now=now,
        recency_days=config.candidates.recency_days,
        sample_titles=config.candidates.sample_titles,
        double_check_high=config.candidates.double_check_high,
    )
    heuristic_ms = (time.perf_counter() - started) * 1000

    started = time.perf_counter()
    if not config.refinement.enabled or not candidates:
        refinement = RefinementResult(skipped=True)
    else:
        client = client or RefinementClient(
            model=config.refinement.model,
            timeout=config.refinement.timeout_seconds,
            backend=config.refinement.backend,
        )
        refinement = client.refine(candidates, summaries)
    refinement_ms = (time.perf_counter() - started) * 1000

    cluster_names = {s.id: s.name for s in summaries if s.name}
    if refinement.assignments:
        partition = apply_assignments(
            heuristic.resolved, heuristic.candidates, refinement.assignments, cluster_names
        )
    else:
        partition = initial_partition(heuristic.resolved, heuristic.candidates, cluster_names)

    metrics = _metrics(
        partition,
        heuristic,
        total=len(all_records),
        filtered=len(all_records) - len(selected),
        candidate_count=len(candidates),
        heuristic_ms=heuristic_ms,
        refinement_ms=refinement_ms,
    )
    logger.info(
        "Clustered %d activities: %d resolved, %d candidates, %d groups, %d orphans%s (%.0f ms)",
        len(selected),
        len(heuristic.resolved),
        len(candidates),
        metrics.cluster_count,
        metrics.orphan_count,
        ", fallback" if refinement.used_fallback else "",
        heuristic_ms + refinement_ms,
    )

    return ClusteringRun(
        partition=partition,
        refinement=refinement,
        candidates=candidates,
        summaries=summaries,
        metrics=metrics,
    )
