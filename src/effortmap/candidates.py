"""Candidate selection and cluster-summary gathering for refinement."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from effortmap.models import (
    ActivitySignal,
    Candidate,
    ClusterSummary,
    Component,
    Confidence,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


class ClusterStore(Protocol):
    """Read side of the external cluster store."""

    def recent_clusters(self, since: datetime) -> list[ClusterSummary]:
        """Clusters with activity at or after *since*."""
        ...

    def get_clusters(self, cluster_ids: Iterable[str]) -> list[ClusterSummary]:
        """Clusters with the given ids; unknown ids are silently absent."""
        ...


def _high_confidence(
    resolved: list[Component], signals: list[ActivitySignal]
) -> list[Candidate]:
    by_id = {s.id: s for s in signals}
    result: list[Candidate] = []
    for component in resolved:
        for activity_id in component.activity_ids:
            signal = by_id.get(activity_id)
            if signal is None:
                continue
            result.append(
                Candidate(
                    activity_id=activity_id,
                    current_cluster_id=component.key,
                    confidence=Confidence.HIGH,
                    source=signal.source,
                    title=signal.title,
                    timestamp=signal.timestamp,
                )
            )
    return result


def summarize_component(
    component: Component,
    signals: list[ActivitySignal] | None = None,
    sample_titles: int = 3,
) -> ClusterSummary:
    """Describe a cluster resolved in this run so refinement can target it."""
    titles: list[str] = []
    if signals is not None:
        by_id = {s.id: s for s in signals}
        for activity_id in component.activity_ids:
            signal = by_id.get(activity_id)
            if signal is not None and signal.title.strip():
                titles.append(signal.title)
    return ClusterSummary(
        id=component.key,
        name=", ".join(component.shared_refs),
        activity_count=component.size,
        date_range=component.date_range,
        tools_involved=list(component.tools),
        sample_activity_titles=titles[:sample_titles],
    )


def gather_summaries(
    candidates: list[Candidate],
    store: ClusterStore,
    *,
    now: datetime | None = None,
    recency_days: int = 30,
    sample_titles: int = 3,
    run_clusters: Iterable[ClusterSummary] = (),
) -> list[ClusterSummary]:
    """Recent clusters plus every cluster a candidate currently belongs to.

    ``run_clusters`` describe clusters resolved in this run; a store entry
    with the same id takes precedence. Deduplicated by id; referenced
    clusters are flagged and never dropped by the recency window.
    """
    now = now or datetime.now(UTC)
    since = now - timedelta(days=recency_days)

    referenced = {c.current_cluster_id for c in candidates if c.current_cluster_id}
    run_clusters = list(run_clusters)

    summaries: dict[str, ClusterSummary] = {}
    for summary in store.recent_clusters(since):
        summaries.setdefault(summary.id, summary)

    missing = sorted((referenced | {s.id for s in run_clusters}) - summaries.keys())
    if missing:
        for summary in store.get_clusters(missing):
            summaries.setdefault(summary.id, summary)

    for summary in run_clusters:
        summaries.setdefault(summary.id, summary)

    unknown = referenced - summaries.keys()
    if unknown:
        logger.warning(
            "%d candidate cluster id(s) not found in store: %s",
            len(unknown),
            ", ".join(sorted(unknown)),
        )

    result: list[ClusterSummary] = []
    for summary in summaries.values():
        result.append(
            summary.model_copy(
                update={
                    "is_referenced_by_candidate": summary.id in referenced,
                    "sample_activity_titles": summary.sample_activity_titles[:sample_titles],
                }
            )
        )

    # Referenced first, then most recently active, then id.
    result.sort(key=lambda s: s.id)
    result.sort(key=lambda s: s.last_active or _EPOCH, reverse=True)
    result.sort(key=lambda s: not s.is_referenced_by_candidate)
    return result


def select_candidates(
    resolved: list[Component],
    weak: list[Candidate],
    store: ClusterStore,
    *,
    signals: list[ActivitySignal] | None = None,
    now: datetime | None = None,
    recency_days: int = 30,
    sample_titles: int = 3,
    double_check_high: bool = False,
) -> tuple[list[Candidate], list[ClusterSummary]]:
    """Choose what the refinement step sees.

    By default only ``none``/``low`` candidates are sent. With
    *double_check_high* every member of a resolved cluster is added as a
    ``high`` candidate whose current cluster is that component (requires
    *signals*). Resolved clusters are always offered as KEEP/MOVE targets.

    Returns:
        ``(candidates, summaries)``
    """
    candidates = [c for c in weak if c.confidence is not Confidence.HIGH]
    if double_check_high:
        if signals is None:
            raise ValueError("double_check_high requires the signal arena")
        candidates.extend(_high_confidence(resolved, signals))

    if not candidates:
        return [], []

    summaries = gather_summaries(
        candidates,
        store,
        now=now,
        recency_days=recency_days,
        sample_titles=sample_titles,
        run_clusters=[summarize_component(c, signals, sample_titles) for c in resolved],
    )
    logger.debug(
        "Selected %d candidates, %d cluster summaries (%d referenced)",
        len(candidates),
        len(summaries),
        sum(1 for s in summaries if s.is_referenced_by_candidate),
    )
    return candidates, summaries
