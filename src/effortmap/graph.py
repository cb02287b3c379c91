"""Heuristic clustering: multi-signal graph, connected components, time splits.

Activities live in a flat arena (the ``signals`` list); edges and components
are lists of arena indices. Nothing here performs I/O and every result is a
deterministic function of the input order and thresholds.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter, defaultdict, deque
from datetime import timedelta

from effortmap.config import ClusteringConfig
from effortmap.models import (
    ActivitySignal,
    Candidate,
    Component,
    Confidence,
    DateRange,
    Edge,
    EdgeType,
    HeuristicResult,
)

logger = logging.getLogger(__name__)


# -- Edges -------------------------------------------------------------------


def _within(a: ActivitySignal, b: ActivitySignal, days: float) -> bool:
    return abs(a.timestamp - b.timestamp) <= timedelta(days=days)


def _is_contained(a: ActivitySignal, b: ActivitySignal) -> bool:
    """Strict membership only: one is the other's parent, or both share a parent."""
    if a.parent_id is not None and a.parent_id == b.id:
        return True
    if b.parent_id is not None and b.parent_id == a.id:
        return True
    return a.parent_id is not None and a.parent_id == b.parent_id


def classify_pair(
    a: ActivitySignal,
    b: ActivitySignal,
    config: ClusteringConfig,
) -> EdgeType | None:
    """Return the strongest edge type connecting *a* and *b*, if any."""
    if set(a.refs) & set(b.refs):
        return EdgeType.EXPLICIT_REF
    if _is_contained(a, b):
        return EdgeType.CONTAINMENT
    if a.container is not None and a.container == b.container:
        return EdgeType.CONTAINER
    if (
        len(set(a.collaborators) & set(b.collaborators)) >= config.collaborator_min_shared
        and _within(a, b, config.collaborator_window_days)
    ):
        return EdgeType.COLLABORATOR
    if (
        len(set(a.keywords) & set(b.keywords)) >= config.lexical_min_shared
        and _within(a, b, config.lexical_window_days)
    ):
        return EdgeType.LEXICAL
    return None


def build_edges(
    signals: list[ActivitySignal],
    config: ClusteringConfig | None = None,
) -> list[Edge]:
    """Evaluate every pair once; at most one edge (the strongest) per pair."""
    config = config or ClusteringConfig()
    edges: list[Edge] = []
    for i in range(len(signals)):
        for j in range(i + 1, len(signals)):
            edge_type = classify_pair(signals[i], signals[j], config)
            if edge_type is not None:
                edges.append(Edge(a=i, b=j, edge_type=edge_type))
    return edges


# -- Components --------------------------------------------------------------


def find_components(node_count: int, edges: list[Edge]) -> list[list[int]]:
    """Connected components by BFS, each sorted, ordered by lowest index."""
    adjacency: dict[int, list[int]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.a].append(edge.b)
        adjacency[edge.b].append(edge.a)

    visited = [False] * node_count
    components: list[list[int]] = []
    for start in range(node_count):
        if visited[start]:
            continue
        visited[start] = True
        queue = deque([start])
        component: list[int] = []
        while queue:
            node = queue.popleft()
            component.append(node)
            for neighbor in adjacency[node]:
                if not visited[neighbor]:
                    visited[neighbor] = True
                    queue.append(neighbor)
        components.append(sorted(component))
    return components


def split_by_time_gap(
    component: list[int],
    signals: list[ActivitySignal],
    gap_days: float,
) -> list[list[int]]:
    """Cut a component wherever consecutive activities are more than *gap_days* apart."""
    if not component:
        return []
    ordered = sorted(component, key=lambda i: (signals[i].timestamp, signals[i].id))
    max_gap = timedelta(days=gap_days)

    parts: list[list[int]] = [[ordered[0]]]
    for prev, cur in zip(ordered, ordered[1:]):
        if signals[cur].timestamp - signals[prev].timestamp > max_gap:
            parts.append([cur])
        else:
            parts[-1].append(cur)
    return parts


# -- Result assembly ---------------------------------------------------------


def component_key(activity_ids: list[str]) -> str:
    """Stable key for a heuristic cluster: same members, same key."""
    digest = hashlib.sha1("\n".join(sorted(activity_ids)).encode("utf-8")).hexdigest()
    return f"heuristic-{digest[:12]}"


def _existing_cluster(members: list[ActivitySignal]) -> str | None:
    """Store cluster id shared by every previously-clustered member, if unanimous."""
    ids = {s.cluster_id for s in members if s.cluster_id}
    if len(ids) == 1:
        return ids.pop()
    return None


def _build_component(
    indices: list[int],
    signals: list[ActivitySignal],
    edge_types: set[EdgeType],
) -> Component:
    members = [signals[i] for i in indices]
    activity_ids = [s.id for s in members]

    ref_counts: Counter[str] = Counter()
    for member in members:
        ref_counts.update(set(member.refs))
    shared_refs = sorted(ref for ref, count in ref_counts.items() if count > 1)

    existing = _existing_cluster(members)
    return Component(
        key=existing or component_key(activity_ids),
        activity_ids=activity_ids,
        indices=list(indices),
        edge_types=sorted(edge_types, key=list(EdgeType).index),
        shared_refs=shared_refs,
        tools=sorted({m.source for m in members if m.source}),
        date_range=DateRange(
            start=min(m.timestamp for m in members),
            end=max(m.timestamp for m in members),
        ),
        existing_cluster_id=existing,
    )


def _dedupe_existing_keys(
    resolved: list[Component], signals: list[ActivitySignal]
) -> list[Component]:
    """Keep each store cluster id on one component only.

    A time split can leave several parts claiming the same store cluster.
    The part holding the most of that cluster's members keeps the id (the
    earliest part on a tie); the others get their own heuristic key.
    """
    owner: dict[str, tuple[int, int]] = {}
    for position, component in enumerate(resolved):
        cluster_id = component.existing_cluster_id
        if cluster_id is None:
            continue
        members = sum(1 for i in component.indices if signals[i].cluster_id == cluster_id)
        best = owner.get(cluster_id)
        if best is None or members > best[0]:
            owner[cluster_id] = (members, position)

    result: list[Component] = []
    for position, component in enumerate(resolved):
        cluster_id = component.existing_cluster_id
        if cluster_id is not None and owner[cluster_id][1] != position:
            component = component.model_copy(
                update={
                    "key": component_key(component.activity_ids),
                    "existing_cluster_id": None,
                }
            )
        result.append(component)
    return result


def build_clusters(
    signals: list[ActivitySignal],
    config: ClusteringConfig | None = None,
) -> HeuristicResult:
    """Partition activities into resolved clusters and refinement candidates.

    Strong edges (everything except lexical) define components, which are
    then split on time gaps. Parts of at least ``min_cluster_size`` become
    resolved clusters. Every other activity becomes a candidate: ``low`` if
    it has any edge at all, ``none`` if it is isolated.
    """
    config = config or ClusteringConfig()
    edges = build_edges(signals, config)
    strong_edges = [e for e in edges if e.edge_type.is_strong]

    edge_counts = Counter(str(e.edge_type) for e in edges)
    logger.debug(
        "Built %d edges over %d activities: %s",
        len(edges),
        len(signals),
        dict(edge_counts),
    )

    raw_components = find_components(len(signals), strong_edges)
    parts: list[list[int]] = []
    for component in raw_components:
        parts.extend(split_by_time_gap(component, signals, config.temporal_gap_days))
    logger.debug(
        "%d components before time split, %d after",
        len(raw_components),
        len(parts),
    )

    part_of: dict[int, int] = {}
    for part_index, part in enumerate(parts):
        for node in part:
            part_of[node] = part_index

    # Only edges that survive the split characterise a part.
    part_edge_types: dict[int, set[EdgeType]] = defaultdict(set)
    has_edge: set[int] = set()
    for edge in edges:
        has_edge.update((edge.a, edge.b))
        if edge.edge_type.is_strong and part_of[edge.a] == part_of[edge.b]:
            part_edge_types[part_of[edge.a]].add(edge.edge_type)

    resolved: list[Component] = []
    resolved_nodes: set[int] = set()
    for part_index, part in enumerate(parts):
        if len(part) >= config.min_cluster_size:
            resolved.append(_build_component(part, signals, part_edge_types[part_index]))
            resolved_nodes.update(part)
    resolved = _dedupe_existing_keys(resolved, signals)

    candidates: list[Candidate] = []
    for index, signal in enumerate(signals):
        if index in resolved_nodes:
            continue
        candidates.append(
            Candidate(
                activity_id=signal.id,
                current_cluster_id=signal.cluster_id,
                confidence=Confidence.LOW if index in has_edge else Confidence.NONE,
                source=signal.source,
                title=signal.title,
                timestamp=signal.timestamp,
            )
        )

    return HeuristicResult(
        resolved=resolved,
        candidates=candidates,
        edge_counts=dict(edge_counts),
        component_count=len(raw_components),
    )
