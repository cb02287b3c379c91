"""Turn heuristic clusters plus refinement assignments into the final partition."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from effortmap.models import (
    Assignment,
    AssignmentAction,
    Candidate,
    ClusterGroup,
    Component,
    FinalPartition,
    GroupKind,
)

logger = logging.getLogger(__name__)

NEW_KEY_PREFIX = "new:"


def new_cluster_key(name: str) -> str:
    """Key for a freshly named cluster; names differing only in case/spacing share it."""
    return NEW_KEY_PREFIX + " ".join(name.split()).casefold()


class _PartitionBuilder:
    """Mutable membership bookkeeping: each activity sits in at most one group."""

    def __init__(self, cluster_names: Mapping[str, str]) -> None:
        self._cluster_names = cluster_names
        self._groups: dict[str, ClusterGroup] = {}
        self._placement: dict[str, str | None] = {}

    def _ensure_group(self, key: str, kind: GroupKind, name: str | None) -> ClusterGroup:
        group = self._groups.get(key)
        if group is None:
            group = ClusterGroup(key=key, kind=kind, name=name)
            self._groups[key] = group
        return group

    def place(self, activity_id: str, key: str, kind: GroupKind, name: str | None = None) -> None:
        self.remove(activity_id)
        if kind is GroupKind.EXISTING and name is None:
            name = self._cluster_names.get(key)
        self._ensure_group(key, kind, name).activity_ids.append(activity_id)
        self._placement[activity_id] = key

    def orphan(self, activity_id: str) -> None:
        self.remove(activity_id)
        self._placement[activity_id] = None

    def remove(self, activity_id: str) -> None:
        key = self._placement.get(activity_id)
        if key is not None:
            self._groups[key].activity_ids.remove(activity_id)
        self._placement.pop(activity_id, None)

    def knows(self, activity_id: str) -> bool:
        return activity_id in self._placement

    def build(self) -> FinalPartition:
        groups = [g for g in self._groups.values() if g.activity_ids]
        orphans = [aid for aid, key in self._placement.items() if key is None]
        return FinalPartition(groups=groups, orphans=orphans)


def _seed(
    resolved: list[Component],
    weak: list[Candidate],
    cluster_names: Mapping[str, str],
) -> _PartitionBuilder:
    builder = _PartitionBuilder(cluster_names)
    for component in resolved:
        kind = GroupKind.EXISTING if component.existing_cluster_id else GroupKind.HEURISTIC
        for activity_id in component.activity_ids:
            builder.place(activity_id, component.key, kind)
    for candidate in weak:
        if builder.knows(candidate.activity_id):
            continue
        if candidate.current_cluster_id:
            builder.place(candidate.activity_id, candidate.current_cluster_id, GroupKind.EXISTING)
        else:
            builder.orphan(candidate.activity_id)
    return builder


def initial_partition(
    resolved: list[Component],
    weak: list[Candidate],
    cluster_names: Mapping[str, str] | None = None,
) -> FinalPartition:
    """Heuristic-only placement: resolved clusters, existing memberships, orphans."""
    return _seed(resolved, weak, cluster_names or {}).build()


def apply_assignments(
    resolved: list[Component],
    weak: list[Candidate],
    assignments: Mapping[str, Assignment],
    cluster_names: Mapping[str, str] | None = None,
) -> FinalPartition:
    """Apply KEEP / MOVE / NEW decisions on top of the heuristic placement.

    Args:
        resolved: Heuristic clusters.
        weak: Candidates the heuristic layer could not place.
        assignments: Validated refinement decisions keyed by activity id.
        cluster_names: Display names for existing cluster ids.

    Raises:
        ValueError: If an assignment names an activity outside this run.
    """
    builder = _seed(resolved, weak, cluster_names or {})

    for activity_id, assignment in assignments.items():
        if not builder.knows(activity_id):
            raise ValueError(f"Assignment for unknown activity {activity_id!r}")
        if assignment.action is AssignmentAction.KEEP:
            continue
        if assignment.action is AssignmentAction.MOVE:
            builder.place(activity_id, assignment.target, GroupKind.EXISTING)
        else:
            name = " ".join(assignment.target.split())
            builder.place(activity_id, new_cluster_key(name), GroupKind.NEW, name)

    partition = builder.build()
    logger.debug(
        "Final partition: %d groups, %d orphans",
        len(partition.groups),
        len(partition.orphans),
    )
    return partition
