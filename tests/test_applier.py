"""Tests for effortmap.applier — building the final partition."""

from __future__ import annotations

import pytest

from effortmap.applier import apply_assignments, initial_partition, new_cluster_key
from effortmap.models import (
    Assignment,
    AssignmentAction,
    Candidate,
    Component,
    GroupKind,
)


def _assign(activity_id: str, directive: str) -> Assignment:
    action, target = directive.split(":", 1)
    return Assignment(activity_id=activity_id, action=AssignmentAction(action), target=target)


RESOLVED = [
    Component(key="heuristic-abc", activity_ids=["r1", "r2"]),
    Component(key="c-7", activity_ids=["r3", "r4"], existing_cluster_id="c-7"),
]
WEAK = [
    Candidate(activity_id="w1", current_cluster_id="c-1"),
    Candidate(activity_id="w2"),
    Candidate(activity_id="w3"),
]
NAMES = {"c-1": "Billing", "c-7": "Auth", "c-9": "Search"}


class TestNewClusterKey:
    def test_normalized(self) -> None:
        assert new_cluster_key("  Search   Revamp ") == "new:search revamp"
        assert new_cluster_key("SEARCH revamp") == new_cluster_key("search Revamp")


class TestInitialPartition:
    def test_heuristic_placement(self) -> None:
        partition = initial_partition(RESOLVED, WEAK, NAMES)

        assert partition.group("heuristic-abc").kind is GroupKind.HEURISTIC
        assert partition.group("c-7").kind is GroupKind.EXISTING
        assert partition.group("c-7").name == "Auth"
        assert partition.placement("w1") == "c-1"
        assert partition.group("c-1").name == "Billing"
        assert partition.orphans == ["w2", "w3"]


class TestApplyAssignments:
    def test_keep_move_new(self) -> None:
        assignments = {
            "w1": _assign("w1", "KEEP:c-1"),
            "w2": _assign("w2", "MOVE:c-9"),
            "w3": _assign("w3", "NEW:Search Revamp"),
        }

        partition = apply_assignments(RESOLVED, WEAK, assignments, NAMES)

        assert partition.placement("w1") == "c-1"
        assert partition.placement("w2") == "c-9"
        assert partition.group("c-9").name == "Search"
        new_group = partition.group("new:search revamp")
        assert new_group.kind is GroupKind.NEW
        assert new_group.name == "Search Revamp"
        assert partition.orphans == []

    def test_same_new_name_shares_a_group(self) -> None:
        assignments = {
            "w2": _assign("w2", "NEW:Search revamp"),
            "w3": _assign("w3", "NEW:search  REVAMP"),
        }

        partition = apply_assignments(RESOLVED, WEAK, assignments, NAMES)

        group = partition.group("new:search revamp")
        assert group.activity_ids == ["w2", "w3"]
        assert group.name == "Search revamp"

    def test_move_out_of_existing_drops_empty_group(self) -> None:
        assignments = {"w1": _assign("w1", "MOVE:c-7")}

        partition = apply_assignments(RESOLVED, WEAK, assignments, NAMES)

        assert partition.group("c-1") is None
        assert partition.group("c-7").activity_ids == ["r3", "r4", "w1"]

    def test_every_activity_placed_exactly_once(self) -> None:
        assignments = {
            "w1": _assign("w1", "MOVE:c-7"),
            "w2": _assign("w2", "NEW:x"),
            "w3": _assign("w3", "NEW:x"),
            "r1": _assign("r1", "NEW:y"),
        }

        partition = apply_assignments(RESOLVED, WEAK, assignments, NAMES)

        ids = partition.activity_ids
        assert sorted(ids) == ["r1", "r2", "r3", "r4", "w1", "w2", "w3"]
        assert len(ids) == len(set(ids))

    def test_unknown_activity_rejected(self) -> None:
        with pytest.raises(ValueError, match="zz"):
            apply_assignments(RESOLVED, WEAK, {"zz": _assign("zz", "NEW:x")})
