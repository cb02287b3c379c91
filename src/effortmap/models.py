"""Core Pydantic models for activity clustering.

Everything here is transient: built once per clustering run and discarded
after the final partition is handed to the persistence layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so aware and naive values compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# -- Inputs ------------------------------------------------------------------


class ActivityRecord(BaseModel):
    """One timestamped record imported from an external tool.

    Owned by the ingestion layer. ``refs`` holds cross-tool references the
    ingestion layer already extracted (ticket keys, PR numbers). ``parent_id``
    is set only when the ingestion layer can prove the record belongs to
    another record (a review comment on a PR, a reply in a doc thread).
    ``cluster_id`` is the store cluster the activity already belongs to, if any.
    """

    id: str
    source: str
    timestamp: datetime
    title: str = ""
    description: str = ""
    refs: list[str] = Field(default_factory=list)
    raw: dict[str, Any] | None = None
    parent_id: str | None = None
    cluster_id: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ActivitySignal(BaseModel):
    """Tool-agnostic clustering signals for one activity."""

    id: str
    source: str
    timestamp: datetime
    title: str = ""
    refs: list[str] = Field(default_factory=list)
    collaborators: list[str] = Field(default_factory=list)
    container: str | None = None
    keywords: list[str] = Field(default_factory=list)
    parent_id: str | None = None
    cluster_id: str | None = None


# -- Graph -------------------------------------------------------------------


class EdgeType(StrEnum):
    """Why two activities were connected, strongest first."""

    EXPLICIT_REF = "explicit-ref"
    CONTAINMENT = "containment"
    CONTAINER = "container"
    COLLABORATOR = "collaborator"
    LEXICAL = "lexical"

    @property
    def is_strong(self) -> bool:
        return self is not EdgeType.LEXICAL


class Edge(BaseModel):
    """Undirected, unweighted edge between two arena indices (``a < b``)."""

    a: int
    b: int
    edge_type: EdgeType


class DateRange(BaseModel):
    """Inclusive time span."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def contains(self, moment: datetime) -> bool:
        return self.start <= _as_utc(moment) <= self.end


class Component(BaseModel):
    """A connected, time-contiguous set of activities.

    ``indices`` point into the signal arena the component was built from.
    """

    key: str
    activity_ids: list[str]
    indices: list[int] = Field(default_factory=list)
    edge_types: list[EdgeType] = Field(default_factory=list)
    shared_refs: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    date_range: DateRange | None = None
    existing_cluster_id: str | None = None

    @property
    def size(self) -> int:
        return len(self.activity_ids)


# -- Refinement --------------------------------------------------------------


class Confidence(StrEnum):
    """How well the heuristic layer placed an activity."""

    NONE = "none"
    LOW = "low"
    HIGH = "high"


class Candidate(BaseModel):
    """An activity offered to the refinement step."""

    activity_id: str
    current_cluster_id: str | None = None
    confidence: Confidence = Confidence.NONE
    source: str = ""
    title: str = ""
    timestamp: datetime | None = None


class ClusterSummary(BaseModel):
    """Compact view of a stored cluster, as shown to the reasoning service."""

    id: str
    name: str = ""
    activity_count: int = 0
    date_range: DateRange | None = None
    tools_involved: list[str] = Field(default_factory=list)
    sample_activity_titles: list[str] = Field(default_factory=list)
    is_referenced_by_candidate: bool = False

    @property
    def last_active(self) -> datetime | None:
        return self.date_range.end if self.date_range else None


class AssignmentAction(StrEnum):
    KEEP = "KEEP"
    MOVE = "MOVE"
    NEW = "NEW"


class Assignment(BaseModel):
    """One refinement decision.

    ``target`` is a cluster id for KEEP/MOVE and a free-text name for NEW.
    """

    activity_id: str
    action: AssignmentAction
    target: str

    @property
    def directive(self) -> str:
        """Wire form, e.g. ``MOVE:cluster-42``."""
        return f"{self.action}:{self.target}"


class RefinementResult(BaseModel):
    """Outcome of one refinement exchange."""

    assignments: dict[str, Assignment] = Field(default_factory=dict)
    used_fallback: bool = False
    attempts: int = 0
    skipped: bool = False
    failure_reasons: list[str] = Field(default_factory=list)


# -- Output ------------------------------------------------------------------


class GroupKind(StrEnum):
    EXISTING = "existing"
    HEURISTIC = "heuristic"
    NEW = "new"


class ClusterGroup(BaseModel):
    """One group of the final partition.

    ``key`` is a store cluster id (EXISTING), a stable heuristic key
    (HEURISTIC) or ``new:<normalized name>`` (NEW).
    """

    key: str
    kind: GroupKind
    name: str | None = None
    activity_ids: list[str] = Field(default_factory=list)


class FinalPartition(BaseModel):
    """Every activity of the run, placed in exactly one group or orphaned."""

    groups: list[ClusterGroup] = Field(default_factory=list)
    orphans: list[str] = Field(default_factory=list)

    def placement(self, activity_id: str) -> str | None:
        """Return the group key holding *activity_id*, or ``None`` if orphaned."""
        for group in self.groups:
            if activity_id in group.activity_ids:
                return group.key
        return None

    def group(self, key: str) -> ClusterGroup | None:
        for group in self.groups:
            if group.key == key:
                return group
        return None

    @property
    def activity_ids(self) -> list[str]:
        ids = [aid for group in self.groups for aid in group.activity_ids]
        ids.extend(self.orphans)
        return ids


class HeuristicResult(BaseModel):
    """Output of the graph builder."""

    resolved: list[Component] = Field(default_factory=list)
    candidates: list[Candidate] = Field(default_factory=list)
    edge_counts: dict[str, int] = Field(default_factory=dict)
    component_count: int = 0


class ClusteringMetrics(BaseModel):
    """Per-run diagnostics."""

    total_activities: int = 0
    filtered_activities: int = 0
    clustered_activities: int = 0
    candidate_count: int = 0
    orphan_count: int = 0
    cluster_count: int = 0
    avg_cluster_size: float = 0.0
    largest_cluster: int = 0
    edge_counts: dict[str, int] = Field(default_factory=dict)
    heuristic_ms: float = 0.0
    refinement_ms: float = 0.0


class ClusteringRun(BaseModel):
    """Everything one run produced, for the persistence layer and for debugging."""

    partition: FinalPartition
    refinement: RefinementResult
    candidates: list[Candidate] = Field(default_factory=list)
    summaries: list[ClusterSummary] = Field(default_factory=list)
    metrics: ClusteringMetrics = Field(default_factory=ClusteringMetrics)
