"""Activity clustering — work activity from many tools -> coherent efforts.

Public API re-exports.
"""

from effortmap.applier import apply_assignments, initial_partition
from effortmap.candidates import ClusterStore, select_candidates
from effortmap.config import EffortmapConfig, load_config
from effortmap.graph import build_clusters, find_components, split_by_time_gap
from effortmap.models import (
    ActivityRecord,
    ActivitySignal,
    Assignment,
    AssignmentAction,
    Candidate,
    ClusterGroup,
    ClusteringRun,
    ClusterSummary,
    Component,
    Confidence,
    DateRange,
    EdgeType,
    FinalPartition,
    GroupKind,
    RefinementResult,
)
from effortmap.pipeline import cluster_activities
from effortmap.refinement import (
    RefinementClient,
    RefinementValidationError,
    validate_response,
)
from effortmap.signals import extract, extract_all
from effortmap.store import InMemoryClusterStore, JsonClusterStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # models
    "ActivityRecord",
    "ActivitySignal",
    "Assignment",
    "AssignmentAction",
    "Candidate",
    "ClusterGroup",
    "ClusterSummary",
    "ClusteringRun",
    "Component",
    "Confidence",
    "DateRange",
    "EdgeType",
    "FinalPartition",
    "GroupKind",
    "RefinementResult",
    # config
    "EffortmapConfig",
    "load_config",
    # signals
    "extract",
    "extract_all",
    # graph
    "build_clusters",
    "find_components",
    "split_by_time_gap",
    # candidates / store
    "ClusterStore",
    "InMemoryClusterStore",
    "JsonClusterStore",
    "select_candidates",
    # refinement
    "RefinementClient",
    "RefinementValidationError",
    "validate_response",
    # applier / pipeline
    "apply_assignments",
    "initial_partition",
    "cluster_activities",
]
