"""Unified configuration loaded from .effortmap.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".effortmap.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "effortmap" / "config.toml"


class ClusteringConfig(BaseModel):
    """[clustering] section — heuristic graph thresholds."""

    collaborator_min_shared: int = Field(default=2, ge=1)
    collaborator_window_days: float = Field(default=30, gt=0)
    lexical_min_shared: int = Field(default=2, ge=1)
    lexical_window_days: float = Field(default=30, gt=0)
    temporal_gap_days: float = Field(default=14, gt=0)
    min_cluster_size: int = Field(default=2, ge=2)


class CandidatesConfig(BaseModel):
    """[candidates] section."""

    recency_days: int = Field(default=30, ge=0)
    sample_titles: int = Field(default=3, ge=0)
    double_check_high: bool = False


class RefinementConfig(BaseModel):
    """[refinement] section."""

    enabled: bool = True
    model: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    backend: Literal["api", "cli"] = "api"


class IdentityConfig(BaseModel):
    """[identity] section — who the acting user is."""

    self_identities: list[str] = Field(default_factory=list)


class EffortmapConfig(BaseModel):
    """Top-level configuration model."""

    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    candidates: CandidatesConfig = Field(default_factory=CandidatesConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)


def load_config(path: str | Path | None = None) -> EffortmapConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .effortmap.toml in CWD
    3. ~/.config/effortmap/config.toml

    Then overlay environment variables.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged EffortmapConfig.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG_PATH.exists():
            data = _load_toml(GLOBAL_CONFIG_PATH)
            logger.info("Loaded config from %s", GLOBAL_CONFIG_PATH)

    config = EffortmapConfig.model_validate(data) if data else EffortmapConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: EffortmapConfig, **cli_kwargs: object) -> EffortmapConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "model": ("refinement", "model"),
        "timeout": ("refinement", "timeout_seconds"),
        "backend": ("refinement", "backend"),
        "refine": ("refinement", "enabled"),
        "self_identities": ("identity", "self_identities"),
        "temporal_gap_days": ("clustering", "temporal_gap_days"),
        "recency_days": ("candidates", "recency_days"),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        if isinstance(value, list | tuple) and not value:
            continue
        section, field = mapping[key]
        data[section][field] = list(value) if isinstance(value, tuple) else value

    return EffortmapConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: EffortmapConfig) -> EffortmapConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "EFFORTMAP_MODEL": ("refinement", "model"),
        "EFFORTMAP_REFINE_TIMEOUT": ("refinement", "timeout_seconds"),
        "EFFORTMAP_REFINE_BACKEND": ("refinement", "backend"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None and value.strip():
            data[section][field] = value.strip()

    enabled_raw = os.environ.get("EFFORTMAP_REFINEMENT_ENABLED")
    if enabled_raw is not None:
        data["refinement"]["enabled"] = enabled_raw.lower() in ("true", "1", "yes")

    self_raw = os.environ.get("EFFORTMAP_SELF")
    if self_raw is not None:
        data["identity"]["self_identities"] = [
            s.strip() for s in self_raw.split(",") if s.strip()
        ]

    return EffortmapConfig.model_validate(data)
