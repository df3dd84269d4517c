# ABOUTME: Holds the tunable constants of every engine component as frozen dataclasses.
# ABOUTME: Loads them from a YAML file so deployments can override thresholds without code changes.

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml


@dataclass(frozen=True)
class FeatureConfig:
    """Feature extraction settings."""

    hash_buckets: int = 16
    max_difficulty_tier: int = 5
    duration_scale: float = 40.0
    prerequisite_scale: float = 5.0
    interaction_scale: float = 50.0
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 10_000

    def __post_init__(self) -> None:
        if self.hash_buckets < 1:
            raise ValueError("hash_buckets must be positive")
        if self.max_difficulty_tier < 1:
            raise ValueError("max_difficulty_tier must be >= 1")
        for name in ("duration_scale", "prerequisite_scale", "interaction_scale", "cache_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass(frozen=True)
class WeaknessConfig:
    """Recency-weighted deficiency settings."""

    decay: float = 0.8
    cutoff: float = 0.6
    min_attempts: int = 2

    def __post_init__(self) -> None:
        if not 0.0 < self.decay < 1.0:
            raise ValueError("decay must lie in (0, 1)")
        if not 0.0 <= self.cutoff <= 1.0:
            raise ValueError("cutoff must lie in [0, 1]")
        if self.min_attempts < 1:
            raise ValueError("min_attempts must be >= 1")


@dataclass(frozen=True)
class ModelConfig:
    """Scoring model and snapshot settings."""

    learning_rate: float = 0.2
    lr_decay: float = 0.05
    max_step: float = 0.5
    weight_clip: float = 10.0
    l2: float = 1e-3
    cold_start_threshold: int = 5
    retention_versions: int = 16
    prior_alpha: float = 1.0
    prior_beta: float = 1.0
    prior_fit_weight: float = 0.5
    rating_scale: float = 5.0

    def __post_init__(self) -> None:
        for name in ("learning_rate", "max_step", "weight_clip", "rating_scale"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.lr_decay < 0 or self.l2 < 0:
            raise ValueError("lr_decay and l2 must be non-negative")
        if self.cold_start_threshold < 0:
            raise ValueError("cold_start_threshold must be non-negative")
        if self.retention_versions < 1:
            raise ValueError("retention_versions must be >= 1")
        if self.prior_alpha <= 0 or self.prior_beta <= 0:
            raise ValueError("prior pseudo-counts must be positive")
        if not 0.0 <= self.prior_fit_weight <= 1.0:
            raise ValueError("prior_fit_weight must lie in [0, 1]")


@dataclass(frozen=True)
class PlannerConfig:
    """Path optimizer settings."""

    goal_threshold: float = 0.7
    remediation_penalty: float = 5.0
    remediation_weight: float = 4.0
    max_expansions: int = 50_000

    def __post_init__(self) -> None:
        if not 0.0 < self.goal_threshold <= 1.0:
            raise ValueError("goal_threshold must lie in (0, 1]")
        if self.remediation_penalty < 0 or self.remediation_weight < 0:
            raise ValueError("remediation terms must be non-negative")
        if self.max_expansions < 1:
            raise ValueError("max_expansions must be >= 1")


@dataclass(frozen=True)
class IngestConfig:
    """Feedback queue sizes and worker counts."""

    learner_queue_size: int = 32
    model_queue_size: int = 1024
    weakness_workers: int = 4
    completion_threshold: float = 1.0
    dedupe_window_seconds: float = 86_400.0
    dedupe_max_entries: int = 1_000_000

    def __post_init__(self) -> None:
        if self.learner_queue_size < 1 or self.model_queue_size < 1:
            raise ValueError("queue sizes must be >= 1")
        if self.weakness_workers < 1:
            raise ValueError("weakness_workers must be >= 1")
        if not 0.0 < self.completion_threshold <= 1.0:
            raise ValueError("completion_threshold must lie in (0, 1]")
        if self.dedupe_window_seconds <= 0 or self.dedupe_max_entries < 1:
            raise ValueError("dedupe window and size must be positive")


@dataclass(frozen=True)
class EngineConfig:
    features: FeatureConfig = field(default_factory=FeatureConfig)
    weakness: WeaknessConfig = field(default_factory=WeaknessConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)


_SECTIONS = {
    "features": FeatureConfig,
    "weakness": WeaknessConfig,
    "model": ModelConfig,
    "planner": PlannerConfig,
    "ingest": IngestConfig,
}


def engine_config_from_dict(raw: Optional[Mapping[str, Any]]) -> EngineConfig:
    """Build an EngineConfig from a nested mapping, rejecting unknown keys."""

    raw = raw or {}
    unknown = set(raw) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        values = raw.get(name) or {}
        allowed = {f.name for f in fields(section_cls)}
        extra = set(values) - allowed
        if extra:
            raise ValueError(f"Unknown key(s) in '{name}': {', '.join(sorted(extra))}")
        sections[name] = section_cls(**values)
    return EngineConfig(**sections)


def load_engine_config(config_path: Optional[Path]) -> EngineConfig:
    """Read an engine YAML config; a missing path yields the defaults."""

    if config_path is None:
        return EngineConfig()
    with open(config_path) as f:
        cfg = yaml.safe_load(f)
    return engine_config_from_dict(cfg)
