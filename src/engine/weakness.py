# ABOUTME: Derives per-skill deficiency scores from a learner's quiz history.
# ABOUTME: Uses recency-weighted correctness so recent attempts dominate the weakness estimate.

from __future__ import annotations

import math
from typing import Iterable, Optional

import pandas as pd

from src.common.config import WeaknessConfig
from src.common.errors import MalformedRecordError
from src.common.schemas import ProgressRecord, WeaknessProfile

ATTEMPT_COLUMNS = ["learner_id", "course_id", "seq", "skill", "score", "timestamp"]


def attempts_frame(history: Iterable[ProgressRecord]) -> pd.DataFrame:
    """Flatten progress records into one row per quiz attempt, ordered by time."""

    rows = []
    for record in history:
        for seq, attempt in enumerate(record.attempts):
            context = f"attempt {seq} of learner '{record.learner_id}' on course '{record.course_id}'"
            if not attempt.skill or not str(attempt.skill).strip():
                raise MalformedRecordError(f"{context} has no skill tag")
            if attempt.timestamp is None:
                raise MalformedRecordError(f"{context} has no timestamp")
            score = float(attempt.score)
            if not math.isfinite(score) or not 0.0 <= score <= 1.0:
                raise MalformedRecordError(f"{context} score {attempt.score!r} outside [0, 1]")
            rows.append(
                {
                    "learner_id": record.learner_id,
                    "course_id": record.course_id,
                    "seq": seq,
                    "skill": str(attempt.skill).strip(),
                    "score": score,
                    "timestamp": attempt.timestamp,
                }
            )

    if not rows:
        return pd.DataFrame(columns=ATTEMPT_COLUMNS)

    df = pd.DataFrame(rows, columns=ATTEMPT_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    # Delivery order is not trusted; re-sort by time with stable tie-breakers.
    return df.sort_values(["timestamp", "course_id", "seq"], kind="mergesort").reset_index(drop=True)


class WeaknessAnalyzer:
    """
    Recency-weighted deficiency per skill.

    Each attempt contributes score * decay**age, where age counts attempts back
    from the most recent one for that skill. The weighted average is normalized
    by the total weight and deficiency = 1 - weighted average. A skill is weak
    when its deficiency exceeds the cutoff and it has at least `min_attempts`
    attempts.
    """

    def __init__(self, config: Optional[WeaknessConfig] = None):
        self.config = config or WeaknessConfig()

    def analyze(self, history: Iterable[ProgressRecord], learner_id: Optional[str] = None) -> WeaknessProfile:
        history = list(history)
        learner_ids = {record.learner_id for record in history}
        if learner_id is not None:
            learner_ids.add(learner_id)
        if len(learner_ids) > 1:
            raise MalformedRecordError(f"Progress history mixes learners: {sorted(learner_ids)}")
        owner = learner_id if learner_id is not None else (learner_ids.pop() if learner_ids else "")

        df = attempts_frame(history)
        if df.empty:
            return WeaknessProfile(learner_id=owner, deficiencies={}, attempt_counts={}, weak_skills=(), as_of=None)

        cfg = self.config
        df["age"] = df.groupby("skill").cumcount(ascending=False)
        df["weight"] = cfg.decay ** df["age"].astype(float)
        df["weighted_score"] = df["score"] * df["weight"]

        grouped = (
            df.groupby("skill", sort=True)
            .agg(
                weighted_score=("weighted_score", "sum"),
                weight=("weight", "sum"),
                attempts=("score", "size"),
            )
            .reset_index()
        )
        grouped["deficiency"] = (1.0 - grouped["weighted_score"] / grouped["weight"]).clip(0.0, 1.0)

        deficiencies = {row.skill: float(row.deficiency) for row in grouped.itertuples(index=False)}
        counts = {row.skill: int(row.attempts) for row in grouped.itertuples(index=False)}
        weak = sorted(
            (
                skill
                for skill, deficiency in deficiencies.items()
                if deficiency > cfg.cutoff and counts[skill] >= cfg.min_attempts
            ),
            key=lambda skill: (-deficiencies[skill], skill),
        )
        return WeaknessProfile(
            learner_id=owner,
            deficiencies=deficiencies,
            attempt_counts=counts,
            weak_skills=tuple(weak),
            as_of=df["timestamp"].max().to_pydatetime(),
        )


def analyze(history: Iterable[ProgressRecord], config: Optional[WeaknessConfig] = None) -> WeaknessProfile:
    """Module-level convenience wrapper around WeaknessAnalyzer."""

    return WeaknessAnalyzer(config).analyze(history)
