# ABOUTME: Parses raw learner, course and feedback mappings into canonical records.
# ABOUTME: Loads YAML fixtures for demos and rejects incomplete records instead of defaulting them.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping

import pandas as pd
import yaml

from .errors import MalformedRecordError
from .schemas import CourseNode, FeedbackEvent, LearnerProfile, Outcome


@dataclass(frozen=True)
class Fixture:
    """Catalog, learners and feedback loaded from a single YAML document."""

    courses: List[CourseNode]
    learners: List[LearnerProfile]
    events: List[FeedbackEvent]


def parse_learner_record(raw: Mapping[str, Any]) -> LearnerProfile:
    learner_id = _require(raw, ("learner_id", "id"), "learner")
    skills = _parse_skill_map(_require(raw, ("skills",), f"learner '{learner_id}'"), f"learner '{learner_id}'")
    for tag, value in skills.items():
        if not 0.0 <= value <= 1.0:
            raise MalformedRecordError(f"learner '{learner_id}' proficiency for '{tag}' outside [0, 1]: {value}")
    goals = raw.get("goals") or []
    if isinstance(goals, str):
        goals = [goals]
    interaction_count = _number(raw.get("interaction_count", 0), int, "interaction_count", f"learner '{learner_id}'")
    if interaction_count < 0:
        raise MalformedRecordError(f"learner '{learner_id}' has negative interaction_count")
    return LearnerProfile(
        learner_id=str(learner_id),
        skills=skills,
        goals=frozenset(str(g).strip() for g in goals if str(g).strip()),
        learning_style=str(raw.get("learning_style", "unspecified")),
        interaction_count=interaction_count,
    )


def parse_course_record(raw: Mapping[str, Any]) -> CourseNode:
    course_id = str(_require(raw, ("course_id", "id"), "course"))
    context = f"course '{course_id}'"
    gains = _parse_skill_map(_require(raw, ("skill_gains", "skills"), context), context)
    if not gains:
        raise MalformedRecordError(f"{context} teaches no skills")
    for tag, gain in gains.items():
        if gain <= 0:
            raise MalformedRecordError(f"{context} skill gain for '{tag}' must be positive")
    duration = _number(_require(raw, ("duration",), context), float, "duration", context)
    if not math.isfinite(duration) or duration <= 0:
        raise MalformedRecordError(f"{context} duration must be a positive number")
    difficulty = _number(_require(raw, ("difficulty",), context), int, "difficulty", context)
    if difficulty < 1:
        raise MalformedRecordError(f"{context} difficulty tier must be >= 1")
    prereqs = raw.get("prerequisites") or []
    return CourseNode(
        course_id=course_id,
        skill_gains=gains,
        prerequisites=frozenset(str(p) for p in prereqs),
        duration=duration,
        difficulty=difficulty,
    )


def parse_feedback_event(raw: Mapping[str, Any]) -> FeedbackEvent:
    event_id = str(_require(raw, ("event_id", "id"), "event"))
    context = f"event '{event_id}'"
    outcome_raw = str(_require(raw, ("outcome",), context)).strip().lower()
    try:
        outcome = Outcome(outcome_raw)
    except ValueError as exc:
        raise MalformedRecordError(f"{context} has unknown outcome '{outcome_raw}'") from exc
    skill = raw.get("skill")
    return FeedbackEvent(
        event_id=event_id,
        learner_id=str(_require(raw, ("learner_id", "learner"), context)),
        course_id=str(_require(raw, ("course_id", "course"), context)),
        outcome=outcome,
        timestamp=_parse_timestamp(_require(raw, ("timestamp",), context), context),
        value=_number(raw.get("value", 1.0), float, "value", context),
        skill=str(skill).strip() if skill else None,
        time_spent=_number(raw.get("time_spent", 0.0), float, "time_spent", context),
        lesson_id=str(raw["lesson_id"]) if raw.get("lesson_id") else None,
    )


def load_fixture(path: Path) -> Fixture:
    """Read courses, learners and events from a YAML fixture file."""

    with open(path) as f:
        doc = yaml.safe_load(f) or {}
    return Fixture(
        courses=[parse_course_record(item) for item in doc.get("courses", [])],
        learners=[parse_learner_record(item) for item in doc.get("learners", [])],
        events=[parse_feedback_event(item) for item in doc.get("events", [])],
    )


def _require(raw: Mapping[str, Any], keys, context: str):
    if not isinstance(raw, Mapping):
        raise MalformedRecordError(f"{context} record must be a mapping")
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    raise MalformedRecordError(f"{context} is missing required field '{keys[0]}'")


def _parse_skill_map(value: Any, context: str) -> Dict[str, float]:
    if not isinstance(value, Mapping):
        raise MalformedRecordError(f"{context} skill map must be a mapping of tag -> number")
    parsed: Dict[str, float] = {}
    for tag, amount in value.items():
        name = str(tag).strip()
        if not name:
            raise MalformedRecordError(f"{context} has an empty skill tag")
        try:
            number = float(amount)
        except (TypeError, ValueError) as exc:
            raise MalformedRecordError(f"{context} skill '{name}' is not numeric: {amount!r}") from exc
        if not math.isfinite(number):
            raise MalformedRecordError(f"{context} skill '{name}' is not finite")
        parsed[name] = number
    return parsed


def _parse_timestamp(value: Any, context: str) -> datetime:
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRecordError(f"{context} has an unparseable timestamp {value!r}") from exc
    if pd.isna(ts):
        raise MalformedRecordError(f"{context} has an empty timestamp")
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone.utc)
    return ts.tz_convert(timezone.utc).to_pydatetime()


def _number(value: Any, cast, field: str, context: str):
    if isinstance(value, bool):
        raise MalformedRecordError(f"{context} field '{field}' is not numeric: {value!r}")
    try:
        number = cast(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedRecordError(f"{context} field '{field}' is not numeric: {value!r}") from exc
    if cast is int and isinstance(value, float) and number != value:
        raise MalformedRecordError(f"{context} field '{field}' must be an integer: {value!r}")
    return number
