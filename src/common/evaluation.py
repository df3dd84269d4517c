# ABOUTME: Offline evaluation of recommendation confidences against logged feedback outcomes.
# ABOUTME: Computes AUC, average precision, calibration error and Brier score.

from __future__ import annotations

from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import average_precision_score, roc_auc_score

SUPPORTED_METRICS = ("auc", "average_precision", "calibration_ece", "brier")


def feedback_predictions(model, extractor, learners: Mapping, graph, events: Iterable) -> pd.DataFrame:
    """
    Score each logged (learner, course) outcome with the model's current snapshot.

    Returns columns ['event_id', 'learner_id', 'course_id', 'y_true', 'y_pred'];
    `y_true` is the outcome mapped to [0, 1] the same way training labels are.
    """

    snapshot = model.snapshot()
    rows = []
    for event in events:
        learner = learners[event.learner_id]
        course = graph.courses[event.course_id]
        learner_vec, course_vec = extractor.extract(learner, course)
        confidence, _ = model.predict(snapshot, learner_vec, course_vec)
        rows.append(
            {
                "event_id": event.event_id,
                "learner_id": event.learner_id,
                "course_id": event.course_id,
                "y_true": model.target_for(event),
                "y_pred": confidence,
            }
        )
    return pd.DataFrame(rows, columns=["event_id", "learner_id", "course_id", "y_true", "y_pred"])


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str], positive_threshold: float = 0.5) -> Mapping[str, float]:
    """
    Evaluate a predictions dataframe using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred']; y_true may be graded in [0, 1].
    metrics : Iterable[str]
        Any of 'auc', 'average_precision', 'calibration_ece', 'brier'.
    positive_threshold : float
        Graded outcomes at or above this value count as positives for ranking metrics.
    """

    metrics = list(metrics)
    for metric in metrics:
        if metric not in SUPPORTED_METRICS:
            raise ValueError(f"Unsupported metric '{metric}'.")
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_graded = predictions["y_true"].astype(float).clip(0.0, 1.0)
    y_true = (y_graded >= positive_threshold).astype(int)
    y_pred = predictions["y_pred"].astype(float).clip(0.0, 1.0)

    results = {}
    for metric in metrics:
        if metric == "auc":
            # Both classes are required; degenerate slices report 0.0.
            results[metric] = 0.0 if y_true.nunique() < 2 else float(roc_auc_score(y_true, y_pred))
        elif metric == "average_precision":
            results[metric] = 0.0 if y_true.sum() == 0 else float(average_precision_score(y_true, y_pred))
        elif metric == "calibration_ece":
            results[metric] = float(_expected_calibration_error(y_graded, y_pred))
        else:
            results[metric] = float(np.mean((y_pred - y_graded) ** 2))
    return results


def _expected_calibration_error(y_true: pd.Series, y_pred: pd.Series, num_bins: int = 10) -> float:
    """Expected calibration error over equal-width confidence bins."""

    bins = np.linspace(0.0, 1.0, num_bins + 1)
    digitized = np.clip(np.digitize(y_pred, bins) - 1, 0, num_bins - 1)
    total = len(y_true)
    ece = 0.0
    for b in range(num_bins):
        mask = digitized == b
        count = int(mask.sum())
        if count == 0:
            continue
        ece += (count / total) * abs(float(y_true[mask].mean()) - float(y_pred[mask].mean()))
    return ece
