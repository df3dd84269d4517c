# ABOUTME: Tracks population-level course outcomes used to score cold-start learners.
# ABOUTME: Blends Beta-smoothed success rates with a difficulty-fit term; instances are immutable.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Tuple


@dataclass(frozen=True)
class PopulationPrior:
    """Per-course (trials, successes) totals. `observe` returns a new prior."""

    outcomes: Mapping[str, Tuple[int, float]] = field(default_factory=dict)

    def trials(self, course_id: str) -> int:
        return self.outcomes.get(course_id, (0, 0.0))[0]

    def success_rate(self, course_id: str, alpha: float = 1.0, beta: float = 1.0) -> float:
        """Posterior mean of a Beta(alpha, beta) prior after the observed outcomes."""

        trials, successes = self.outcomes.get(course_id, (0, 0.0))
        return (successes + alpha) / (trials + alpha + beta)

    def observe(self, course_id: str, outcome: float) -> "PopulationPrior":
        trials, successes = self.outcomes.get(course_id, (0, 0.0))
        updated: Dict[str, Tuple[int, float]] = dict(self.outcomes)
        updated[course_id] = (trials + 1, successes + float(outcome))
        return PopulationPrior(outcomes=updated)

    def score(
        self,
        course_id: str,
        course_difficulty: float,
        learner_proficiency: float,
        alpha: float = 1.0,
        beta: float = 1.0,
        fit_weight: float = 0.5,
    ) -> float:
        """
        Cold-start confidence for a course.

        Courses whose normalized difficulty sits close to the learner's mean
        proficiency fit better; the rest comes from how the population fared.
        """

        fit = 1.0 - min(1.0, abs(course_difficulty - learner_proficiency))
        rate = self.success_rate(course_id, alpha, beta)
        return (1.0 - fit_weight) * rate + fit_weight * fit
