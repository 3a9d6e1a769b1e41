"""
GuardianLink Heuristic Evaluator

Matches the active rule set against a URL's signal set and maps the summed
suspicion onto the heuristics phase score (higher is safer).

A rule matches only when every one of its conditions holds. Suspicion is
the sum of matched rules' score_impact; the phase score is

    max(0, max_score - min(total_suspicion, max_score))

and the status is danger at 30 points of suspicion, warning at 10.
"""

import logging
from typing import Any, List, Mapping, Optional

from guardianlink.heuristics.conditions import check_condition_value, rule_matches
from guardianlink.heuristics.schemas import (
    HeuristicEvaluation,
    MatchedRule,
    ValidationProblem,
)
from guardianlink.heuristics.store import HeuristicRuleStore
from guardianlink.signals import extract_signals

logger = logging.getLogger(__name__)


class HeuristicEvaluator:
    """Conjunctive rule matching and suspicion scoring."""

    DEFAULT_MAX_SCORE = 25
    DEFAULT_WARNING_THRESHOLD = 10
    DEFAULT_DANGER_THRESHOLD = 30

    def __init__(
        self,
        store: HeuristicRuleStore,
        max_score: int = DEFAULT_MAX_SCORE,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        danger_threshold: float = DEFAULT_DANGER_THRESHOLD,
    ):
        self.store = store
        self.max_score = max_score
        self.warning_threshold = warning_threshold
        self.danger_threshold = danger_threshold

    def evaluate(self, url: str, context: Optional[Mapping[str, Any]] = None) -> HeuristicEvaluation:
        """Extract signals for a URL and evaluate them."""
        return self.evaluate_signals(extract_signals(url, context))

    def evaluate_signals(self, signals: Mapping[str, Any]) -> HeuristicEvaluation:
        matched: List[MatchedRule] = []
        total_suspicion = 0.0

        for rule in self.store.get_active_rules():
            if not rule_matches(rule.conditions, signals):
                continue
            matched.append(MatchedRule(
                id=rule.id,
                score_impact=rule.score_impact,
                description=rule.description,
                severity=rule.severity,
            ))
            total_suspicion += rule.score_impact

        capped = min(total_suspicion, self.max_score)
        score = max(0, round(self.max_score - capped))

        if total_suspicion >= self.danger_threshold:
            status = "danger"
        elif total_suspicion >= self.warning_threshold:
            status = "warning"
        else:
            status = "safe"

        if matched:
            logger.debug(
                "Heuristics matched %d rule(s), suspicion=%s status=%s",
                len(matched), total_suspicion, status,
            )

        return HeuristicEvaluation(
            matched=matched,
            total_suspicion=total_suspicion,
            score=score,
            max_score=self.max_score,
            status=status,
        )

    def validate(self) -> List[ValidationProblem]:
        """Report rules that can never match or that collide.

        Checks: missing id, duplicate id, empty condition set, unknown
        condition key, and condition values of the wrong type.
        """
        problems: List[ValidationProblem] = []
        seen = set()

        for idx, rule in enumerate(self.store.get_all()):
            rule_id = rule.id or None
            if not rule_id:
                problems.append(ValidationProblem(idx=idx, problem="missing id"))
            elif rule_id in seen:
                problems.append(ValidationProblem(idx=idx, id=rule_id, problem="duplicate id"))
            if rule_id:
                seen.add(rule_id)

            if not rule.conditions:
                problems.append(ValidationProblem(idx=idx, id=rule_id, problem="no conditions"))

            for key, value in rule.conditions.items():
                problem = check_condition_value(key, value)
                if problem:
                    problems.append(ValidationProblem(idx=idx, id=rule_id, problem=problem))

        return problems
