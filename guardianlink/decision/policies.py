"""
GuardianLink Scoring Policies

Aggregation policies turn per-phase evidence into one bounded score;
verdict policies map that score onto ALLOW / WARN / BLOCK. Both are named
objects resolved from configuration, so the canonical scheme and the
alternatives can be swapped without touching the engine.

Canonical:
- phase_sum: unweighted sum of phase scores against their point budgets
- safety_percentage: >= 80% safe -> ALLOW, >= 50% -> WARN, else BLOCK

Alternatives:
- weighted_factors: risk = sum(weight * phase risk) over weighted phases
- risk_score: 0-100 risk bands (75 / 55 / 35 / 15)
"""

import math
from dataclasses import dataclass
from typing import Dict, Mapping, NamedTuple, Optional, Tuple

from guardianlink.decision.models import EvidenceResult, RiskLevel, Verdict


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


@dataclass(frozen=True)
class AggregateScore:
    """Output of an aggregation policy.

    ``percentage`` is the safety percentage (higher is safer) and ``risk``
    its complement on the 0-100 risk scale. Both are clamped to [0, 100].
    """

    total: float
    max_total: float
    percentage: int
    risk: int


# =============================================================================
# Aggregation policies
# =============================================================================


class AggregationPolicy:
    name = "base"

    def aggregate(self, phases: Mapping[str, EvidenceResult]) -> AggregateScore:
        raise NotImplementedError

    @staticmethod
    def _phase_totals(phases: Mapping[str, EvidenceResult]) -> Tuple[float, float]:
        total = sum(p.clamped_score for p in phases.values())
        max_total = sum(max(p.max_score, 0.0) for p in phases.values())
        return total, max_total


class PhaseSumAggregation(AggregationPolicy):
    """Unweighted phase sum. Unavailable phases count as returned."""

    name = "phase_sum"

    def aggregate(self, phases: Mapping[str, EvidenceResult]) -> AggregateScore:
        total, max_total = self._phase_totals(phases)
        if max_total <= 0:
            return AggregateScore(total=total, max_total=max_total, percentage=0, risk=100)
        percentage = int(clamp(round_half_up(100.0 * total / max_total), 0, 100))
        return AggregateScore(
            total=total,
            max_total=max_total,
            percentage=percentage,
            risk=100 - percentage,
        )


class WeightedFactorAggregation(AggregationPolicy):
    """Weighted risk over selected phases.

    Each weighted phase contributes ``weight * 100 * (1 - score / max)``.
    Weights are not normalized; phases without a weight are ignored.
    """

    name = "weighted_factors"

    DEFAULT_WEIGHTS = {"heuristics": 0.5, "reputation": 0.4, "tld": 0.1}

    def __init__(self, weights: Optional[Mapping[str, float]] = None):
        self.weights: Dict[str, float] = dict(weights if weights is not None else self.DEFAULT_WEIGHTS)

    def aggregate(self, phases: Mapping[str, EvidenceResult]) -> AggregateScore:
        total, max_total = self._phase_totals(phases)
        risk = 0.0
        for name, weight in self.weights.items():
            phase = phases.get(name)
            if phase is None or not phase.available or phase.max_score <= 0:
                continue
            phase_risk = 100.0 * (1.0 - phase.clamped_score / phase.max_score)
            risk += weight * phase_risk

        risk_score = int(clamp(round_half_up(risk), 0, 100))
        return AggregateScore(
            total=total,
            max_total=max_total,
            percentage=100 - risk_score,
            risk=risk_score,
        )


# =============================================================================
# Verdict policies
# =============================================================================


class VerdictBand(NamedTuple):
    threshold: float
    verdict: Verdict
    risk_level: RiskLevel


class VerdictPolicy:
    """Ordered threshold bands; the first band whose threshold is met wins."""

    name = "base"
    # "percentage" (higher is safer) or "risk" (higher is worse)
    metric = "percentage"
    bands: Tuple[VerdictBand, ...] = ()
    fallback: Tuple[Verdict, RiskLevel] = (Verdict.BLOCK, RiskLevel.CRITICAL)

    def score_for(self, aggregate: AggregateScore) -> int:
        return aggregate.percentage if self.metric == "percentage" else aggregate.risk

    def classify(self, value: float) -> Tuple[Verdict, RiskLevel]:
        for band in self.bands:
            if value >= band.threshold:
                return band.verdict, band.risk_level
        return self.fallback

    def decide(self, aggregate: AggregateScore) -> Tuple[Verdict, RiskLevel]:
        return self.classify(self.score_for(aggregate))


class SafetyPercentagePolicy(VerdictPolicy):
    name = "safety_percentage"
    metric = "percentage"
    bands = (
        VerdictBand(80, Verdict.ALLOW, RiskLevel.SAFE),
        VerdictBand(50, Verdict.WARN, RiskLevel.MEDIUM),
    )
    fallback = (Verdict.BLOCK, RiskLevel.CRITICAL)


class RiskScorePolicy(VerdictPolicy):
    name = "risk_score"
    metric = "risk"
    bands = (
        VerdictBand(75, Verdict.BLOCK, RiskLevel.CRITICAL),
        VerdictBand(55, Verdict.BLOCK, RiskLevel.HIGH),
        VerdictBand(35, Verdict.WARN, RiskLevel.MEDIUM),
        VerdictBand(15, Verdict.WARN, RiskLevel.LOW),
    )
    fallback = (Verdict.ALLOW, RiskLevel.SAFE)


# =============================================================================
# Registries
# =============================================================================


VERDICT_POLICIES = {
    SafetyPercentagePolicy.name: SafetyPercentagePolicy,
    RiskScorePolicy.name: RiskScorePolicy,
}

AGGREGATION_POLICIES = {
    PhaseSumAggregation.name: PhaseSumAggregation,
    WeightedFactorAggregation.name: WeightedFactorAggregation,
}


def get_verdict_policy(name: str) -> VerdictPolicy:
    """Resolve a verdict policy by name.

    Raises:
        ValueError: for an unknown policy name.
    """
    key = getattr(name, "value", name)
    try:
        return VERDICT_POLICIES[key]()
    except KeyError:
        raise ValueError(
            f"Unknown verdict policy '{key}'. Available: {', '.join(sorted(VERDICT_POLICIES))}"
        ) from None


def get_aggregation_policy(name: str, weights: Optional[Mapping[str, float]] = None) -> AggregationPolicy:
    """Resolve an aggregation policy by name.

    Raises:
        ValueError: for an unknown policy name.
    """
    key = getattr(name, "value", name)
    if key == WeightedFactorAggregation.name:
        return WeightedFactorAggregation(weights)
    try:
        return AGGREGATION_POLICIES[key]()
    except KeyError:
        raise ValueError(
            f"Unknown aggregation policy '{key}'. "
            f"Available: {', '.join(sorted(AGGREGATION_POLICIES))}"
        ) from None
