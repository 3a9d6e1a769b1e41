"""
GuardianLink decision engine: evidence aggregation and verdict policies.
"""

from guardianlink.decision.engine import (
    SCAN_FAILED_REASON,
    SCAN_TIMEOUT_REASON,
    DecisionEngine,
    default_safe_decision,
    is_whitelisted,
    normalize_phases,
)
from guardianlink.decision.models import (
    Decision,
    EvidenceResult,
    PhaseStatus,
    RiskLevel,
    Verdict,
)
from guardianlink.decision.policies import (
    AggregateScore,
    PhaseSumAggregation,
    RiskScorePolicy,
    SafetyPercentagePolicy,
    WeightedFactorAggregation,
    get_aggregation_policy,
    get_verdict_policy,
)

__all__ = [
    "AggregateScore",
    "Decision",
    "DecisionEngine",
    "EvidenceResult",
    "PhaseStatus",
    "PhaseSumAggregation",
    "RiskLevel",
    "RiskScorePolicy",
    "SCAN_FAILED_REASON",
    "SCAN_TIMEOUT_REASON",
    "SafetyPercentagePolicy",
    "Verdict",
    "WeightedFactorAggregation",
    "default_safe_decision",
    "get_aggregation_policy",
    "get_verdict_policy",
    "is_whitelisted",
    "normalize_phases",
]
