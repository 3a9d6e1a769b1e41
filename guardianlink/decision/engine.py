"""
GuardianLink Decision Engine

Merges the per-phase evidence of one scan into a single verdict.

Order of precedence:
1. Internal browser pages (about:, chrome://, extension pages) are allowed
   without looking at any evidence.
2. A phase carrying ``mandate: "malicious"`` forces BLOCK / CRITICAL, even
   when no other evidence is usable.
3. No usable evidence (no phases, every phase unavailable, or a zero point
   budget) defaults to ALLOW and is marked ``defaulted``.
4. Otherwise the aggregation policy produces the score and the verdict
   policy maps it onto ALLOW / WARN / BLOCK.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from guardianlink.cache import canonicalize_url
from guardianlink.config.models import DecisionConfig
from guardianlink.decision.models import (
    Decision,
    EvidenceResult,
    PhaseStatus,
    RiskLevel,
    Verdict,
)
from guardianlink.decision.policies import (
    AggregationPolicy,
    AggregateScore,
    PhaseSumAggregation,
    SafetyPercentagePolicy,
    VerdictPolicy,
    get_aggregation_policy,
    get_verdict_policy,
)

logger = logging.getLogger(__name__)

MALICIOUS_MANDATE = "malicious"

SCAN_FAILED_REASON = "Scan failed, defaulting to safe"
SCAN_TIMEOUT_REASON = "Scan timeout, defaulting to safe"

WHITELISTED_PREFIXES = (
    "about:",
    "chrome://",
    "chrome-extension://",
    "moz-extension://",
    "data:text/html",
)

_VERDICT_PREAMBLE = {
    Verdict.BLOCK: (
        "This URL has been blocked because it exhibits multiple indicators "
        "of malicious intent. "
    ),
    Verdict.WARN: "This URL appears suspicious and may pose a security risk. ",
    Verdict.ALLOW: "This URL appears to be safe based on our analysis. ",
}

PhaseInput = Union[EvidenceResult, Mapping[str, Any]]


def is_whitelisted(url: str) -> bool:
    return url.strip().lower().startswith(WHITELISTED_PREFIXES)


def normalize_phases(phases: Optional[Mapping[str, PhaseInput]]) -> Dict[str, EvidenceResult]:
    """Coerce raw provider dicts into EvidenceResult; drop anything else."""
    normalized: Dict[str, EvidenceResult] = {}
    for name, phase in (phases or {}).items():
        if isinstance(phase, EvidenceResult):
            normalized[name] = phase
        elif isinstance(phase, Mapping):
            normalized[name] = EvidenceResult.from_dict(name, phase)
        else:
            logger.warning("Ignoring phase %s with unsupported type %s", name, type(phase).__name__)
    return normalized


def default_safe_decision(
    url: str,
    reasoning: str = SCAN_FAILED_REASON,
    phases: Optional[Mapping[str, EvidenceResult]] = None,
    fingerprint: Optional[str] = None,
    policy: str = "",
) -> Decision:
    """ALLOW decision used when the pipeline could not produce a verdict."""
    return Decision(
        url=url,
        fingerprint=fingerprint or canonicalize_url(url),
        verdict=Verdict.ALLOW,
        risk_level=RiskLevel.SAFE,
        total_score=0.0,
        max_total_score=0.0,
        percentage=0,
        phases=phases or {},
        reasoning=reasoning,
        policy=policy,
        defaulted=True,
    )


class DecisionEngine:
    """Aggregates phases and applies a verdict policy."""

    def __init__(
        self,
        aggregation: Optional[AggregationPolicy] = None,
        verdict_policy: Optional[VerdictPolicy] = None,
    ):
        self.aggregation = aggregation or PhaseSumAggregation()
        self.verdict_policy = verdict_policy or SafetyPercentagePolicy()

    @classmethod
    def from_config(cls, config: Optional[DecisionConfig] = None) -> "DecisionEngine":
        config = config or DecisionConfig()
        return cls(
            aggregation=get_aggregation_policy(config.aggregation, config.factor_weights),
            verdict_policy=get_verdict_policy(config.verdict_policy),
        )

    @property
    def policy_name(self) -> str:
        return f"{self.aggregation.name}/{self.verdict_policy.name}"

    def decide(
        self,
        url: str,
        phases: Optional[Mapping[str, PhaseInput]] = None,
        fingerprint: Optional[str] = None,
    ) -> Decision:
        fingerprint = fingerprint or canonicalize_url(url)

        if is_whitelisted(url):
            return Decision(
                url=url,
                fingerprint=fingerprint,
                verdict=Verdict.ALLOW,
                risk_level=RiskLevel.SAFE,
                total_score=0.0,
                max_total_score=0.0,
                percentage=100,
                phases={},
                reasoning="Internal browser page, always allowed.",
                policy=self.policy_name,
            )

        evidence = normalize_phases(phases)
        override_by = [
            name for name, phase in evidence.items() if phase.mandate == MALICIOUS_MANDATE
        ]

        aggregate = None
        if any(p.available for p in evidence.values()):
            aggregate = self.aggregation.aggregate(evidence)
        if aggregate is None or aggregate.max_total <= 0:
            if not override_by:
                return default_safe_decision(
                    url, phases=evidence, fingerprint=fingerprint, policy=self.policy_name
                )
            aggregate = AggregateScore(total=0.0, max_total=0.0, percentage=0, risk=100)

        if override_by:
            verdict, risk_level = Verdict.BLOCK, RiskLevel.CRITICAL
            logger.info("Mandate override for %s by %s", fingerprint, ", ".join(override_by))
        else:
            verdict, risk_level = self.verdict_policy.decide(aggregate)

        return Decision(
            url=url,
            fingerprint=fingerprint,
            verdict=verdict,
            risk_level=risk_level,
            total_score=aggregate.total,
            max_total_score=aggregate.max_total,
            percentage=aggregate.percentage,
            phases=evidence,
            reasoning=build_reasoning(verdict, evidence, override_by),
            policy=self.policy_name,
            mandate_override=bool(override_by),
        )


def _indicator(name: str, phase: EvidenceResult) -> str:
    detail = phase.reason or phase.error or (phase.findings[0] if phase.findings else phase.status)
    return f"{name}: {detail}"


def build_reasoning(
    verdict: Verdict,
    phases: Mapping[str, EvidenceResult],
    override_by: Optional[List[str]] = None,
) -> str:
    """Human-readable explanation listing the phases that raised concerns."""
    reasoning = _VERDICT_PREAMBLE[verdict]

    indicators: List[str] = []
    for name in override_by or ():
        indicators.append(f"{name} flagged this URL as malicious")
    for name, phase in phases.items():
        if phase.status != PhaseStatus.SAFE.value:
            indicators.append(_indicator(name, phase))

    if indicators:
        reasoning += "Indicators: " + ", ".join(indicators) + "."
    return reasoning.strip()
