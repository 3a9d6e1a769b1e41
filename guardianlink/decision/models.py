"""
GuardianLink Decision Data Models

EvidenceResult is the normalized shape every evidence producer returns.
Decision is the immutable verdict for one URL; a newer decision supersedes
an older one, it is never edited in place.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Verdict(str, Enum):
    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


class RiskLevel(str, Enum):
    SAFE = "SAFE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class PhaseStatus(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


@dataclass(frozen=True)
class EvidenceResult:
    """One producer's contribution. ``score`` is higher-is-safer in [0, max_score]."""

    name: str
    score: float
    max_score: float
    status: str = PhaseStatus.SAFE.value
    available: bool = True
    reason: Optional[str] = None
    error: Optional[str] = None
    findings: Tuple[str, ...] = ()
    mandate: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def clamped_score(self) -> float:
        return min(max(self.score, 0.0), max(self.max_score, 0.0))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "score": self.score,
            "max_score": self.max_score,
            "status": self.status,
            "available": self.available,
            "findings": list(self.findings),
            "details": dict(self.details),
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error
        if self.mandate is not None:
            data["mandate"] = self.mandate
        return data

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "EvidenceResult":
        """Build from a provider's result, accepting ``maxScore`` or ``max_score``.

        Keys outside the normalized shape are kept in ``details``.
        """
        known = {
            "name", "score", "maxScore", "max_score", "status", "available",
            "reason", "error", "findings", "mandate", "details",
        }
        raw_details = data.get("details")
        details = dict(raw_details) if isinstance(raw_details, Mapping) else {}
        details.update({k: v for k, v in data.items() if k not in known})

        findings = data.get("findings") or ()
        if not isinstance(findings, (list, tuple)):
            findings = (findings,)

        status = str(data.get("status") or PhaseStatus.SAFE.value).lower()
        if status not in {s.value for s in PhaseStatus}:
            status = PhaseStatus.WARNING.value

        mandate = data.get("mandate")
        return cls(
            name=str(data.get("name") or name),
            score=_as_float(data.get("score")),
            max_score=_as_float(data.get("maxScore", data.get("max_score"))),
            status=status,
            available=bool(data.get("available", True)),
            reason=data.get("reason"),
            error=data.get("error"),
            findings=tuple(str(f) for f in findings if f is not None),
            mandate=str(mandate).lower() if mandate else None,
            details=details,
        )


@dataclass(frozen=True)
class Decision:
    """Final verdict for one URL."""

    url: str
    fingerprint: str
    verdict: Verdict
    risk_level: RiskLevel
    total_score: float
    max_total_score: float
    percentage: int
    phases: Mapping[str, EvidenceResult]
    reasoning: str
    policy: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    mandate_override: bool = False
    defaulted: bool = False

    def __post_init__(self):
        # Freeze the phase mapping so callers cannot edit a published decision
        object.__setattr__(self, "phases", MappingProxyType(dict(self.phases)))

    @property
    def should_block(self) -> bool:
        return self.verdict is Verdict.BLOCK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "fingerprint": self.fingerprint,
            "verdict": self.verdict.value,
            "risk_level": self.risk_level.value,
            "total_score": self.total_score,
            "max_total_score": self.max_total_score,
            "percentage": self.percentage,
            "phases": {name: phase.to_dict() for name, phase in self.phases.items()},
            "timestamp": self.timestamp,
            "reasoning": self.reasoning,
            "policy": self.policy,
            "mandate_override": self.mandate_override,
            "defaulted": self.defaulted,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Decision":
        phases = {
            name: EvidenceResult.from_dict(name, phase)
            for name, phase in (data.get("phases") or {}).items()
        }
        return cls(
            url=data["url"],
            fingerprint=data["fingerprint"],
            verdict=Verdict(data["verdict"]),
            risk_level=RiskLevel(data["risk_level"]),
            total_score=_as_float(data.get("total_score")),
            max_total_score=_as_float(data.get("max_total_score")),
            percentage=int(data.get("percentage", 0)),
            phases=phases,
            reasoning=data.get("reasoning", ""),
            policy=data.get("policy", ""),
            timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            mandate_override=bool(data.get("mandate_override", False)),
            defaulted=bool(data.get("defaulted", False)),
        )
