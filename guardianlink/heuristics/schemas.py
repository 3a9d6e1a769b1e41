"""
GuardianLink Heuristic Data Schemas

Dataclasses for heuristic rules, the persisted rule set, and the results
returned by the evaluator, learner, and decay pass.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


RULE_SET_VERSION = "1.0"

SOURCE_MANUAL = "manual"
SOURCE_SEED = "seed"
SOURCE_LEARNED = "mandate-learning"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp; naive values are treated as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class HeuristicRule:
    """A conjunctive heuristic rule.

    Rules are never deleted. A rule that falls below its minimum confidence
    is deactivated and stamped with ``expires_at``.
    """

    id: str
    conditions: Dict[str, Any]
    score_impact: float
    description: str = ""
    severity: str = "medium"
    confidence: float = 1.0
    min_confidence: float = 0.1
    confidence_decay_per_day: Optional[float] = None  # None = never decays
    active: bool = True
    source: str = "manual"
    created_at: str = field(default_factory=utcnow_iso)
    last_seen_at: str = field(default_factory=utcnow_iso)
    expires_at: Optional[str] = None
    evidence_urls: List[str] = field(default_factory=list)

    @property
    def is_learned(self) -> bool:
        return self.source == SOURCE_LEARNED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "conditions": dict(self.conditions),
            "score_impact": self.score_impact,
            "severity": self.severity,
            "confidence": self.confidence,
            "min_confidence": self.min_confidence,
            "confidence_decay_per_day": self.confidence_decay_per_day,
            "active": self.active,
            "source": self.source,
            "created_at": self.created_at,
            "last_seen_at": self.last_seen_at,
            "expires_at": self.expires_at,
            "evidence_urls": list(self.evidence_urls),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeuristicRule":
        """Build a rule from its stored form.

        Older stores used ``condition`` and ``score`` as key names; both
        spellings are accepted.
        """
        conditions = data.get("conditions")
        if conditions is None:
            conditions = data.get("condition") or {}
        score_impact = data.get("score_impact", data.get("score", 0))
        now = utcnow_iso()
        return cls(
            id=str(data.get("id") or ""),
            conditions=dict(conditions) if isinstance(conditions, dict) else {},
            score_impact=float(score_impact or 0),
            description=data.get("description", "") or "",
            severity=data.get("severity", "medium") or "medium",
            confidence=float(data.get("confidence", 1.0)),
            min_confidence=float(data.get("min_confidence", data.get("minConfidence", 0.1))),
            confidence_decay_per_day=data.get(
                "confidence_decay_per_day", data.get("confidenceDecayPerDay")
            ),
            active=bool(data.get("active", True)),
            source=data.get("source", "manual") or "manual",
            created_at=data.get("created_at") or now,
            last_seen_at=data.get("last_seen_at") or data.get("created_at") or now,
            expires_at=data.get("expires_at"),
            evidence_urls=list(data.get("evidence_urls") or []),
        )


@dataclass
class RuleSet:
    """The versioned, persisted collection of heuristic rules."""

    version: str = RULE_SET_VERSION
    description: str = "GuardianLink heuristic rules"
    updated_at: str = field(default_factory=utcnow_iso)
    rules: List[HeuristicRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "updated_at": self.updated_at,
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSet":
        return cls(
            version=str(data.get("version", RULE_SET_VERSION)),
            description=data.get("description", "") or "",
            updated_at=data.get("updated_at") or utcnow_iso(),
            rules=[HeuristicRule.from_dict(r) for r in data.get("rules", []) if isinstance(r, dict)],
        )


@dataclass
class MatchedRule:
    id: str
    score_impact: float
    description: str = ""
    severity: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "score_impact": self.score_impact,
            "description": self.description,
            "severity": self.severity,
        }


@dataclass
class HeuristicEvaluation:
    """Result of evaluating the active rules against one signal set."""

    matched: List[MatchedRule]
    total_suspicion: float
    score: int
    max_score: int
    status: str  # safe / warning / danger

    @property
    def matched_ids(self) -> List[str]:
        return [m.id for m in self.matched]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": [m.to_dict() for m in self.matched],
            "total_suspicion": self.total_suspicion,
            "score": self.score,
            "max_score": self.max_score,
            "status": self.status,
        }


@dataclass
class ValidationProblem:
    idx: int
    problem: str
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"idx": self.idx, "problem": self.problem}
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class LearningResult:
    """Outcome of a supervised learning attempt. Refusals are not errors."""

    learned: bool
    rule_id: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learned": self.learned,
            "rule_id": self.rule_id,
            "conditions": self.conditions,
            "reason": self.reason,
        }


@dataclass
class FeedbackResult:
    """Outcome of a false-positive report."""

    adjusted: bool
    adjusted_rules: List[Dict[str, Any]] = field(default_factory=list)
    deactivated: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adjusted": self.adjusted,
            "adjusted_rules": list(self.adjusted_rules),
            "deactivated": list(self.deactivated),
            "reason": self.reason,
        }


@dataclass
class DecayReport:
    decayed: int = 0
    expired: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"decayed": self.decayed, "expired": list(self.expired)}
