"""
Pydantic models for GuardianLink configuration validation.

These models define the schema for config.yaml (engine settings) and
heuristics.yaml (seed heuristic rules). They provide:
- Type-safe configuration loading with automatic validation
- Human-readable error messages for invalid configuration
- JSON Schema export for documentation and IDE support
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================


class VerdictPolicyName(str, Enum):
    """Named verdict threshold tables."""
    SAFETY_PERCENTAGE = "safety_percentage"
    RISK_SCORE = "risk_score"


class AggregationPolicyName(str, Enum):
    """Named phase aggregation strategies."""
    PHASE_SUM = "phase_sum"
    WEIGHTED_FACTORS = "weighted_factors"


class RuleSeverity(str, Enum):
    """Severity labels carried by heuristic rules."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ============================================================================
# Configuration Section Models
# ============================================================================


class HeuristicsConfig(BaseModel):
    """Configuration for the heuristic evaluator and rule store."""
    enabled: bool = True
    rules_path: Optional[str] = None
    max_score: int = Field(default=25, gt=0)
    warning_threshold: float = Field(default=10, ge=0)
    danger_threshold: float = Field(default=30, ge=0)
    seed_bundled_rules: bool = True

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def check_threshold_order(self) -> "HeuristicsConfig":
        if self.warning_threshold >= self.danger_threshold:
            raise ValueError(
                f"warning_threshold ({self.warning_threshold}) "
                f"must be less than danger_threshold ({self.danger_threshold})"
            )
        return self


class LearningConfig(BaseModel):
    """Configuration for supervised learning and false-positive feedback."""
    enabled: bool = True
    trusted_providers: List[str] = Field(default_factory=lambda: ["virus_total"])
    min_patterns: int = Field(default=2, ge=1)
    initial_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    confidence_decay_per_day: float = Field(default=0.01, ge=0.0, le=1.0)
    false_positive_step: float = Field(default=0.1, gt=0.0, le=1.0)
    score_impact: float = Field(default=30, gt=0)

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def check_confidence_bounds(self) -> "LearningConfig":
        if self.min_confidence >= self.initial_confidence:
            raise ValueError(
                f"min_confidence ({self.min_confidence}) "
                f"must be less than initial_confidence ({self.initial_confidence})"
            )
        return self


class CacheConfig(BaseModel):
    """Configuration for the scan cache."""
    enabled: bool = True
    ttl_hours: float = Field(default=24.0, gt=0)
    persist: bool = True
    db_path: Optional[str] = None

    model_config = {"extra": "allow"}


class ScanConfig(BaseModel):
    """Configuration for producer fan-out and result polling."""
    producer_timeout_seconds: float = Field(default=10.0, gt=0)
    max_poll_attempts: int = Field(default=20, gt=0)
    poll_interval_seconds: float = Field(default=1.5, ge=0)
    poll_backoff: float = Field(default=1.0, ge=1.0)
    producer_timeouts: Dict[str, float] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @field_validator("producer_timeouts")
    @classmethod
    def validate_timeouts(cls, v: Dict[str, float]) -> Dict[str, float]:
        for name, seconds in v.items():
            if seconds <= 0:
                raise ValueError(f"Timeout for producer '{name}' must be positive")
        return v


class DecisionConfig(BaseModel):
    """Configuration for the decision engine."""
    verdict_policy: VerdictPolicyName = VerdictPolicyName.SAFETY_PERCENTAGE
    aggregation: AggregationPolicyName = AggregationPolicyName.PHASE_SUM
    factor_weights: Dict[str, float] = Field(
        default_factory=lambda: {"heuristics": 0.5, "reputation": 0.4, "tld": 0.1}
    )

    model_config = {"extra": "allow"}

    @field_validator("factor_weights")
    @classmethod
    def validate_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        for name, weight in v.items():
            if weight < 0:
                raise ValueError(f"Weight for phase '{name}' must not be negative")
        return v


class LoggingConfig(BaseModel):
    """Configuration for the audit log."""
    enabled: bool = True
    db_path: Optional[str] = None
    redact_urls: bool = True

    model_config = {"extra": "allow"}


# ============================================================================
# Root Configuration Model
# ============================================================================


class GuardianConfig(BaseModel):
    """
    Root Pydantic model for GuardianLink configuration (config.yaml).

    Uses extra="allow" at the root level to be forward-compatible with new
    config keys added in future versions.
    """
    version: Optional[int] = None

    heuristics: HeuristicsConfig = Field(default_factory=HeuristicsConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "allow"}


# ============================================================================
# Seed Rule Schema Model
# ============================================================================


class SeedRuleDefinition(BaseModel):
    """A single heuristic rule definition from heuristics.yaml."""
    id: str = Field(min_length=1)
    description: str = ""
    conditions: Dict[str, Any]
    score_impact: float = Field(ge=0)
    severity: RuleSeverity = RuleSeverity.MEDIUM
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    confidence_decay_per_day: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("conditions")
    @classmethod
    def validate_conditions(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("A rule needs at least one condition")
        return v


class SeedRulesConfig(BaseModel):
    """Root model for heuristics.yaml."""
    version: str = "1.0"
    description: str = ""
    rules: List[SeedRuleDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_ids(self) -> "SeedRulesConfig":
        ids = [r.id for r in self.rules]
        if len(ids) != len(set(ids)):
            dupes = [i for i in ids if ids.count(i) > 1]
            raise ValueError(f"Duplicate rule IDs: {set(dupes)}")
        return self
