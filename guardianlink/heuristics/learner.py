"""
GuardianLink Heuristic Learner

Supervised learning over the heuristic rule set.

- Confirmed-malicious samples: when a trusted provider returned
  ``mandate: "malicious"``, the sample's signal flags become the conditions
  of a new learned rule. A merely "suspicious" mandate is never learned.
- False-positive feedback: rules that fired on a URL later reported safe
  lose confidence and are deactivated once below their minimum. The
  ratchet is only reversed by a decay reset.

Learned rules carry a positive score_impact (a suspicion penalty, the same
polarity as seeded rules) and decay at 1% confidence per day by default.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from guardianlink.config.models import LearningConfig
from guardianlink.heuristics.conditions import ConditionKey
from guardianlink.heuristics.decay import reset_decay_for_rule
from guardianlink.heuristics.schemas import (
    SOURCE_LEARNED,
    FeedbackResult,
    HeuristicRule,
    LearningResult,
)
from guardianlink.heuristics.store import HeuristicRuleStore
from guardianlink.logging.security_log import EventType, audit
from guardianlink.signals import extract_signals

logger = logging.getLogger(__name__)

MALICIOUS_MANDATE = "malicious"

# Learnable condition key -> signal flag(s) that set it
LEARNABLE_PATTERNS = (
    (ConditionKey.JS_REDIRECT, ("js_redirect",)),
    (ConditionKey.META_REFRESH, ("meta_refresh",)),
    (ConditionKey.PASSWORD_FIELD, ("password_field",)),
    (ConditionKey.LOGIN_FORM_DETECTED, ("login_form_detected",)),
    (ConditionKey.OBFUSCATED_SCRIPT, ("obfuscated_script",)),
    (ConditionKey.IFRAME_DETECTED, ("iframe_detected",)),
    (ConditionKey.PHISHING_INDICATORS, ("phishing_keywords",)),
    (ConditionKey.REDIRECT_CHAIN_LONG, ("redirect_chain_long",)),
    (ConditionKey.DOMAIN_AGE_VERY_YOUNG, ("domain_very_new",)),
    (ConditionKey.URL_USES_IP, ("url_uses_ip",)),
    (ConditionKey.HTTP_WITH_SUSPICIOUS_CONTENT, ("http_with_suspicious_content",)),
)


def make_rule_id(conditions: Mapping[str, Any]) -> str:
    """Deterministic id from the sorted condition set."""
    key = "|".join(f"{k}:{_format_value(conditions[k])}" for k in sorted(conditions))
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()[:8]
    return f"learned:{digest}"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def extract_learnable_conditions(url: str, context: Optional[Mapping[str, Any]]) -> Dict[str, bool]:
    """Map a sample's signals onto the learnable condition vocabulary."""
    signals = extract_signals(url, context)
    conditions: Dict[str, bool] = {}
    for key, signal_names in LEARNABLE_PATTERNS:
        if any(signals.get(name) is True for name in signal_names):
            conditions[key.value] = True
    return conditions


class HeuristicLearner:
    """Learns new rules from confirmed-malicious samples and FP feedback."""

    def __init__(self, store: HeuristicRuleStore, config: Optional[LearningConfig] = None):
        self.store = store
        self.config = config or LearningConfig()

    def _trusted_mandate(self, context: Mapping[str, Any]) -> Optional[str]:
        """Name of the trusted provider that returned a malicious mandate."""
        for provider in self.config.trusted_providers:
            result = context.get(provider)
            if isinstance(result, Mapping) and result.get("mandate") == MALICIOUS_MANDATE:
                return provider
        return None

    def learn_from_confirmed_malicious(
        self,
        url: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> LearningResult:
        """Propose a new rule from a URL a trusted provider marked malicious."""
        context = context or {}

        provider = self._trusted_mandate(context)
        if provider is None:
            return self._refuse(url, "Not marked as malicious by a trusted provider")

        # Rules that fired on a genuinely malicious sample are still relevant
        for rule_id in context.get("triggered_rules") or []:
            reset_decay_for_rule(self.store, rule_id)

        conditions = extract_learnable_conditions(url, context)
        if len(conditions) < self.config.min_patterns:
            return self._refuse(url, f"Insufficient patterns extracted ({len(conditions)})")

        now = datetime.now(timezone.utc).isoformat()
        rule_id = make_rule_id(conditions)
        with self.store.transaction() as rule_set:
            existing = next(
                (r for r in rule_set.rules if r.conditions == conditions or r.id == rule_id),
                None,
            )
            if existing is None:
                rule = HeuristicRule(
                    id=rule_id,
                    description=f"Learned from {provider}-malicious URL: {url[:80]}",
                    conditions=dict(conditions),
                    score_impact=self.config.score_impact,
                    severity="high",
                    confidence=self.config.initial_confidence,
                    min_confidence=self.config.min_confidence,
                    confidence_decay_per_day=self.config.confidence_decay_per_day,
                    active=True,
                    source=SOURCE_LEARNED,
                    created_at=now,
                    last_seen_at=now,
                    evidence_urls=[url],
                )
                rule_set.rules.append(rule)

        if existing is not None:
            reset_decay_for_rule(self.store, existing.id)
            return self._refuse(
                url, "Rule with these conditions already exists", rule_id=existing.id
            )

        logger.info("Heuristic learned: %s (%s)", rule.id, ", ".join(sorted(conditions)))
        audit(
            EventType.RULE_LEARNED,
            "learner",
            url=url,
            rule_id=rule.id,
            severity=rule.severity,
            metadata={"conditions": conditions, "provider": provider},
        )
        return LearningResult(learned=True, rule_id=rule.id, conditions=dict(conditions))

    def _refuse(self, url: str, reason: str, rule_id: Optional[str] = None) -> LearningResult:
        logger.debug("Learning refused for %s: %s", url, reason)
        audit(EventType.LEARNING_REFUSED, "learner", url=url, rule_id=rule_id, reason=reason)
        return LearningResult(learned=False, rule_id=rule_id, reason=reason)

    def learn_from_false_positive(
        self,
        url: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> FeedbackResult:
        """Lower confidence of the rules that fired on a URL reported safe."""
        triggered = list((context or {}).get("triggered_rules") or [])
        if not triggered:
            return FeedbackResult(adjusted=False, reason="No triggered rules to adjust")

        step = self.config.false_positive_step
        now = datetime.now(timezone.utc).isoformat()
        adjusted: List[Dict[str, Any]] = []
        deactivated: List[str] = []

        with self.store.transaction() as rule_set:
            by_id = {r.id: r for r in rule_set.rules}
            for rule_id in triggered:
                rule = by_id.get(rule_id)
                if rule is None:
                    continue
                rule.confidence = round(max(0.0, rule.confidence - step), 3)
                if rule.active and rule.confidence < rule.min_confidence:
                    rule.active = False
                    rule.expires_at = now
                    deactivated.append(rule.id)
                adjusted.append({
                    "id": rule.id,
                    "confidence": rule.confidence,
                    "active": rule.active,
                })

        for entry in adjusted:
            if entry["id"] in deactivated:
                logger.info("Rule deactivated due to false positive: %s", entry["id"])
                event_type = EventType.RULE_DEACTIVATED
            else:
                logger.info(
                    "Rule confidence adjusted: %s -> %.3f", entry["id"], entry["confidence"]
                )
                event_type = EventType.RULE_ADJUSTED
            audit(
                event_type,
                "learner",
                url=url,
                rule_id=entry["id"],
                reason="false positive report",
                metadata={"confidence": entry["confidence"]},
            )

        if not adjusted:
            return FeedbackResult(adjusted=False, reason="None of the triggered rules exist")
        return FeedbackResult(adjusted=True, adjusted_rules=adjusted, deactivated=deactivated)

    def get_learning_stats(self) -> Dict[str, Any]:
        rules = self.store.get_all()
        learned = [r for r in rules if r.is_learned]
        active = [r for r in rules if r.active]
        return {
            "total_rules": len(rules),
            "learned_rules": len(learned),
            "active_rules": len(active),
            "expired_rules": len(rules) - len(active),
            "average_confidence": (
                round(sum(r.confidence for r in rules) / len(rules), 3) if rules else 0.0
            ),
        }
