"""
GuardianLink Heuristic Confidence Decay

Rules lose confidence for every whole day they go unseen, so stale learned
patterns stop influencing verdicts as the threat landscape moves on:

    confidence = max(0, confidence - days * confidence_decay_per_day)

A rule whose confidence drops below its min_confidence is deactivated and
stamped with expires_at. Seeing a rule again in a confirmed-malicious
context resets its decay clock and reactivates it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from guardianlink.heuristics.schemas import DecayReport, parse_timestamp
from guardianlink.heuristics.store import HeuristicRuleStore
from guardianlink.logging.security_log import EventType, audit

logger = logging.getLogger(__name__)

# Decay of at least this many days is logged at INFO
SIGNIFICANT_DECAY_DAYS = 7


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end (floored)."""
    return int((end - start).total_seconds() // 86400)


def _utc(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now


def apply_decay(store: HeuristicRuleStore, now: Optional[datetime] = None) -> DecayReport:
    """Apply time-based decay to every active rule that has a decay rate.

    Returns:
        DecayReport with the number of rules decayed and the ids expired.
    """
    now = _utc(now)
    stamp = now.isoformat()
    report = DecayReport()

    with store.transaction() as rule_set:
        for rule in rule_set.rules:
            if not rule.active or not rule.confidence_decay_per_day:
                continue

            last_seen = parse_timestamp(rule.last_seen_at) or parse_timestamp(rule.created_at)
            if last_seen is None:
                continue

            days = days_between(last_seen, now)
            if days <= 0:
                continue

            decay = days * float(rule.confidence_decay_per_day)
            rule.confidence = round(max(0.0, rule.confidence - decay), 3)
            rule.last_seen_at = stamp
            report.decayed += 1

            if rule.confidence < rule.min_confidence:
                rule.active = False
                rule.expires_at = stamp
                report.expired.append(rule.id)
                logger.info("Heuristic expired: %s (confidence %.3f)", rule.id, rule.confidence)
                audit(
                    EventType.RULE_DEACTIVATED,
                    "decay",
                    rule_id=rule.id,
                    reason=f"confidence {rule.confidence:.3f} below {rule.min_confidence}",
                )
            elif days >= SIGNIFICANT_DECAY_DAYS:
                logger.info(
                    "Heuristic decay: %s (%dd) -> confidence %.3f", rule.id, days, rule.confidence
                )

    if report.decayed:
        audit(
            EventType.DECAY_APPLIED,
            "decay",
            metadata=report.to_dict(),
        )
    return report


def reset_decay_for_rule(
    store: HeuristicRuleStore,
    rule_id: str,
    now: Optional[datetime] = None,
) -> bool:
    """Reactivate a rule and restart its decay clock.

    Confidence is left as it is. Returns False if the rule does not exist.
    """
    stamp = _utc(now).isoformat()

    with store.transaction() as rule_set:
        rule = next((r for r in rule_set.rules if r.id == rule_id), None)
        if rule is None:
            return False
        was_active = rule.active
        rule.last_seen_at = stamp
        rule.active = True
        rule.expires_at = None

    logger.info("Decay reset for rule: %s", rule_id)
    audit(
        EventType.RULE_REACTIVATED,
        "decay",
        rule_id=rule_id,
        reason="seen again in a malicious context",
        metadata={"was_active": was_active},
    )
    return True
