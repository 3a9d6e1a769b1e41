"""
Tests for time-based confidence decay of heuristic rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

pytestmark = pytest.mark.heuristics

from guardianlink.heuristics.decay import apply_decay, days_between, reset_decay_for_rule
from guardianlink.logging.security_log import EventType, get_logger


def _iso(dt):
    return dt.isoformat()


class TestDaysBetween:

    def test_floors_partial_days(self, fixed_now):
        assert days_between(fixed_now - timedelta(days=2, hours=23), fixed_now) == 2

    def test_future_start_is_negative(self, fixed_now):
        assert days_between(fixed_now + timedelta(days=1), fixed_now) == -1


class TestApplyDecay:

    def test_sixty_days_deactivates(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "old",
            confidence=0.5,
            confidence_decay_per_day=0.01,
            last_seen_at=_iso(fixed_now - timedelta(days=60)),
        ))

        report = apply_decay(store, now=fixed_now)

        rule = store.get_rule("old")
        assert rule.confidence == 0.0
        assert rule.active is False
        assert rule.expires_at == fixed_now.isoformat()
        assert report.decayed == 1
        assert report.expired == ["old"]

    def test_partial_decay_keeps_rule_active(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "recent",
            confidence=0.85,
            confidence_decay_per_day=0.01,
            last_seen_at=_iso(fixed_now - timedelta(days=10, hours=5)),
        ))

        report = apply_decay(store, now=fixed_now)

        rule = store.get_rule("recent")
        assert rule.confidence == 0.75
        assert rule.active is True
        assert rule.last_seen_at == fixed_now.isoformat()
        assert report.expired == []

    def test_same_day_is_untouched(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "fresh",
            confidence=0.85,
            confidence_decay_per_day=0.01,
            last_seen_at=_iso(fixed_now - timedelta(hours=20)),
        ))
        assert apply_decay(store, now=fixed_now).decayed == 0
        assert store.get_rule("fresh").confidence == 0.85

    def test_rules_without_rate_never_decay(self, store, make_rule, fixed_now):
        store.add_rule(make_rule("seed", last_seen_at=_iso(fixed_now - timedelta(days=900))))
        apply_decay(store, now=fixed_now)
        assert store.get_rule("seed").confidence == 1.0

    def test_inactive_rules_skipped(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "off",
            active=False,
            confidence=0.5,
            confidence_decay_per_day=0.01,
            last_seen_at=_iso(fixed_now - timedelta(days=30)),
        ))
        assert apply_decay(store, now=fixed_now).decayed == 0
        assert store.get_rule("off").confidence == 0.5

    def test_decay_is_audited(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "gone",
            confidence=0.2,
            confidence_decay_per_day=0.05,
            last_seen_at=_iso(fixed_now - timedelta(days=5)),
        ))
        apply_decay(store, now=fixed_now)
        events = get_logger().get_recent_events(event_type=EventType.RULE_DEACTIVATED)
        assert [e["rule_id"] for e in events] == ["gone"]


class TestResetDecay:

    def test_reactivates_and_restarts_clock(self, store, make_rule, fixed_now):
        store.add_rule(make_rule(
            "expired",
            active=False,
            confidence=0.05,
            expires_at="2025-01-01T00:00:00+00:00",
        ))

        assert reset_decay_for_rule(store, "expired", now=fixed_now) is True

        rule = store.get_rule("expired")
        assert rule.active is True
        assert rule.expires_at is None
        assert rule.last_seen_at == fixed_now.isoformat()
        assert rule.confidence == 0.05

    def test_missing_rule(self, store):
        assert reset_decay_for_rule(store, "nope") is False


def test_naive_now_treated_as_utc(store, make_rule):
    now = datetime(2025, 6, 1, 12, 0, 0)
    store.add_rule(make_rule(
        "naive",
        confidence=0.5,
        confidence_decay_per_day=0.1,
        last_seen_at=datetime(2025, 5, 30, 12, 0, 0, tzinfo=timezone.utc).isoformat(),
    ))
    apply_decay(store, now=now)
    assert store.get_rule("naive").confidence == 0.3
