"""
Property-based tests for GuardianLink using Hypothesis.

1. URL fingerprints are idempotent and never raise
2. Signal extraction is total over arbitrary input
3. Decisions stay within their bounds for arbitrary phase scores
4. Heuristic scores stay within the phase budget
5. Decay never raises confidence
"""

import string
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

pytestmark = pytest.mark.property

# Rule store and audit log writes make cold examples slow
settings.register_profile(
    "guardianlink",
    deadline=None,
    print_blob=True,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
settings.load_profile("guardianlink")

from guardianlink.cache import canonicalize_url
from guardianlink.decision import DecisionEngine, Verdict
from guardianlink.heuristics.decay import apply_decay
from guardianlink.heuristics.evaluator import HeuristicEvaluator
from guardianlink.heuristics.schemas import HeuristicRule
from guardianlink.heuristics.store import HeuristicRuleStore
from guardianlink.signals import extract_signals


# ============================================================================
# Strategies
# ============================================================================

url_text = st.text(
    alphabet=st.sampled_from(list(string.ascii_letters + string.digits + "-._~:/?#@%&=+!$,;")),
    min_size=0,
    max_size=80,
)

url_like = st.builds(
    lambda scheme, host, port, path: f"{scheme}{host}{port}{path}",
    st.sampled_from(["", "http://", "https://", "HTTPS://", "ftp://"]),
    st.from_regex(r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,10}\.){0,3}[A-Za-z]{2,6}", fullmatch=True),
    st.sampled_from(["", ":80", ":443", ":8080"]),
    st.from_regex(r"(?:/[A-Za-z0-9._-]{0,8}){0,4}/?(?:\?[a-z=&]{0,10})?", fullmatch=True),
)

fuzz_text = st.text(alphabet=st.characters(codec="utf-8"), min_size=0, max_size=300)

json_scalars = st.one_of(
    st.none(), st.booleans(), st.integers(), st.floats(allow_nan=True), st.text(max_size=20),
)
context_values = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=20), children, max_size=4),
    ),
    max_leaves=12,
)
contexts = st.dictionaries(
    st.sampled_from(["whois", "ssl", "content", "redirects", "reputation", "security_headers"]),
    context_values,
    max_size=6,
)

phase_results = st.dictionaries(
    st.sampled_from(["ssl", "whois", "content", "reputation", "heuristics"]),
    st.fixed_dictionaries(
        {
            "score": st.floats(min_value=-50, max_value=200, allow_nan=False),
            "maxScore": st.floats(min_value=0, max_value=100, allow_nan=False),
        },
        optional={
            "available": st.booleans(),
            "status": st.sampled_from(["safe", "warning", "danger"]),
        },
    ),
    max_size=5,
)


# ============================================================================
# Fingerprints
# ============================================================================


class TestFingerprintProperties:

    @given(url=st.one_of(url_text, url_like))
    def test_idempotent(self, url):
        once = canonicalize_url(url)
        assert canonicalize_url(once) == once

    @given(url=url_like)
    def test_well_formed_urls_get_a_scheme(self, url):
        fingerprint = canonicalize_url(url)
        assert "://" in fingerprint
        assert "?" not in fingerprint
        assert fingerprint == fingerprint.strip()

    @given(url=fuzz_text)
    def test_never_raises(self, url):
        assert isinstance(canonicalize_url(url), str)


# ============================================================================
# Signals
# ============================================================================


class TestSignalProperties:

    @given(url=fuzz_text, context=contexts)
    def test_total_over_arbitrary_input(self, url, context):
        signals = extract_signals(url, context)
        assert isinstance(signals["url_unparseable"], bool)
        assert 0 <= signals["_risk_score"] <= 100

    @given(url=url_like)
    def test_url_length_matches_input(self, url):
        assert extract_signals(url)["url_length"] == len(url.strip())


# ============================================================================
# Decisions
# ============================================================================


class TestDecisionProperties:

    @given(phases=phase_results)
    def test_percentage_is_bounded(self, phases):
        decision = DecisionEngine().decide("https://example.com", phases)
        assert 0 <= decision.percentage <= 100
        assert 0 <= decision.total_score <= max(decision.max_total_score, 0)

    @given(phases=phase_results)
    def test_verdict_follows_percentage(self, phases):
        decision = DecisionEngine().decide("https://example.com", phases)
        if decision.defaulted:
            assert decision.verdict is Verdict.ALLOW
        elif decision.percentage >= 80:
            assert decision.verdict is Verdict.ALLOW
        elif decision.percentage >= 50:
            assert decision.verdict is Verdict.WARN
        else:
            assert decision.verdict is Verdict.BLOCK

    @given(phases=phase_results)
    def test_malicious_mandate_always_blocks(self, phases):
        phases = dict(phases)
        phases["virus_total"] = {"score": 10, "maxScore": 10, "mandate": "malicious"}
        assert DecisionEngine().decide("https://example.com", phases).verdict is Verdict.BLOCK


# ============================================================================
# Heuristics
# ============================================================================


class TestHeuristicProperties:

    @given(url=st.one_of(url_like, fuzz_text), context=contexts)
    def test_score_within_budget(self, seeded_store, url, context):
        result = HeuristicEvaluator(seeded_store).evaluate(url, context)
        assert 0 <= result.score <= result.max_score
        assert result.total_suspicion >= 0
        assert result.status in {"safe", "warning", "danger"}

    @settings(max_examples=40)
    @given(
        confidence=st.floats(min_value=0, max_value=1),
        rate=st.floats(min_value=0.001, max_value=0.5),
        days=st.integers(min_value=0, max_value=400),
    )
    def test_decay_never_raises_confidence(self, confidence, rate, days):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        with tempfile.TemporaryDirectory() as tmp:
            store = HeuristicRuleStore(Path(tmp) / "rules.json")
            store.add_rule(HeuristicRule(
                id="r",
                conditions={"url_uses_ip": True},
                score_impact=10,
                confidence=confidence,
                confidence_decay_per_day=rate,
                last_seen_at=(now - timedelta(days=days)).isoformat(),
            ))
            apply_decay(store, now=now)
            rule = store.get_rule("r")

        assert 0 <= rule.confidence <= confidence + 1e-9
        if days > 0 and rule.confidence < rule.min_confidence:
            assert rule.active is False
