"""
Tests for the scan service.

Validates:
- End-to-end verdicts for representative URLs
- Producer timeouts and errors become neutral, unavailable phases
- Concurrent submits for one fingerprint share a single scan
- poll() never starts work; wait_for_decision() is bounded
- Failed scans are not cached
- A malicious mandate feeds the learner
"""

import asyncio

import pytest

pytestmark = [pytest.mark.scanner, pytest.mark.asyncio]

from guardianlink.cache import ScanCache
from guardianlink.config.models import GuardianConfig
from guardianlink.decision import SCAN_FAILED_REASON, SCAN_TIMEOUT_REASON, Verdict
from guardianlink.logging.security_log import EventType, flush_audit, get_logger
from guardianlink.producers import CallableProducer, StaticProducer
from guardianlink.scanner import HEURISTICS_PHASE, ScanService, ScanStatus


FAST_POLL = {"poll_interval_seconds": 0.01}


def ssl_ok():
    return StaticProducer("ssl", {"score": 15, "maxScore": 15, "status": "safe"})


@pytest.fixture
def make_service(seeded_store):
    def _make(producers=(), config=None, **kwargs):
        kwargs.setdefault("cache", ScanCache())
        return ScanService(
            producers=producers,
            store=seeded_store,
            config=config or GuardianConfig(),
            **kwargs,
        )
    return _make


class TestScenarios:

    async def test_brand_on_suspicious_tld_blocks(self, make_service):
        decision = await make_service([ssl_ok()]).scan("https://fake-amazon.tk")

        assert decision.verdict is Verdict.BLOCK
        assert decision.percentage == 38
        heuristics = decision.phases[HEURISTICS_PHASE]
        assert heuristics.score == 0
        assert heuristics.status == "danger"
        assert set(heuristics.details["matched_rules"]) == {
            "seed:brand-hyphenated", "seed:suspicious-tld",
        }

    async def test_ip_literal_warns(self, make_service):
        decision = await make_service([ssl_ok()]).scan("http://192.168.1.5/")
        assert decision.percentage == 63
        assert decision.verdict is Verdict.WARN

    async def test_clean_url_allows(self, make_service):
        producers = [ssl_ok(), StaticProducer("whois", {"score": 20, "maxScore": 20})]
        decision = await make_service(producers).scan("https://www.wikipedia.org/")
        assert decision.verdict is Verdict.ALLOW
        assert decision.percentage == 100
        assert decision.phases[HEURISTICS_PHASE].findings == ()

    async def test_producer_results_feed_signals(self, make_service):
        producers = [ssl_ok(), StaticProducer("whois", {"score": 5, "maxScore": 20,
                                                        "domainAgeDays": 3})]
        decision = await make_service(producers).scan("https://brand-new.example")
        assert "seed:young-domain" in decision.phases[HEURISTICS_PHASE].details["matched_rules"]

    async def test_base_context_feeds_signals(self, make_service):
        service = make_service([ssl_ok()], context={"whois": {"domainAgeDays": 3}})
        decision = await service.scan("https://brand-new.example")
        assert "seed:young-domain" in decision.phases[HEURISTICS_PHASE].details["matched_rules"]

    async def test_whitelisted_url_skips_producers(self, make_service):
        calls = []
        producer = CallableProducer("spy", lambda url: calls.append(url), max_score=10)
        service = make_service([producer])

        decision = await service.scan("about:blank")

        assert decision.verdict is Verdict.ALLOW
        assert decision.percentage == 100
        assert calls == []
        assert service.poll("about:blank").status is ScanStatus.COMPLETED

    async def test_completed_scan_is_audited(self, make_service):
        await make_service([ssl_ok()]).scan("https://fake-amazon.tk")
        await flush_audit()
        events = get_logger().get_recent_events(event_type=EventType.SCAN_COMPLETED)
        assert events[0]["verdict"] == "BLOCK"
        assert events[0]["scan_id"] == "https://fake-amazon.tk/"


class TestProducerFailures:

    async def test_timeout_becomes_unavailable_phase(self, make_service):
        slow = StaticProducer("slow", {"score": 10, "maxScore": 10}, delay=5, timeout=0.01)
        decision = await make_service([ssl_ok(), slow]).scan("https://www.wikipedia.org/")

        phase = decision.phases["slow"]
        assert phase.available is False
        assert phase.status == "warning"
        assert phase.score == 5
        assert phase.reason == "Timed out after 0.01s"
        assert decision.defaulted is False
        await flush_audit()
        assert get_logger().get_recent_events(event_type=EventType.PRODUCER_TIMEOUT)

    async def test_configured_timeout_by_name(self, make_service):
        slow = StaticProducer("slow", {"score": 10, "maxScore": 10}, delay=5)
        config = GuardianConfig(scan={"producer_timeouts": {"slow": 0.01}})
        decision = await make_service([ssl_ok(), slow], config=config).scan("https://x.example")
        assert decision.phases["slow"].available is False

    async def test_error_becomes_unavailable_phase(self, make_service):
        def boom(url):
            raise RuntimeError("provider down")

        broken = CallableProducer("reputation", boom, max_score=20, fallback_score=0)
        decision = await make_service([ssl_ok(), broken]).scan("https://www.wikipedia.org/")

        phase = decision.phases["reputation"]
        assert phase.available is False
        assert phase.error == "provider down"
        assert phase.score == 0
        assert "reputation: provider down" in decision.reasoning

    async def test_all_unavailable_defaults_safe_and_is_not_cached(self, make_service):
        slow = StaticProducer("slow", {"score": 10, "maxScore": 10}, delay=5, timeout=0.01)
        config = GuardianConfig(heuristics={"enabled": False})
        service = make_service([slow], config=config)

        decision = await service.scan("https://x.example")

        assert decision.defaulted is True
        assert decision.verdict is Verdict.ALLOW
        assert len(service.cache) == 0
        ticket = service.poll(decision.fingerprint)
        assert ticket.status is ScanStatus.FAILED

    async def test_pipeline_exception_defaults_safe(self, make_service, monkeypatch):
        service = make_service([ssl_ok()])

        def explode(*args, **kwargs):
            raise ValueError("engine broke")

        monkeypatch.setattr(service.engine, "decide", explode)
        decision = await service.scan("https://x.example")

        assert decision.defaulted is True
        assert decision.reasoning == SCAN_FAILED_REASON
        await flush_audit()
        events = get_logger().get_recent_events(event_type=EventType.SCAN_FAILED)
        assert events[0]["reason"] == "engine broke"


class TestPollingContract:

    async def test_concurrent_submits_share_one_scan(self, make_service):
        calls = []

        async def counted(url):
            calls.append(url)
            await asyncio.sleep(0.01)
            return {"score": 15, "maxScore": 15}

        service = make_service([CallableProducer("ssl", counted, max_score=15)],
                               config=GuardianConfig(scan=FAST_POLL))

        first, second = await asyncio.gather(
            service.submit("https://Example.com/"),
            service.submit("https://example.com"),
        )
        assert first.scan_id == second.scan_id == "https://example.com/"
        assert first.status is ScanStatus.ACCEPTED

        decision = await service.wait_for_decision(first.scan_id)
        assert decision.defaulted is False
        assert len(calls) == 1

    async def test_poll_never_starts_work(self, make_service):
        service = make_service([ssl_ok()])
        assert service.poll("https://x.example/").status is ScanStatus.NOT_FOUND
        assert service._tasks == {}

    async def test_poll_progression(self, make_service):
        service = make_service([ssl_ok()])
        ticket = await service.submit("https://x.example")
        assert service.poll(ticket.scan_id).status is ScanStatus.ACCEPTED

        await service.scan("https://x.example")
        completed = service.poll(ticket.scan_id)
        assert completed.status is ScanStatus.COMPLETED
        assert completed.decision is not None

    async def test_cache_hit_returns_completed_ticket(self, make_service):
        service = make_service([ssl_ok()])
        decision = await service.scan("https://x.example")

        ticket = await service.submit("https://X.example/")
        assert ticket.status is ScanStatus.COMPLETED
        assert ticket.decision is decision
        await flush_audit()
        assert get_logger().get_recent_events(event_type=EventType.CACHE_HIT)

    async def test_wait_for_decision_is_bounded(self, make_service):
        config = GuardianConfig(scan={"max_poll_attempts": 3, "poll_interval_seconds": 0})
        service = make_service(config=config)

        decision = await service.wait_for_decision("https://never-submitted.example/")

        assert decision.defaulted is True
        assert decision.verdict is Verdict.ALLOW
        assert decision.reasoning == SCAN_TIMEOUT_REASON
        assert decision.fingerprint == "https://never-submitted.example/"

    async def test_in_flight_scan_survives_caller_cancellation(self, make_service):
        slow = StaticProducer("ssl", {"score": 15, "maxScore": 15}, delay=0.05)
        service = make_service([slow], config=GuardianConfig(scan=FAST_POLL))

        caller = asyncio.ensure_future(service.scan("https://x.example"))
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        decision = await service.wait_for_decision("https://x.example/")
        assert decision.defaulted is False
        assert service.cache.get("https://x.example") is decision

    async def test_without_cache(self, seeded_store):
        config = GuardianConfig(cache={"enabled": False})
        service = ScanService(producers=[ssl_ok()], store=seeded_store, config=config)
        assert service.cache is None
        decision = await service.scan("https://x.example")
        assert service.poll(decision.fingerprint).decision is decision

    async def test_uncached_results_are_bounded(self, seeded_store):
        config = GuardianConfig(cache={"enabled": False})
        service = ScanService(producers=[ssl_ok()], store=seeded_store, config=config,
                              max_finished=2)

        for host in ("a", "b", "c"):
            await service.scan(f"https://{host}.example")

        assert len(service._finished) == 2
        assert service.poll("https://a.example/").status is ScanStatus.NOT_FOUND
        assert service.poll("https://c.example/").status is ScanStatus.COMPLETED


class TestLearningHook:

    def malicious_producers(self):
        return [
            StaticProducer("virus_total", {"score": 0, "maxScore": 10, "mandate": "malicious"}),
            StaticProducer("content", {
                "score": 5, "maxScore": 20, "status": "warning",
                "findings": ["Login form detected", "Password input field"],
            }),
        ]

    async def test_mandate_override_learns_rule(self, make_service, seeded_store):
        decision = await make_service(self.malicious_producers()).scan("https://evil.example/login")

        assert decision.verdict is Verdict.BLOCK
        assert decision.mandate_override is True
        learned = [r for r in seeded_store.get_all() if r.is_learned]
        assert len(learned) == 1
        assert learned[0].conditions == {"login_form_detected": True, "password_field": True}
        await flush_audit()
        assert get_logger().get_recent_events(event_type=EventType.MANDATE_OVERRIDE)

    async def test_learning_disabled(self, make_service, seeded_store):
        config = GuardianConfig(learning={"enabled": False})
        await make_service(self.malicious_producers(), config=config).scan("https://evil.example")
        assert not any(r.is_learned for r in seeded_store.get_all())
