"""
GuardianLink Scan Service

Orchestrates one scan per URL fingerprint:

1. Cache lookup (hit -> completed ticket, no work)
2. All evidence producers run concurrently, each under its own timeout;
   a timeout or error becomes a neutral, unavailable phase
3. Signals are extracted from the URL and the merged producer context
4. The heuristic rule set is evaluated as its own phase
5. The decision engine merges the phases into a verdict
6. The verdict is cached; a malicious mandate feeds the learner

``submit()`` returns immediately and runs the pipeline as a background
task keyed by fingerprint. A second submit while that task is in flight
reuses it. ``poll()`` is a pure lookup, and ``wait_for_decision()`` polls a
bounded number of times before falling back to a default-safe decision.
In-flight scans are never cancelled; they finish and populate the cache.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from guardianlink.cache import ScanCache, canonicalize_url
from guardianlink.config import get_config
from guardianlink.config.models import GuardianConfig
from guardianlink.decision.engine import (
    SCAN_TIMEOUT_REASON,
    DecisionEngine,
    default_safe_decision,
    is_whitelisted,
)
from guardianlink.decision.models import Decision, EvidenceResult
from guardianlink.heuristics.evaluator import HeuristicEvaluator
from guardianlink.heuristics.learner import HeuristicLearner
from guardianlink.heuristics.store import HeuristicRuleStore, get_rule_store
from guardianlink.logging.security_log import EventType, audit
from guardianlink.producers import (
    EvidenceProducer,
    normalize_result,
    result_context,
    unavailable_result,
)
from guardianlink.signals import extract_signals

logger = logging.getLogger(__name__)

HEURISTICS_PHASE = "heuristics"

# Uncached decisions kept for poll(); older ones are dropped first
MAX_FINISHED_SCANS = 1024


class ScanStatus(str, Enum):
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ScanTicket:
    scan_id: str
    status: ScanStatus
    decision: Optional[Decision] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "status": self.status.value,
            "decision": self.decision.to_dict() if self.decision else None,
        }


class ScanService:
    """Cache-fronted, concurrent evidence collection and decision making."""

    def __init__(
        self,
        producers: Iterable[EvidenceProducer] = (),
        store: Optional[HeuristicRuleStore] = None,
        cache: Optional[ScanCache] = None,
        engine: Optional[DecisionEngine] = None,
        config: Optional[GuardianConfig] = None,
        context: Optional[Mapping[str, Any]] = None,
        max_finished: int = MAX_FINISHED_SCANS,
    ):
        self.config = config or get_config()
        self.producers: List[EvidenceProducer] = list(producers)
        # Recorded context (e.g. WHOIS data) underlying every producer result
        self.base_context: Dict[str, Any] = dict(context or {})
        self.store = store or get_rule_store()

        if cache is None and self.config.cache.enabled:
            cache = ScanCache.from_config(self.config.cache)
        self.cache = cache

        self.engine = engine or DecisionEngine.from_config(self.config.decision)

        heuristics = self.config.heuristics
        self.evaluator = HeuristicEvaluator(
            self.store,
            max_score=heuristics.max_score,
            warning_threshold=heuristics.warning_threshold,
            danger_threshold=heuristics.danger_threshold,
        )
        self.learner = HeuristicLearner(self.store, self.config.learning)

        self._tasks: Dict[str, asyncio.Task] = {}
        # Decisions that were not cached (failed or whitelisted scans), oldest first
        self._finished: "OrderedDict[str, Decision]" = OrderedDict()
        self.max_finished = max_finished

    # =========================================================================
    # Polling contract
    # =========================================================================

    async def submit(self, url: str) -> ScanTicket:
        """Start (or join) a scan and return immediately."""
        fingerprint = canonicalize_url(url)

        cached = self.cache.get(url) if self.cache is not None else None
        if cached is not None:
            audit(EventType.CACHE_HIT, "scanner", url=url, scan_id=fingerprint,
                  verdict=cached.verdict.value)
            return ScanTicket(fingerprint, ScanStatus.COMPLETED, cached)

        task = self._tasks.get(fingerprint)
        if task is None or task.done():
            self._finished.pop(fingerprint, None)
            task = asyncio.get_running_loop().create_task(self._run_scan(url, fingerprint))
            self._tasks[fingerprint] = task
            task.add_done_callback(lambda t, fp=fingerprint: self._forget_task(fp, t))
        return ScanTicket(fingerprint, ScanStatus.ACCEPTED)

    def _remember(self, fingerprint: str, decision: Decision) -> None:
        self._finished[fingerprint] = decision
        self._finished.move_to_end(fingerprint)
        while len(self._finished) > self.max_finished:
            self._finished.popitem(last=False)

    def _forget_task(self, fingerprint: str, task: asyncio.Task) -> None:
        if self._tasks.get(fingerprint) is task:
            del self._tasks[fingerprint]

    def poll(self, scan_id: str) -> ScanTicket:
        """Current state of a scan. Never starts work."""
        cached = self.cache.get(scan_id) if self.cache is not None else None
        if cached is not None:
            return ScanTicket(scan_id, ScanStatus.COMPLETED, cached)

        task = self._tasks.get(scan_id)
        if task is not None and not task.done():
            return ScanTicket(scan_id, ScanStatus.ACCEPTED)

        finished = self._finished.get(scan_id)
        if finished is not None:
            status = ScanStatus.FAILED if finished.defaulted else ScanStatus.COMPLETED
            return ScanTicket(scan_id, status, finished)
        return ScanTicket(scan_id, ScanStatus.NOT_FOUND)

    async def wait_for_decision(self, scan_id: str) -> Decision:
        """Poll until a decision exists, within the configured bound."""
        settings = self.config.scan
        interval = settings.poll_interval_seconds
        for attempt in range(settings.max_poll_attempts):
            ticket = self.poll(scan_id)
            if ticket.decision is not None:
                return ticket.decision
            if attempt < settings.max_poll_attempts - 1:
                await asyncio.sleep(interval)
                interval *= settings.poll_backoff

        logger.warning("Scan %s not finished after %d polls", scan_id, settings.max_poll_attempts)
        return default_safe_decision(
            scan_id,
            reasoning=SCAN_TIMEOUT_REASON,
            fingerprint=scan_id,
            policy=self.engine.policy_name,
        )

    async def scan(self, url: str) -> Decision:
        """Submit and wait for the pipeline itself rather than polling."""
        ticket = await self.submit(url)
        if ticket.decision is not None:
            return ticket.decision
        task = self._tasks.get(ticket.scan_id)
        if task is None:
            return await self.wait_for_decision(ticket.scan_id)
        # Cancelling the caller must not cancel the shared scan
        return await asyncio.shield(task)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _run_scan(self, url: str, fingerprint: str) -> Decision:
        audit(EventType.SCAN_STARTED, "scanner", url=url, scan_id=fingerprint)

        if is_whitelisted(url):
            decision = self.engine.decide(url, {}, fingerprint=fingerprint)
            self._remember(fingerprint, decision)
            return decision

        try:
            phases, context = await self.collect_evidence(url, fingerprint)
            signals = extract_signals(url, context)
            if self.config.heuristics.enabled:
                phases[HEURISTICS_PHASE], context["triggered_rules"] = self._heuristics_phase(signals)
            decision = self.engine.decide(url, phases, fingerprint=fingerprint)
        except Exception as e:
            logger.error("Scan pipeline failed for %s: %s", fingerprint, e, exc_info=True)
            audit(EventType.SCAN_FAILED, "scanner", url=url, scan_id=fingerprint, reason=str(e))
            decision = default_safe_decision(url, fingerprint=fingerprint,
                                             policy=self.engine.policy_name)
            self._remember(fingerprint, decision)
            return decision

        if decision.defaulted:
            audit(EventType.SCAN_FAILED, "scanner", url=url, scan_id=fingerprint,
                  reason=decision.reasoning)
            self._remember(fingerprint, decision)
            return decision

        if self.cache is not None:
            self.cache.put(url, decision)
        else:
            self._remember(fingerprint, decision)

        if decision.mandate_override:
            audit(EventType.MANDATE_OVERRIDE, "decision", url=url, scan_id=fingerprint,
                  verdict=decision.verdict.value, severity="critical")
            if self.config.learning.enabled:
                self._learn(url, context)

        audit(
            EventType.SCAN_COMPLETED,
            "scanner",
            url=url,
            scan_id=fingerprint,
            verdict=decision.verdict.value,
            metadata={
                "percentage": decision.percentage,
                "risk_level": decision.risk_level.value,
                "triggered_rules": context.get("triggered_rules", []),
            },
        )
        return decision

    async def collect_evidence(
        self, url: str, fingerprint: Optional[str] = None
    ) -> Tuple[Dict[str, EvidenceResult], Dict[str, Any]]:
        """Run every producer concurrently.

        Returns:
            (phases by name, context by producer key)
        """
        fingerprint = fingerprint or canonicalize_url(url)
        results = await asyncio.gather(
            *(self._run_producer(producer, url, fingerprint) for producer in self.producers)
        )

        phases: Dict[str, EvidenceResult] = {}
        context: Dict[str, Any] = dict(self.base_context)
        for producer, result in zip(self.producers, results):
            phases[producer.name] = result
            context[producer.key] = result_context(result)
        return phases, context

    def _timeout_for(self, producer: EvidenceProducer) -> float:
        if producer.timeout is not None:
            return producer.timeout
        settings = self.config.scan
        return settings.producer_timeouts.get(producer.name, settings.producer_timeout_seconds)

    async def _run_producer(
        self, producer: EvidenceProducer, url: str, fingerprint: str
    ) -> EvidenceResult:
        timeout = self._timeout_for(producer)
        try:
            raw = await asyncio.wait_for(producer.produce(url), timeout)
        except asyncio.TimeoutError:
            logger.warning("Producer %s timed out after %ss", producer.name, timeout)
            audit(EventType.PRODUCER_TIMEOUT, producer.name, url=url, scan_id=fingerprint,
                  metadata={"timeout": timeout})
            return unavailable_result(producer, reason=f"Timed out after {timeout}s")
        except Exception as e:
            logger.warning("Producer %s failed: %s", producer.name, e)
            audit(EventType.PRODUCER_ERROR, producer.name, url=url, scan_id=fingerprint,
                  reason=str(e))
            return unavailable_result(producer, error=str(e))
        return normalize_result(producer, raw)

    def _heuristics_phase(self, signals) -> Tuple[EvidenceResult, List[str]]:
        evaluation = self.evaluator.evaluate_signals(signals)
        phase = EvidenceResult(
            name=HEURISTICS_PHASE,
            score=evaluation.score,
            max_score=evaluation.max_score,
            status=evaluation.status,
            findings=tuple(m.description or m.id for m in evaluation.matched),
            details={
                "matched_rules": evaluation.matched_ids,
                "total_suspicion": evaluation.total_suspicion,
            },
        )
        return phase, evaluation.matched_ids

    def _learn(self, url: str, context: Dict[str, Any]) -> None:
        try:
            result = self.learner.learn_from_confirmed_malicious(url, context)
        except Exception as e:
            logger.warning("Learning from %s failed: %s", url, e)
            return
        if result.learned:
            logger.info("New heuristic %s learned from %s", result.rule_id, url)
