"""
GuardianLink Evidence Producers

An evidence producer is an async collaborator that inspects one aspect of
a URL (reputation, certificate, content, redirects, WHOIS...) and returns
a normalized result:

    {"score": 12, "maxScore": 15, "status": "safe", "findings": [...], ...}

Scores are higher-is-safer within the producer's own point budget. The
raw network calls to third-party providers live outside this package; the
producers here replay already-normalized results (StaticProducer) or wrap
any sync/async callable (CallableProducer).
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import yaml

from guardianlink.decision.models import EvidenceResult, PhaseStatus

logger = logging.getLogger(__name__)

RawResult = Union[EvidenceResult, Mapping[str, Any]]


class EvidenceProducer(ABC):
    """Base class for evidence producers.

    Attributes:
        name: Phase name in the decision.
        max_score: Point budget used when the producer yields nothing.
        fallback_score: Score of the neutral phase substituted on timeout or
            error. Defaults to half the budget.
        context_key: Key under which the result is exposed to signal
            extraction and learning. Defaults to ``name``.
        timeout: Per-producer timeout in seconds (None = configured default).
    """

    name: str = "producer"
    max_score: float = 0.0
    fallback_score: Optional[float] = None
    context_key: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def key(self) -> str:
        return self.context_key or self.name

    @abstractmethod
    async def produce(self, url: str) -> RawResult:
        """Inspect a URL and return a normalized result."""


class StaticProducer(EvidenceProducer):
    """Returns a fixed, pre-normalized result (optionally after a delay)."""

    def __init__(
        self,
        name: str,
        result: RawResult,
        delay: float = 0.0,
        timeout: Optional[float] = None,
        context_key: Optional[str] = None,
    ):
        self.name = name
        self.result = result
        self.delay = delay
        self.timeout = timeout
        self.context_key = context_key
        if isinstance(result, EvidenceResult):
            self.max_score = result.max_score
        else:
            self.max_score = EvidenceResult.from_dict(name, result).max_score

    async def produce(self, url: str) -> RawResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class CallableProducer(EvidenceProducer):
    """Wraps ``func(url)``; coroutine functions are awaited."""

    def __init__(
        self,
        name: str,
        func: Callable[[str], Union[RawResult, Awaitable[RawResult]]],
        max_score: float = 0.0,
        timeout: Optional[float] = None,
        fallback_score: Optional[float] = None,
        context_key: Optional[str] = None,
    ):
        self.name = name
        self.func = func
        self.max_score = max_score
        self.timeout = timeout
        self.fallback_score = fallback_score
        self.context_key = context_key

    async def produce(self, url: str) -> RawResult:
        result = self.func(url)
        if inspect.isawaitable(result):
            result = await result
        return result


def normalize_result(producer: EvidenceProducer, raw: Any) -> EvidenceResult:
    """Coerce a producer's return value into an EvidenceResult."""
    if isinstance(raw, EvidenceResult):
        return raw
    if isinstance(raw, Mapping):
        data = dict(raw)
        if "maxScore" not in data and "max_score" not in data:
            data["max_score"] = producer.max_score
        return EvidenceResult.from_dict(producer.name, data)
    logger.warning(
        "Producer %s returned %s instead of a result mapping", producer.name, type(raw).__name__
    )
    return unavailable_result(producer, error=f"invalid result type: {type(raw).__name__}")


def unavailable_result(
    producer: EvidenceProducer,
    reason: Optional[str] = None,
    error: Optional[str] = None,
) -> EvidenceResult:
    """Neutral warning phase substituted for a failed or timed-out producer."""
    fallback = producer.fallback_score
    if fallback is None:
        fallback = producer.max_score / 2
    return EvidenceResult(
        name=producer.name,
        score=fallback,
        max_score=producer.max_score,
        status=PhaseStatus.WARNING.value,
        available=False,
        reason=reason,
        error=error,
    )


def result_context(result: EvidenceResult) -> Dict[str, Any]:
    """Flatten a result for signal extraction: details first, then the normalized fields."""
    context = dict(result.details)
    context.update({
        "score": result.score,
        "maxScore": result.max_score,
        "status": result.status,
        "available": result.available,
        "findings": list(result.findings),
    })
    if result.mandate is not None:
        context["mandate"] = result.mandate
    return context


def load_phases_file(path: Path) -> Dict[str, Dict[str, Any]]:
    """Read recorded producer results from a JSON or YAML file.

    The file holds a mapping of phase name to normalized result.

    Raises:
        ValueError: if the file is not a mapping of mappings.
    """
    path = Path(path)
    with open(path) as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of phase name to result")
    for name, result in data.items():
        if not isinstance(result, dict):
            raise ValueError(f"{path}: phase '{name}' is not a mapping")
    return data


def static_producers(phases: Mapping[str, Mapping[str, Any]]) -> List[StaticProducer]:
    return [StaticProducer(name, result) for name, result in phases.items()]
