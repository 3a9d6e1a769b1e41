"""
GuardianLink Heuristic Rule Store

Versioned JSON store for the mutable heuristic rule set. The evaluator,
learner and decay pass all share one store instance, passed in explicitly.

Storage location: ~/.guardianlink/heuristics.json

Persistence guarantees:
- Writes are atomic (temp file in the same directory, then os.replace)
- A failed write is logged and swallowed; the in-memory set stays authoritative
- An unreadable store degrades to an empty in-memory set and the file on
  disk is left untouched (writes are suspended until it is repaired)
- Read-modify-write passes run inside transaction() under a re-entrant lock
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from guardianlink.heuristics.schemas import (
    SOURCE_SEED,
    HeuristicRule,
    RuleSet,
    utcnow_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path.home() / ".guardianlink" / "heuristics.json"


class DuplicateRuleError(Exception):
    """Raised when adding a rule whose id is already present."""


class RuleNotFoundError(KeyError):
    """Raised when a rule id is not in the store."""


class HeuristicRuleStore:
    """Persisted, mutable collection of heuristic rules."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DEFAULT_RULES_PATH
        self._lock = threading.RLock()
        self._rule_set: Optional[RuleSet] = None
        self._writes_suspended = False

    # --- Load / save ---

    def load(self) -> RuleSet:
        """Read the rule set from disk, creating an empty store if absent."""
        with self._lock:
            if not self.path.exists():
                self._rule_set = RuleSet()
                self._writes_suspended = False
                self.save(self._rule_set)
                return self._rule_set

            try:
                with open(self.path) as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top level is not an object")
                self._rule_set = RuleSet.from_dict(data)
                self._writes_suspended = False
            except (json.JSONDecodeError, OSError, ValueError, TypeError) as e:
                logger.error(
                    "Heuristic store %s is unreadable (%s); using an empty rule set "
                    "and leaving the file untouched",
                    self.path, e,
                )
                self._rule_set = RuleSet()
                self._writes_suspended = True
            return self._rule_set

    def save(self, rule_set: Optional[RuleSet] = None) -> bool:
        """Atomically write the rule set. Returns False if the write failed."""
        with self._lock:
            rule_set = rule_set or self._ensure_loaded()
            if self._writes_suspended:
                logger.warning("Not saving heuristics: %s is unreadable on disk", self.path)
                return False

            rule_set.updated_at = utcnow_iso()
            tmp_path = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    dir=str(self.path.parent),
                    suffix=".tmp",
                )
                with os.fdopen(fd, "w") as f:
                    json.dump(rule_set.to_dict(), f, indent=2)
                os.replace(tmp_path, str(self.path))
                return True
            except (OSError, TypeError, ValueError) as e:
                if tmp_path:
                    try:
                        os.unlink(tmp_path)
                    except OSError:
                        pass
                logger.warning("Could not save heuristics to %s: %s", self.path, e)
                self._report_persistence_failure(e)
                return False

    def _ensure_loaded(self) -> RuleSet:
        if self._rule_set is None:
            return self.load()
        return self._rule_set

    def _report_persistence_failure(self, error: Exception) -> None:
        from guardianlink.logging.security_log import EventType, audit

        audit(
            EventType.PERSISTENCE_FAILURE,
            "rule_store",
            reason=str(error),
            metadata={"path": str(self.path)},
        )

    @contextmanager
    def transaction(self) -> Iterator[RuleSet]:
        """Serialize a read-modify-write pass and save once on success."""
        with self._lock:
            rule_set = self._ensure_loaded()
            yield rule_set
            self.save(rule_set)

    # --- Queries ---

    def get_all(self) -> List[HeuristicRule]:
        with self._lock:
            return list(self._ensure_loaded().rules)

    def get_active_rules(self) -> List[HeuristicRule]:
        with self._lock:
            return [r for r in self._ensure_loaded().rules if r.active]

    def find_rule(self, rule_id: str) -> Optional[HeuristicRule]:
        with self._lock:
            for rule in self._ensure_loaded().rules:
                if rule.id == rule_id:
                    return rule
        return None

    def get_rule(self, rule_id: str) -> HeuristicRule:
        """Return the rule with this id.

        Raises:
            RuleNotFoundError: if no such rule exists.
        """
        rule = self.find_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    # --- Mutation ---

    def add_rule(self, rule: HeuristicRule) -> HeuristicRule:
        """Append a rule and persist.

        Raises:
            DuplicateRuleError: if a rule with the same id exists.
        """
        with self.transaction() as rule_set:
            if any(r.id == rule.id for r in rule_set.rules):
                raise DuplicateRuleError(f"Rule '{rule.id}' already exists")
            rule_set.rules.append(rule)
        return rule

    def seed(self, rules: Iterable[HeuristicRule]) -> int:
        """Add rules whose ids are not yet present. Returns the number added."""
        added = 0
        with self.transaction() as rule_set:
            existing = {r.id for r in rule_set.rules}
            for rule in rules:
                if rule.id in existing:
                    continue
                rule_set.rules.append(rule)
                existing.add(rule.id)
                added += 1
        if added:
            logger.info("Seeded %d heuristic rule(s) into %s", added, self.path)
        return added

    def seed_from_yaml(self, path: Optional[Path] = None) -> int:
        """Seed from a heuristics.yaml file (the bundled rules by default).

        Raises:
            ConfigError: if the file is missing or invalid.
        """
        from guardianlink.config import SEED_RULES_FILE
        from guardianlink.config.loader import load_seed_rules

        seed_config = load_seed_rules(Path(path) if path else SEED_RULES_FILE)
        now = utcnow_iso()
        rules = [
            HeuristicRule(
                id=definition.id,
                description=definition.description,
                conditions=dict(definition.conditions),
                score_impact=definition.score_impact,
                severity=definition.severity.value,
                confidence=definition.confidence,
                min_confidence=definition.min_confidence,
                confidence_decay_per_day=definition.confidence_decay_per_day,
                source=SOURCE_SEED,
                created_at=now,
                last_seen_at=now,
            )
            for definition in seed_config.rules
        ]
        return self.seed(rules)

    # --- Stats ---

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            rules = self._ensure_loaded().rules
            active = [r for r in rules if r.active]
            return {
                "total": len(rules),
                "active": len(active),
                "expired": sum(1 for r in rules if not r.active),
                "learned": sum(1 for r in rules if r.is_learned),
                "average_confidence": (
                    round(sum(r.confidence for r in active) / len(active), 3) if active else 0.0
                ),
                "path": str(self.path),
            }


# =========================================================================
# Module-level accessor (CLI convenience)
# =========================================================================

_global_store: Optional[HeuristicRuleStore] = None
_store_lock = threading.Lock()


def get_rule_store(path: Optional[Path] = None) -> HeuristicRuleStore:
    """Get the process-wide rule store.

    Args:
        path: Override path. A custom path returns a new, uncached instance.
    """
    global _global_store
    if path:
        return HeuristicRuleStore(path)

    if _global_store is None:
        with _store_lock:
            if _global_store is None:
                from guardianlink.config import get_config

                settings = get_config().heuristics
                configured = Path(settings.rules_path).expanduser() if settings.rules_path else None
                store = HeuristicRuleStore(configured)
                if settings.seed_bundled_rules and not store.path.exists():
                    store.seed_from_yaml()
                _global_store = store
    return _global_store


def reset_rule_store() -> None:
    """Reset the global store (for testing)."""
    global _global_store
    _global_store = None
