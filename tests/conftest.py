"""Pytest configuration and fixtures for GuardianLink tests."""

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from guardianlink.heuristics.schemas import HeuristicRule
from guardianlink.heuristics.store import HeuristicRuleStore


@pytest.fixture(autouse=True)
def _isolate_state(tmp_path):
    """Isolate every on-disk location so tests never touch ~/.guardianlink.

    The config, rule store, scan cache and audit log all resolve their
    default paths from module constants; each is redirected into tmp_path
    and the process-wide singletons are reset around the test.
    """
    from guardianlink.config import reset_config
    from guardianlink.heuristics.store import reset_rule_store
    from guardianlink.logging.security_log import (
        SecurityLogger,
        reset_logger,
        wait_for_audit_writes,
    )

    reset_config()
    reset_logger()
    reset_rule_store()

    home = tmp_path / "guardianlink-home"
    with patch("guardianlink.config.loader.USER_CONFIG_PATH", home / "config.yaml"), \
         patch("guardianlink.heuristics.store.DEFAULT_RULES_PATH", home / "heuristics.json"), \
         patch("guardianlink.cache.DEFAULT_CACHE_PATH", home / "scan_cache.db"), \
         patch.object(SecurityLogger, "DEFAULT_DB_PATH", home / "security.db"):
        yield home
        wait_for_audit_writes()

    reset_logger()
    reset_rule_store()
    reset_config()


@pytest.fixture
def project_root():
    """Return the GuardianLink project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def seed_file(project_root):
    return project_root / "guardianlink" / "config" / "heuristics.yaml"


@pytest.fixture
def store(tmp_path):
    """An empty rule store in a temp directory."""
    return HeuristicRuleStore(tmp_path / "rules.json")


@pytest.fixture
def seeded_store(tmp_path):
    """A rule store holding the bundled seed rules."""
    rule_store = HeuristicRuleStore(tmp_path / "seeded.json")
    rule_store.seed_from_yaml()
    return rule_store


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_rule():
    """Factory building a HeuristicRule with sensible test defaults."""
    def _make(rule_id="test:rule", conditions=None, score_impact=15, **kwargs):
        return HeuristicRule(
            id=rule_id,
            conditions=conditions if conditions is not None else {"url_uses_ip": True},
            score_impact=score_impact,
            **kwargs,
        )
    return _make
