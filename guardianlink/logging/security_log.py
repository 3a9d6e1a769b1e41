#!/usr/bin/env python3
"""
GuardianLink Security Logger

SQLite-based audit logging for scan and rule-lifecycle events.
Records scans, verdicts, producer failures, mandate overrides, and every
change the learner or decay pass makes to the heuristic rule set.

Database location: ~/.guardianlink/security.db

URLs are redacted before they are written: embedded credentials and
secret-bearing query parameters never reach the log. Each row carries a
SHA-256 hash chained to the previous row so tampering can be detected.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern


logger = logging.getLogger(__name__)


def _sanitize_for_log(text: Optional[str]) -> Optional[str]:
    """Sanitize text for log storage to prevent log injection.

    Replaces control characters that could break log parsers:
    newlines, carriage returns, tabs, null bytes, and ANSI escapes.
    """
    if text is None:
        return None
    return (
        text
        .replace("\x00", "\\x00")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x1b", "\\x1b")
    )


class LogRedactor:
    """
    Redacts sensitive information from log data.

    Scanned URLs routinely carry session tokens, password-reset codes and
    basic-auth credentials. None of it is written to the audit log.
    """

    REDACTION_PATTERNS: List[tuple[str, Pattern, str]] = [
        # user:pass@host in URLs
        ("url_credentials", re.compile(
            r'(?i)([a-z][a-z0-9+.-]*://)[^/@\s?#]+@'
        ), r'\1***REDACTED***@'),

        # Secret-bearing query parameters
        ("secret_query", re.compile(
            r'(?i)([?&;](?:access_token|refresh_token|id_token|token|api_key|apikey|key|'
            r'password|passwd|pwd|secret|session|sessionid|sid|auth|code|signature|sig)=)[^&#;\s]*'
        ), r'\1***REDACTED***'),

        # Bearer tokens
        ("bearer", re.compile(
            r'(?i)(bearer)\s+([A-Za-z0-9_.-]{20,})'
        ), r'\1 ***REDACTED***'),

        # JWT tokens
        ("jwt", re.compile(
            r'(eyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*)'
        ), '***JWT_REDACTED***'),

        # API keys in assignments
        ("api_key", re.compile(
            r'(?i)(api[_-]?key|apikey|secret[_-]?key)[\s:=]+[\'\"]?([A-Za-z0-9_-]{16,})[\'\"]?'
        ), r'\1=***REDACTED***'),
    ]

    # Keys in dictionaries that should have their values redacted
    SENSITIVE_KEYS = {
        'password', 'passwd', 'pwd', 'secret', 'token', 'api_key', 'apikey',
        'credential', 'auth', 'bearer', 'jwt', 'session', 'cookie',
    }

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def redact_string(self, text: str) -> str:
        """
        Redact sensitive information from a string.

        Args:
            text: The text to redact

        Returns:
            Redacted text with sensitive data replaced
        """
        if not self.enabled or not text:
            return text

        result = text
        for name, pattern, replacement in self.REDACTION_PATTERNS:
            result = pattern.sub(replacement, result)

        return result

    def redact_url(self, url: str) -> str:
        return self.redact_string(url)

    def redact_dict(self, data: Dict[str, Any], depth: int = 0) -> Dict[str, Any]:
        """
        Redact sensitive information from a dictionary.

        Args:
            data: Dictionary to redact
            depth: Current recursion depth (to prevent infinite loops)

        Returns:
            Dictionary with sensitive values redacted
        """
        if not self.enabled or not data or depth > 10:
            return data

        result = {}
        for key, value in data.items():
            key_lower = str(key).lower()

            is_sensitive = any(
                sensitive in key_lower
                for sensitive in self.SENSITIVE_KEYS
            )

            if is_sensitive:
                result[key] = "***REDACTED***"
            elif isinstance(value, str):
                result[key] = self.redact_string(value)
            elif isinstance(value, dict):
                result[key] = self.redact_dict(value, depth + 1)
            elif isinstance(value, list):
                result[key] = [
                    self.redact_dict(item, depth + 1) if isinstance(item, dict)
                    else self.redact_string(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            else:
                result[key] = value

        return result


class EventType(Enum):
    """Types of security events."""
    # Scan pipeline
    SCAN_STARTED = "scan_started"               # Pipeline began for a fingerprint
    SCAN_COMPLETED = "scan_completed"           # Decision produced
    SCAN_FAILED = "scan_failed"                 # Pipeline failed, defaulted to safe
    CACHE_HIT = "cache_hit"                     # Decision served from cache
    PRODUCER_TIMEOUT = "producer_timeout"       # Evidence producer exceeded its timeout
    PRODUCER_ERROR = "producer_error"           # Evidence producer raised
    MANDATE_OVERRIDE = "mandate_override"       # Malicious mandate forced BLOCK

    # Rule lifecycle
    RULE_LEARNED = "rule_learned"               # New rule from a malicious sample
    LEARNING_REFUSED = "learning_refused"       # Learner declined to create a rule
    RULE_ADJUSTED = "rule_adjusted"             # Confidence lowered by feedback
    RULE_DEACTIVATED = "rule_deactivated"       # Rule fell below min confidence
    RULE_REACTIVATED = "rule_reactivated"       # Decay reset on a rule
    DECAY_APPLIED = "decay_applied"             # Decay pass summary

    # System
    PERSISTENCE_FAILURE = "persistence_failure"  # Store, cache or log write failed


@dataclass
class SecurityEvent:
    """A security event to be logged."""
    event_type: EventType
    component: str                           # scanner, learner, decay, cache, ...
    url: Optional[str] = None
    rule_id: Optional[str] = None
    severity: Optional[str] = None
    verdict: Optional[str] = None            # ALLOW, WARN, BLOCK
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    scan_id: Optional[str] = None            # Fingerprint linking events of one scan
    source: Optional[str] = None             # "cli", "service"


class SecurityLogger:
    """SQLite-based security event logger with automatic redaction."""

    DEFAULT_DB_PATH = Path.home() / ".guardianlink" / "security.db"

    def __init__(
        self,
        db_path: Optional[Path] = None,
        redact_logs: bool = True
    ):
        """Initialize the security logger.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.guardianlink/security.db
            redact_logs: Whether to redact sensitive data before logging (default True)
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.redactor = LogRedactor(enabled=redact_logs)
        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()
        self._ensure_db_exists()

    def _ensure_db_exists(self):
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Security logs should be private
        try:
            os.chmod(self.db_path.parent, 0o700)
        except OSError:
            pass

        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS security_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL DEFAULT (datetime('now')),
                    event_type TEXT NOT NULL,
                    component TEXT NOT NULL,
                    url TEXT,
                    rule_id TEXT,
                    severity TEXT,
                    verdict TEXT,
                    reason TEXT,
                    metadata_json TEXT,
                    scan_id TEXT,
                    source TEXT,
                    entry_hash TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_events_timestamp
                    ON security_events(timestamp);
                CREATE INDEX IF NOT EXISTS idx_events_type
                    ON security_events(event_type);
                CREATE INDEX IF NOT EXISTS idx_events_rule
                    ON security_events(rule_id);
                CREATE INDEX IF NOT EXISTS idx_events_verdict
                    ON security_events(verdict);
                CREATE INDEX IF NOT EXISTS idx_events_scan
                    ON security_events(scan_id);

                DROP VIEW IF EXISTS event_summary;
                CREATE VIEW event_summary AS
                SELECT
                    date(timestamp) as date,
                    event_type,
                    component,
                    verdict,
                    COUNT(*) as count
                FROM security_events
                GROUP BY date(timestamp), event_type, component, verdict;
            """)

    @contextmanager
    def _get_connection(self):
        """Get a database connection, reusing persistent connection when possible."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=5,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            # On error, close and reset so next call gets a fresh connection
            try:
                self._conn.close()
            except Exception:
                pass
            self._conn = None
            raise

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def log(self, event: SecurityEvent) -> int:
        """Log a security event with automatic redaction of sensitive data.

        Args:
            event: The security event to log

        Returns:
            The row ID of the inserted event
        """
        redacted_url = self.redactor.redact_url(event.url) if event.url else None
        redacted_reason = self.redactor.redact_string(event.reason) if event.reason else None
        redacted_metadata = self.redactor.redact_dict(event.metadata) if event.metadata else None

        redacted_url = _sanitize_for_log(redacted_url)
        redacted_reason = _sanitize_for_log(redacted_reason)

        with self._write_lock, self._get_connection() as conn:
            prev_row = conn.execute(
                "SELECT entry_hash FROM security_events ORDER BY id DESC LIMIT 1"
            ).fetchone()
            prev_hash = prev_row["entry_hash"] if prev_row and prev_row["entry_hash"] else ""

            metadata_str = json.dumps(redacted_metadata, default=str) if redacted_metadata else None
            entry_hash = self._compute_entry_hash(
                prev_hash=prev_hash,
                event_type=event.event_type.value,
                component=event.component,
                url=redacted_url,
                rule_id=event.rule_id,
                severity=event.severity,
                verdict=event.verdict,
                reason=redacted_reason,
                metadata_json=metadata_str,
                scan_id=event.scan_id,
                source=event.source,
            )

            cursor = conn.execute("""
                INSERT INTO security_events (
                    event_type, component, url, rule_id, severity,
                    verdict, reason, metadata_json, scan_id, source, entry_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.event_type.value,
                event.component,
                redacted_url,
                event.rule_id,
                event.severity,
                event.verdict,
                redacted_reason,
                metadata_str,
                event.scan_id,
                event.source,
                entry_hash,
            ))
            return cursor.lastrowid

    def log_quick(
        self,
        event_type: EventType,
        component: str,
        url: Optional[str] = None,
        **kwargs
    ) -> int:
        """Quick logging helper.

        Args:
            event_type: Type of event
            component: Component emitting the event
            url: The URL involved, if any
            **kwargs: Additional event fields

        Returns:
            The row ID of the inserted event
        """
        event = SecurityEvent(
            event_type=event_type,
            component=component,
            url=url,
            **kwargs
        )
        return self.log(event)

    def get_recent_events(
        self,
        limit: int = 50,
        event_type: Optional[EventType] = None,
        rule_id: Optional[str] = None
    ) -> List[Dict]:
        """Get recent security events, newest first.

        Args:
            limit: Maximum number of events to return
            event_type: Filter by event type
            rule_id: Filter by heuristic rule

        Returns:
            List of event dictionaries
        """
        query = "SELECT * FROM security_events WHERE 1=1"
        params: List[Any] = []

        if event_type:
            query += " AND event_type = ?"
            params.append(event_type.value)

        if rule_id:
            query += " AND rule_id = ?"
            params.append(rule_id)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [dict(row) for row in rows]

    def get_stats(self, days: int = 7) -> Dict[str, Any]:
        """Get event statistics for the specified period.

        Args:
            days: Number of days to include

        Returns:
            Dictionary with statistics
        """
        window = (f'-{days} days',)
        with self._get_connection() as conn:
            total = conn.execute("""
                SELECT COUNT(*) as count FROM security_events
                WHERE timestamp > datetime('now', ?)
            """, window).fetchone()['count']

            verdicts = conn.execute("""
                SELECT verdict, COUNT(*) as count
                FROM security_events
                WHERE timestamp > datetime('now', ?)
                AND verdict IS NOT NULL
                GROUP BY verdict
            """, window).fetchall()

            by_type = conn.execute("""
                SELECT event_type, COUNT(*) as count
                FROM security_events
                WHERE timestamp > datetime('now', ?)
                GROUP BY event_type
                ORDER BY count DESC
            """, window).fetchall()

            rules = conn.execute("""
                SELECT rule_id, COUNT(*) as count
                FROM security_events
                WHERE timestamp > datetime('now', ?)
                AND rule_id IS NOT NULL
                GROUP BY rule_id
                ORDER BY count DESC
                LIMIT 10
            """, window).fetchall()

            return {
                'period_days': days,
                'total_events': total,
                'by_verdict': {row['verdict']: row['count'] for row in verdicts},
                'by_event_type': {row['event_type']: row['count'] for row in by_type},
                'top_rules': [
                    {'rule_id': row['rule_id'], 'count': row['count']}
                    for row in rules
                ],
            }

    # --- Hash chain methods ---

    @staticmethod
    def _compute_entry_hash(
        prev_hash: str,
        event_type: str,
        component: str,
        url: Optional[str] = None,
        rule_id: Optional[str] = None,
        severity: Optional[str] = None,
        verdict: Optional[str] = None,
        reason: Optional[str] = None,
        metadata_json: Optional[str] = None,
        scan_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> str:
        """Compute SHA-256 hash for chain entry.

        Creates a canonical JSON representation of the event fields
        (sorted keys, deterministic), prepends the previous hash,
        and returns the SHA-256 hex digest.
        """
        canonical = json.dumps({
            "component": component,
            "event_type": event_type,
            "metadata_json": metadata_json,
            "reason": reason,
            "rule_id": rule_id,
            "scan_id": scan_id,
            "severity": severity,
            "source": source,
            "url": url,
            "verdict": verdict,
        }, sort_keys=True, separators=(",", ":"))
        payload = prev_hash + canonical
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def verify_chain(self) -> Dict[str, Any]:
        """Verify the integrity of the entire hash chain.

        Walks all entries in insertion order and recomputes each hash.

        Returns:
            Dict with keys:
                valid: bool, True if chain is intact
                total: int, total entries checked
                verified: int, entries that passed verification
                broken_at: Optional[int], first row ID where chain broke
                errors: List[Dict], details of each broken link
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM security_events ORDER BY id ASC"
            ).fetchall()

        prev_hash = ""
        verified = 0
        errors = []
        broken_at = None

        for row in rows:
            row_dict = dict(row)
            stored_hash = row_dict.get("entry_hash") or ""

            expected = self._compute_entry_hash(
                prev_hash=prev_hash,
                event_type=row_dict["event_type"],
                component=row_dict["component"],
                url=row_dict.get("url"),
                rule_id=row_dict.get("rule_id"),
                severity=row_dict.get("severity"),
                verdict=row_dict.get("verdict"),
                reason=row_dict.get("reason"),
                metadata_json=row_dict.get("metadata_json"),
                scan_id=row_dict.get("scan_id"),
                source=row_dict.get("source"),
            )

            if expected == stored_hash:
                verified += 1
            else:
                if broken_at is None:
                    broken_at = row_dict["id"]
                errors.append({
                    "id": row_dict["id"],
                    "event_type": row_dict["event_type"],
                    "timestamp": row_dict.get("timestamp", ""),
                    "expected_hash": expected[:16] + "...",
                    "stored_hash": stored_hash[:16] + "...",
                })

            prev_hash = stored_hash

        return {
            "valid": len(errors) == 0,
            "total": len(rows),
            "verified": verified,
            "broken_at": broken_at,
            "errors": errors,
        }


# Singleton instance for easy access
_logger: Optional[SecurityLogger] = None
_logger_lock = threading.Lock()


def get_logger(redact_logs: bool = True) -> SecurityLogger:
    """Get the singleton security logger instance.

    The database path comes from the ``logging.db_path`` config setting
    when present.

    Args:
        redact_logs: Whether to enable log redaction (default True)

    Returns:
        SecurityLogger instance
    """
    global _logger
    if _logger is None:
        with _logger_lock:
            if _logger is None:
                from guardianlink.config import get_config

                settings = get_config().logging
                db_path = Path(settings.db_path).expanduser() if settings.db_path else None
                _logger = SecurityLogger(
                    db_path=db_path,
                    redact_logs=redact_logs and settings.redact_urls,
                )
    return _logger


def reset_logger() -> None:
    """Close and drop the singleton (used by tests and after config changes)."""
    global _logger
    with _logger_lock:
        if _logger is not None:
            _logger.close()
        _logger = None


def _write_audit(event_type: EventType, component: str, url: Optional[str], kwargs: Dict[str, Any]) -> None:
    try:
        get_logger().log_quick(event_type, component, url=url, **kwargs)
    except Exception as e:
        logger.warning("Audit event %s not recorded: %s", event_type.value, e)


# One writer thread keeps events in submission order for the hash chain
_audit_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="guardianlink-audit")
_pending_audits: List[asyncio.Future] = []


def audit(event_type: EventType, component: str, url: Optional[str] = None, **kwargs) -> None:
    """Record an audit event without ever raising.

    Audit writes sit on the scan and learning paths. Inside a running event
    loop the write is handed to a background writer thread so a slow or
    locked database never stalls the loop; use ``flush_audit()`` to wait for
    it. A failed write is logged and skipped.
    """
    try:
        from guardianlink.config import get_config

        if not get_config().logging.enabled:
            return
    except Exception as e:
        logger.warning("Audit event %s not recorded: %s", event_type.value, e)
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _write_audit(event_type, component, url, kwargs)
        return

    _pending_audits[:] = [f for f in _pending_audits if not f.done()]
    _pending_audits.append(
        loop.run_in_executor(_audit_executor, _write_audit, event_type, component, url, kwargs)
    )


async def flush_audit() -> None:
    """Wait for audit writes scheduled from the running loop."""
    loop = asyncio.get_running_loop()
    pending = [f for f in _pending_audits if f.get_loop() is loop]
    _pending_audits[:] = [f for f in _pending_audits if f not in pending]
    if pending:
        await asyncio.gather(*pending)


def wait_for_audit_writes(timeout: Optional[float] = None) -> None:
    """Block until every audit write handed to the writer thread is done."""
    _audit_executor.submit(lambda: None).result(timeout)
