"""
GuardianLink Scan Cache

Decisions keyed by canonical URL fingerprint, valid for a bounded TTL
(24 hours by default). Expired entries are evicted lazily on lookup.

The in-memory map is authoritative. When a db_path is configured, entries
are mirrored to SQLite on a best-effort basis: writes are handed to the
default executor when an event loop is running, serialized by a single
writer lock, and any failure is logged and skipped.

Storage location: ~/.guardianlink/scan_cache.db
"""

import asyncio
import json
import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

if TYPE_CHECKING:
    from guardianlink.config.models import CacheConfig
    from guardianlink.decision.models import Decision

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_CACHE_PATH = Path.home() / ".guardianlink" / "scan_cache.db"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_HOST_RE = re.compile(r"^[\w.\-:]+$")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_TRAILING_RE = re.compile(r"[\s/]+$")


def canonicalize_url(url: str) -> str:
    """Canonical fingerprint of a URL.

    Adds ``https://`` when no scheme is present, lower-cases scheme and
    host, drops query and fragment, strips the default port and trailing
    slashes (keeping the root ``/``). Input that cannot be parsed as a URL
    is returned lower-cased. Applying it twice gives the same result.
    """
    raw = (url or "").strip()
    candidate = raw if _SCHEME_RE.match(raw) else f"https://{raw}"

    try:
        parts = urlsplit(candidate)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return raw.lower()

    if not host or not _HOST_RE.match(host):
        return raw.lower()

    scheme = parts.scheme.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    userinfo = parts.netloc.rpartition("@")[0]
    netloc = f"{userinfo}@{host}" if userinfo else host
    path = _TRAILING_RE.sub("", parts.path) or "/"
    return f"{scheme}://{netloc}{path}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    fingerprint: str
    decision: "Decision"
    created_at: datetime


class ScanCache:
    """Fingerprinted decision cache with a TTL and optional SQLite mirror."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        db_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ttl = ttl
        self.db_path = Path(db_path) if db_path else None
        self._clock = clock or _utcnow
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._pending: List[asyncio.Future] = []
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls, config: "CacheConfig") -> "ScanCache":
        db_path = None
        if config.persist:
            db_path = Path(config.db_path).expanduser() if config.db_path else DEFAULT_CACHE_PATH
        cache = cls(ttl=timedelta(hours=config.ttl_hours), db_path=db_path)
        if db_path is not None:
            cache.load_persisted()
        return cache

    # --- Lookup ---

    def _is_expired(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.created_at >= self.ttl

    def get(self, url: str) -> Optional["Decision"]:
        """Cached decision for a URL, or None if absent or expired."""
        fingerprint = canonicalize_url(url)
        evicted = False
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and self._is_expired(entry, self._clock()):
                del self._entries[fingerprint]
                entry = None
                evicted = True
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1

        if evicted:
            logger.debug("Cache entry expired: %s", fingerprint)
            self._schedule(self._delete_rows, fingerprint)
        return entry.decision if entry else None

    def put(self, url: str, decision: "Decision") -> CacheEntry:
        """Store a decision; a later put for the same fingerprint wins."""
        fingerprint = canonicalize_url(url)
        entry = CacheEntry(fingerprint=fingerprint, decision=decision, created_at=self._clock())
        with self._lock:
            self._entries[fingerprint] = entry
        self._schedule(self._write_row, entry)
        return entry

    def invalidate(self, url: str) -> bool:
        fingerprint = canonicalize_url(url)
        with self._lock:
            removed = self._entries.pop(fingerprint, None) is not None
        self._schedule(self._delete_rows, fingerprint)
        return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self._schedule(self._delete_rows, None)
        return count

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = len(self._entries)
        return {
            "entries": entries,
            "ttl_hours": self.ttl.total_seconds() / 3600,
            "hits": self.hits,
            "misses": self.misses,
            "db_path": str(self.db_path) if self.db_path else None,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # --- Persistence ---

    def _schedule(self, func: Callable[..., None], *args: Any) -> None:
        """Run a persistence call off the calling path when possible."""
        if self.db_path is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            func(*args)
            return
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(loop.run_in_executor(None, func, *args))

    async def flush(self) -> None:
        """Wait for scheduled persistence writes to finish."""
        pending, self._pending = self._pending, []
        if pending:
            await asyncio.gather(*pending)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=5)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS scan_cache (
                fingerprint TEXT PRIMARY KEY,
                decision_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        return conn

    def _write_row(self, entry: CacheEntry) -> None:
        payload = json.dumps(entry.decision.to_dict())
        with self._write_lock:
            try:
                conn = self._connect()
                try:
                    with conn:
                        # Out-of-order writes must not replace a newer row
                        conn.execute(
                            """
                            INSERT INTO scan_cache (fingerprint, decision_json, created_at)
                            VALUES (?, ?, ?)
                            ON CONFLICT(fingerprint) DO UPDATE SET
                                decision_json = excluded.decision_json,
                                created_at = excluded.created_at
                            WHERE excluded.created_at >= scan_cache.created_at
                            """,
                            (entry.fingerprint, payload, entry.created_at.isoformat()),
                        )
                finally:
                    conn.close()
            except (sqlite3.Error, OSError) as e:
                self._report_persistence_failure(e)

    def _delete_rows(self, fingerprint: Optional[str]) -> None:
        with self._write_lock:
            try:
                conn = self._connect()
                try:
                    with conn:
                        if fingerprint is None:
                            conn.execute("DELETE FROM scan_cache")
                        else:
                            conn.execute(
                                "DELETE FROM scan_cache WHERE fingerprint = ?", (fingerprint,)
                            )
                finally:
                    conn.close()
            except (sqlite3.Error, OSError) as e:
                self._report_persistence_failure(e)

    def _report_persistence_failure(self, error: Exception) -> None:
        from guardianlink.logging.security_log import EventType, audit

        logger.warning("Scan cache persistence failed (%s): %s", self.db_path, error)
        audit(
            EventType.PERSISTENCE_FAILURE,
            "scan_cache",
            reason=str(error),
            metadata={"path": str(self.db_path)},
        )

    def load_persisted(self) -> int:
        """Load unexpired entries from SQLite into memory.

        Returns:
            Number of entries loaded. Entries already in memory are kept.
        """
        if self.db_path is None or not self.db_path.exists():
            return 0

        from guardianlink.decision.models import Decision

        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT fingerprint, decision_json, created_at FROM scan_cache"
                ).fetchall()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            self._report_persistence_failure(e)
            return 0

        now = self._clock()
        loaded = 0
        with self._lock:
            for row in rows:
                try:
                    created_at = datetime.fromisoformat(row["created_at"])
                    if created_at.tzinfo is None:
                        created_at = created_at.replace(tzinfo=timezone.utc)
                    decision = Decision.from_dict(json.loads(row["decision_json"]))
                except (ValueError, KeyError, TypeError) as e:
                    logger.debug("Skipping unreadable cache row %s: %s", row["fingerprint"], e)
                    continue
                entry = CacheEntry(row["fingerprint"], decision, created_at)
                if self._is_expired(entry, now) or entry.fingerprint in self._entries:
                    continue
                self._entries[entry.fingerprint] = entry
                loaded += 1
        return loaded
