"""Key-value cache with TTL, persisted in the ``kv_cache`` table.

Entries carry their own write timestamp; reads re-check the age against the
caller's TTL instead of trusting the store's expiry alone.
"""
from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import time
from typing import Any, Dict, Optional, Tuple

from db.database import get_conn

logger = logging.getLogger(__name__)


def _now() -> float:
    return time.time()


def make_cache_key(prefix: str, params: Dict[str, Any]) -> str:
    """Deterministic key from the full normalized parameter set."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


def cache_get(key: str, ttl: int) -> Optional[Tuple[Any, float]]:
    """Return (data, age_seconds) for a fresh entry, else None."""
    now = _now()
    try:
        with get_conn() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM kv_cache WHERE key = ?", (key,)
            ).fetchone()
    except sqlite3.Error as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None
    if row is None or row["expires_at"] <= now:
        logger.debug(f"Cache MISS: {key}")
        return None
    try:
        entry = json.loads(row["value"])
        age = now - float(entry["timestamp"])
        data = entry["data"]
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Cache entry for {key} is unreadable: {e}")
        return None
    if age < 0 or age >= ttl:
        logger.debug(f"Cache STALE: {key} (age {age:.1f}s)")
        return None
    return data, age


def cache_set(key: str, data: Any, ttl: int) -> bool:
    """Store `data` under `key`. Failures are logged, never raised."""
    now = _now()
    value = json.dumps({"data": data, "timestamp": now})
    try:
        with get_conn() as conn:
            conn.execute(
                """
                INSERT INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, now + ttl),
            )
            conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Cache set error for {key}: {e}")
        return False
    logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
    return True


def cache_delete_prefix(prefix: str) -> int:
    with get_conn() as conn:
        cursor = conn.execute("DELETE FROM kv_cache WHERE key LIKE ? || '%'", (prefix,))
        conn.commit()
        return cursor.rowcount


def purge_expired() -> int:
    """Drop entries past their store-level expiry."""
    with get_conn() as conn:
        cursor = conn.execute("DELETE FROM kv_cache WHERE expires_at <= ?", (_now(),))
        conn.commit()
        count = cursor.rowcount
    if count:
        logger.info(f"Purged {count} expired cache entries")
    return count
