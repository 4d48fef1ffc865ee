"""Coverage index maintenance.

``card_subtitle_language_map`` holds one row per (card, language) that has
non-empty subtitle text. It only accelerates the "has subtitles in every
language of L" predicate; the fallback path against ``card_subtitles`` is
always correct, so the index may lag behind.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List

from config import Settings
from db.database import chunked, execution_budget, get_conn, get_watermark, set_watermark
from utils.cache import cache_get, cache_set

logger = logging.getLogger(__name__)

REPAIR_JOB = "coverage_repair"
HEALTH_CACHE_KEY = "coverage:health"
REPAIR_MARKER_KEY = "coverage:repair_requested"

_repair_lock = threading.Lock()

_PRUNE_ALL_SQL = """
    DELETE FROM card_subtitle_language_map
    WHERE NOT EXISTS (
        SELECT 1 FROM card_subtitles cs
        WHERE cs.card_id = card_subtitle_language_map.card_id
          AND cs.language = card_subtitle_language_map.language
          AND TRIM(cs.text) != ''
    )
"""

_FILL_ALL_SQL = """
    INSERT OR IGNORE INTO card_subtitle_language_map (card_id, language)
    SELECT DISTINCT card_id, language
    FROM card_subtitles
    WHERE TRIM(text) != ''
"""


@dataclass(frozen=True)
class CoverageHealth:
    index_rows: int
    available_cards: int
    estimated_coverage: float
    healthy: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_coverage(conn: sqlite3.Connection, settings: Settings) -> CoverageHealth:
    """Heuristic index health: (rows / languages_per_card) / available cards."""
    index_rows = conn.execute("SELECT COUNT(*) FROM card_subtitle_language_map").fetchone()[0] or 0
    available = conn.execute("SELECT COUNT(*) FROM cards WHERE is_available = 1").fetchone()[0] or 0
    if available:
        estimated = (index_rows / settings.coverage_languages_per_card) / available
    else:
        estimated = 0.0
    healthy = estimated > settings.coverage_min_ratio and index_rows > settings.coverage_min_rows
    return CoverageHealth(index_rows, available, round(estimated, 4), healthy)


def cached_coverage_health(conn: sqlite3.Connection, settings: Settings) -> CoverageHealth:
    """estimate_coverage, memoized in the KV cache for coverage_health_ttl seconds."""
    if settings.cache_enabled and settings.coverage_health_ttl > 0:
        hit = cache_get(HEALTH_CACHE_KEY, settings.coverage_health_ttl)
        if hit is not None:
            return CoverageHealth(**hit[0])
    health = estimate_coverage(conn, settings)
    if settings.cache_enabled and settings.coverage_health_ttl > 0:
        cache_set(HEALTH_CACHE_KEY, health.to_dict(), settings.coverage_health_ttl)
    return health


def request_repair(settings: Settings) -> bool:
    """Claim the right to enqueue a repair; False if one was requested recently."""
    if _repair_lock.locked():
        return False
    if not settings.cache_enabled:
        return True
    window = max(1, settings.coverage_health_ttl)
    if cache_get(REPAIR_MARKER_KEY, window) is not None:
        return False
    cache_set(REPAIR_MARKER_KEY, {"requested_at": time.time()}, window)
    return True


def sync_card_coverage(conn: sqlite3.Connection, card_ids: Iterable[int], max_params: int = 999) -> None:
    """Re-derive index rows for specific cards after their subtitles changed.

    Runs inside the caller's transaction.
    """
    ids: List[int] = sorted(set(card_ids))
    for batch in chunked(ids, max_params):
        ph = ",".join("?" for _ in batch)
        conn.execute(f"DELETE FROM card_subtitle_language_map WHERE card_id IN ({ph})", batch)
        conn.execute(
            f"""
            INSERT OR IGNORE INTO card_subtitle_language_map (card_id, language)
            SELECT DISTINCT card_id, language
            FROM card_subtitles
            WHERE card_id IN ({ph}) AND TRIM(text) != ''
            """,
            batch,
        )


def _bulk_repair(conn: sqlite3.Connection, settings: Settings) -> Dict[str, Any]:
    with execution_budget(conn, settings.coverage_repair_budget_seconds):
        pruned = conn.execute(_PRUNE_ALL_SQL).rowcount
        inserted = conn.execute(_FILL_ALL_SQL).rowcount
        last_card = conn.execute("SELECT COALESCE(MAX(card_id), 0) FROM card_subtitles").fetchone()[0]
        set_watermark(conn, REPAIR_JOB, 0)
    conn.commit()
    return {"mode": "bulk", "inserted": inserted, "pruned": pruned, "watermark": last_card, "complete": True}


def _chunked_repair(conn: sqlite3.Connection, settings: Settings, start: int) -> Dict[str, Any]:
    watermark = start
    inserted = pruned = chunks = 0
    complete = False
    while True:
        boundary = conn.execute(
            """
            SELECT MAX(card_id) FROM (
                SELECT DISTINCT card_id FROM card_subtitles
                WHERE card_id > ?
                ORDER BY card_id
                LIMIT ?
            )
            """,
            (watermark, settings.coverage_chunk_size),
        ).fetchone()[0]
        if boundary is None:
            # pass finished: drop rows past the last subtitle-bearing card, restart next time
            pruned += conn.execute(_PRUNE_ALL_SQL + " AND card_id > ?", (watermark,)).rowcount
            set_watermark(conn, REPAIR_JOB, 0)
            conn.commit()
            complete = True
            break
        try:
            with execution_budget(conn, settings.coverage_repair_budget_seconds):
                pruned += conn.execute(
                    _PRUNE_ALL_SQL + " AND card_id > ? AND card_id <= ?", (watermark, boundary)
                ).rowcount
                inserted += conn.execute(
                    """
                    INSERT OR IGNORE INTO card_subtitle_language_map (card_id, language)
                    SELECT DISTINCT card_id, language
                    FROM card_subtitles
                    WHERE card_id > ? AND card_id <= ? AND TRIM(text) != ''
                    """,
                    (watermark, boundary),
                ).rowcount
                set_watermark(conn, REPAIR_JOB, boundary)
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            logger.warning(f"[coverage] Chunk after card {watermark} exceeded budget, will resume: {e}")
            break
        watermark = boundary
        chunks += 1
        logger.info(f"[coverage] Processed up to card {watermark}")
    return {
        "mode": "chunked",
        "inserted": inserted,
        "pruned": pruned,
        "watermark": watermark,
        "chunks": chunks,
        "complete": complete,
    }


def _refresh_health(conn: sqlite3.Connection, settings: Settings) -> None:
    if not settings.cache_enabled or settings.coverage_health_ttl <= 0:
        return
    try:
        health = estimate_coverage(conn, settings)
    except sqlite3.Error as e:
        logger.warning(f"[coverage] Could not refresh health estimate: {e}")
        return
    cache_set(HEALTH_CACHE_KEY, health.to_dict(), settings.coverage_health_ttl)


def repair_coverage_index(settings: Settings, full: bool = False) -> Dict[str, Any]:
    """Rebuild the coverage index from card_subtitles.

    Tries a single bulk statement first; if that exceeds the execution budget
    (or a previous chunked pass left a watermark) it continues in card-id
    ranges, persisting the watermark after every chunk. A finished chunked
    pass resets the watermark so the next run rescans from the start; an
    interrupted one resumes. The cached health estimate is refreshed at the
    end. Upserts are idempotent, so concurrent or repeated runs converge.
    """
    if not _repair_lock.acquire(blocking=False):
        logger.info("[coverage] Repair already running in this process, skipping")
        return {"mode": "skipped", "complete": False}
    started = time.perf_counter()
    try:
        with get_conn() as conn:
            watermark = 0 if full else get_watermark(conn, REPAIR_JOB)
            if full:
                set_watermark(conn, REPAIR_JOB, 0)
                conn.commit()
            summary = None
            if watermark == 0:
                try:
                    summary = _bulk_repair(conn, settings)
                except sqlite3.OperationalError as e:
                    conn.rollback()
                    logger.warning(f"[coverage] One-shot repair failed, switching to chunks: {e}")
            if summary is None:
                summary = _chunked_repair(conn, settings, watermark)
            _refresh_health(conn, settings)
    finally:
        _repair_lock.release()
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"[coverage] Repair {summary['mode']} done in {elapsed_ms:.0f}ms: "
        f"+{summary['inserted']} rows, -{summary['pruned']} orphans, watermark {summary['watermark']}"
    )
    return summary
