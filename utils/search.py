"""Request path: normalize, plan, query, hydrate, diversify."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import Settings
from db.database import get_conn, query_all
from models.search import SearchItem, SearchParams
from utils.diversify import diversify
from utils.errors import QueryExecutionFailure
from utils.hydrator import Hydration, hydrate_cards
from utils.planner import PLAN_NONE, QueryPlan, choose_plan
from utils.query_builder import build_predicates, fetch_limit
from utils.text import SearchPhrase, normalize_query

logger = logging.getLogger(__name__)

UNKNOWN_TOTAL = -1


@dataclass
class SearchOutcome:
    payload: Dict[str, Any]
    plan: QueryPlan


def media_url(key: Optional[str], settings: Settings) -> Optional[str]:
    if not key:
        return None
    if key.startswith(("http://", "https://")):
        return key
    key = key.lstrip("/")
    base = settings.media_base_url.rstrip("/")
    return f"{base}/{key}" if base else f"/media/{key}"


def build_item(row: Dict[str, Any], hydration: Hydration, settings: Settings) -> Dict[str, Any]:
    card_id = row["card_id"]
    subtitles = hydration.subtitles.get(card_id, {})
    levels = hydration.levels.get(card_id, [])
    cefr = next((lvl["level"] for lvl in levels if lvl["framework"] == "CEFR"), None)
    item = SearchItem(
        card_id=card_id,
        content_slug=row["content_slug"],
        content_title=row["content_title"],
        episode_slug=row["episode_slug"],
        episode_number=row["episode_number"],
        card_number=row["card_number"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration=row["duration"],
        difficulty_score=row["difficulty_score"],
        image_url=media_url(row["image_key"], settings),
        audio_url=media_url(row["audio_key"], settings),
        text=subtitles.get(row["content_main_language"], ""),
        subtitle=subtitles,
        cefr_level=cefr,
        levels=levels,
    )
    return item.model_dump()


def _choose_plan(params: SearchParams, settings: Settings) -> QueryPlan:
    with get_conn() as conn:
        return choose_plan(conn, params, settings)


def _phrase(params: SearchParams, settings: Settings) -> Optional[SearchPhrase]:
    return normalize_query(params.q, params.main_language, settings.max_query_tokens)


def _empty_page(params: SearchParams) -> Dict[str, Any]:
    return {"items": [], "total": 0, "page": params.page, "size": params.size}


async def run_search(params: SearchParams, settings: Settings) -> SearchOutcome:
    """Execute one search page.

    Raises QueryExecutionFailure when the store rejects the statement.
    """
    started = time.perf_counter()
    phrase = _phrase(params, settings)
    if phrase is not None and not phrase.matchable:
        return SearchOutcome(_empty_page(params), QueryPlan(PLAN_NONE))

    plan = await asyncio.to_thread(_choose_plan, params, settings)
    predicates = build_predicates(params, phrase, settings, use_index=plan.use_index)
    sql, args = predicates.select_page(fetch_limit(params.size, settings), (params.page - 1) * params.size)

    total = UNKNOWN_TOTAL
    try:
        rows = await asyncio.to_thread(query_all, sql, args)
        if params.include_total:
            count_sql, count_args = predicates.count()
            counted = await asyncio.to_thread(query_all, count_sql, count_args)
            total = counted[0]["total"] if counted else 0
    except sqlite3.Error as e:
        logger.error(f"[search] Query failed (plan={plan.kind}): {e}")
        raise QueryExecutionFailure(str(e)) from e
    queried = time.perf_counter()

    hydration = await hydrate_cards(rows, params.subtitle_languages, settings, fetch=query_all)
    hydrated = time.perf_counter()

    items: List[Dict[str, Any]] = [build_item(row, hydration, settings) for row in rows]
    items = diversify(items, params.size, key=lambda item: item["content_slug"])

    logger.info(
        f"[search] plan={plan.kind} rows={len(rows)} items={len(items)} "
        f"query={(queried - started) * 1000:.0f}ms "
        f"hydrate={(hydrated - queried) * 1000:.0f}ms "
        f"total={(time.perf_counter() - started) * 1000:.0f}ms"
    )
    if hydration.failed_batches:
        logger.warning(f"[search] {hydration.failed_batches} hydration batches returned no data")
    payload = {"items": items, "total": total, "page": params.page, "size": params.size}
    return SearchOutcome(payload, plan)


async def run_counts(params: SearchParams, settings: Settings) -> SearchOutcome:
    """Matches per content source for the same filter set."""
    started = time.perf_counter()
    phrase = _phrase(params, settings)
    if phrase is not None and not phrase.matchable:
        return SearchOutcome({"counts": {}}, QueryPlan(PLAN_NONE))

    plan = await asyncio.to_thread(_choose_plan, params, settings)
    sql, args = build_predicates(params, phrase, settings, use_index=plan.use_index).counts_by_source()
    try:
        rows = await asyncio.to_thread(query_all, sql, args)
    except sqlite3.Error as e:
        logger.error(f"[search] Counts query failed (plan={plan.kind}): {e}")
        raise QueryExecutionFailure(str(e)) from e
    counts = {row["content_id"]: row["count"] for row in rows}
    logger.info(
        f"[search] counts plan={plan.kind} sources={len(counts)} "
        f"total={(time.perf_counter() - started) * 1000:.0f}ms"
    )
    return SearchOutcome({"counts": counts}, plan)
