"""Batched, bounded-concurrency fetch of subtitle maps and level ratings."""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

from config import Settings
from db.database import chunked, query_all

logger = logging.getLogger(__name__)

Fetch = Callable[[str, Sequence[Any]], List[Dict[str, Any]]]


@dataclass
class Hydration:
    subtitles: Dict[int, Dict[str, str]] = field(default_factory=dict)
    levels: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    failed_batches: int = 0


def batch_size_for(settings: Settings, extra_params: int) -> int:
    """Card ids per statement, leaving room for the other bound parameters."""
    headroom = settings.max_bound_parameters - extra_params - 1
    return max(1, min(settings.hydrator_batch_size, headroom))


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def _subtitle_query(card_ids: Sequence[int], languages: Sequence[str]):
    sql = (
        "SELECT card_id, language, text FROM card_subtitles"
        f" WHERE card_id IN ({_placeholders(len(card_ids))})"
        f" AND language IN ({_placeholders(len(languages))})"
    )
    return sql, [*card_ids, *languages]


def _levels_query(card_ids: Sequence[int]):
    sql = (
        "SELECT card_id, framework, level, language FROM card_difficulty_levels"
        f" WHERE card_id IN ({_placeholders(len(card_ids))})"
        " ORDER BY card_id, framework, language"
    )
    return sql, list(card_ids)


async def _guarded(sem: asyncio.Semaphore, fetch: Fetch, label: str, sql: str, params: List[Any]):
    async with sem:
        try:
            return await asyncio.to_thread(fetch, sql, params)
        except Exception as e:
            logger.warning(f"[hydrator] {label} batch of {len(params)} params failed: {e}")
            return None


async def hydrate_cards(
    rows: Sequence[Dict[str, Any]],
    subtitle_languages: Sequence[str],
    settings: Settings,
    fetch: Fetch = query_all,
) -> Hydration:
    """Fetch subtitles (main language plus requested languages) and ratings for `rows`.

    A failed batch leaves its cards without data; the rest still hydrate.
    """
    result = Hydration()
    if not rows:
        return result

    by_language: Dict[str, List[int]] = defaultdict(list)
    for row in rows:
        by_language[row.get("content_main_language") or ""].append(row["card_id"])

    sem = asyncio.Semaphore(max(1, settings.hydrator_max_concurrency))
    jobs = []
    for main_language, card_ids in by_language.items():
        languages = list(dict.fromkeys([lang for lang in (main_language, *subtitle_languages) if lang]))
        size = batch_size_for(settings, len(languages))
        for batch in chunked(card_ids, size):
            if languages:
                sql, params = _subtitle_query(batch, languages)
                jobs.append(("subtitles", _guarded(sem, fetch, "subtitles", sql, params)))
    for batch in chunked([row["card_id"] for row in rows], batch_size_for(settings, 0)):
        sql, params = _levels_query(batch)
        jobs.append(("levels", _guarded(sem, fetch, "levels", sql, params)))

    results = await asyncio.gather(*(job for _, job in jobs))

    for (kind, _), fetched in zip(jobs, results):
        if fetched is None:
            result.failed_batches += 1
            continue
        if kind == "subtitles":
            for item in fetched:
                result.subtitles.setdefault(item["card_id"], {})[item["language"]] = item["text"]
        else:
            for item in fetched:
                result.levels.setdefault(item["card_id"], []).append({
                    "framework": item["framework"],
                    "level": item["level"],
                    "language": item["language"],
                })
    return result
