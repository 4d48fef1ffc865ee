"""Autocomplete term index built out-of-band from card_subtitles."""
from __future__ import annotations

import logging
import sqlite3
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from config import Settings
from db.database import chunked, get_conn, get_watermark, set_watermark
from utils.cache import cache_delete_prefix
from utils.text import cjk_segments, escape_like, fold_text, has_cjk, is_cjk_language, primary_language, search_text

logger = logging.getLogger(__name__)

TERMS_JOB_PREFIX = "search_terms"
SUGGEST_CACHE_PREFIX = "suggest"
MIN_TERM_LENGTH = 2


def job_name(language: str) -> str:
    return f"{TERMS_JOB_PREFIX}:{language}"


def extract_terms(text: str, cjk: bool, min_ngram: int = 2, max_ngram: int = 6) -> Counter:
    """Term -> occurrence count for one subtitle line.

    CJK text yields every contiguous n-gram (min_ngram..max_ngram) inside each
    word run; other scripts yield lowercased words of two or more characters.
    """
    terms: Counter = Counter()
    if not text:
        return terms
    if cjk:
        for segment in cjk_segments(text):
            for n in range(min_ngram, max_ngram + 1):
                for start in range(0, len(segment) - n + 1):
                    terms[segment[start:start + n]] += 1
        return terms
    for token in (search_text(text, 0) or "").split():
        if len(token) >= MIN_TERM_LENGTH:
            terms[token] += 1
    return terms


def _languages(conn: sqlite3.Connection, language: Optional[str]) -> List[str]:
    if language:
        return [language]
    rows = conn.execute("SELECT DISTINCT language FROM card_subtitles ORDER BY language").fetchall()
    return [row[0] for row in rows]


def _upsert_terms(
    conn: sqlite3.Connection,
    language: str,
    frequencies: Counter,
    contexts: Counter,
    rows_per_statement: int,
) -> None:
    items = sorted(frequencies.items())
    for batch in chunked(items, rows_per_statement):
        values = ",".join("(?, ?, ?, ?, datetime('now'))" for _ in batch)
        params: List[Any] = []
        for term, freq in batch:
            params.extend([term, language, freq, contexts[term]])
        conn.execute(
            f"""
            INSERT INTO search_terms (term, language, frequency, context_count, updated_at)
            VALUES {values}
            ON CONFLICT(term, language) DO UPDATE SET
                frequency = frequency + excluded.frequency,
                context_count = context_count + excluded.context_count,
                updated_at = excluded.updated_at
            """,
            params,
        )


def _rebuild_language(conn: sqlite3.Connection, language: str, settings: Settings, full: bool) -> Dict[str, Any]:
    name = job_name(language)
    if full:
        conn.execute("DELETE FROM search_terms WHERE language = ?", (language,))
        set_watermark(conn, name, 0)
        conn.commit()
    watermark = get_watermark(conn, name)
    rows_per_statement = max(1, min(settings.max_bound_parameters // 4, settings.terms_batch_rows))
    cjk_language = is_cjk_language(language)
    processed = 0
    terms_written = 0

    while True:
        rows = conn.execute(
            """
            SELECT id, card_id, text FROM card_subtitles
            WHERE language = ? AND id > ?
            ORDER BY id
            LIMIT ?
            """,
            (language, watermark, settings.terms_batch_rows),
        ).fetchall()
        if not rows:
            break
        frequencies: Counter = Counter()
        contexts: Counter = Counter()
        for row in rows:
            text = row["text"] or ""
            found = extract_terms(
                text,
                cjk_language or has_cjk(text),
                settings.terms_min_ngram,
                settings.terms_max_ngram,
            )
            frequencies.update(found)
            contexts.update(found.keys())
        new_watermark = rows[-1]["id"]
        # terms and checkpoint commit together
        try:
            _upsert_terms(conn, language, frequencies, contexts, rows_per_statement)
            set_watermark(conn, name, new_watermark)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        watermark = new_watermark
        processed += len(rows)
        terms_written += len(frequencies)
    return {"language": language, "rows": processed, "terms": terms_written, "watermark": watermark}


def rebuild_search_terms(settings: Settings, language: Optional[str] = None, full: bool = False) -> List[Dict[str, Any]]:
    """Merge new subtitle rows into search_terms, per language.

    Incremental by default (resumes after the stored watermark); `full`
    clears the language's terms and starts over.
    """
    started = time.perf_counter()
    summaries = []
    with get_conn() as conn:
        for lang in _languages(conn, language):
            summary = _rebuild_language(conn, lang, settings, full)
            logger.info(
                f"[terms] {lang}: {summary['rows']} rows, {summary['terms']} terms merged, "
                f"watermark {summary['watermark']}"
            )
            summaries.append(summary)
    if any(summary["rows"] for summary in summaries) or full:
        cache_delete_prefix(SUGGEST_CACHE_PREFIX)
    logger.info(f"[terms] Rebuild finished in {(time.perf_counter() - started) * 1000:.0f}ms")
    return summaries


def suggest(prefix: Optional[str], language: Optional[str], limit: int = 10) -> List[Dict[str, Any]]:
    """Most frequent terms starting with `prefix`."""
    cleaned = fold_text(prefix or "").strip()
    if not cleaned:
        return []
    limit = max(1, min(50, int(limit)))
    sql = "SELECT term, frequency FROM search_terms WHERE term LIKE ? ESCAPE '\\'"
    params: List[Any] = [f"{escape_like(cleaned)}%"]
    lang = primary_language(language)
    if lang:
        sql += " AND (language = ? OR language LIKE ?)"
        params.extend([lang, f"{lang}-%"])
    sql += " ORDER BY frequency DESC, term ASC LIMIT ?"
    params.append(limit)
    with get_conn() as conn:
        return [dict(row) for row in conn.execute(sql, params).fetchall()]
