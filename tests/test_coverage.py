import sqlite3
from dataclasses import replace

from db import database
from utils import coverage
from utils.coverage import (
    REPAIR_JOB,
    estimate_coverage,
    repair_coverage_index,
    sync_card_coverage,
)
from utils.planner import PLAN_FALLBACK, PLAN_INDEX, PLAN_NONE, choose_plan
from utils.query_builder import build_predicates
from models.search import SearchParams


def _refuse_bulk(conn, settings):
    raise sqlite3.OperationalError("interrupted")


def _coverage_rows():
    with database.get_conn() as conn:
        rows = conn.execute(
            "SELECT card_id, language FROM card_subtitle_language_map ORDER BY card_id, language"
        ).fetchall()
    return [tuple(row) for row in rows]


def test_repair_indexes_only_non_empty_subtitles(seed, settings):
    first = seed.card("alpha", {"en": "Hello there", "es": "Hola", "fr": "   "})
    second = seed.card("alpha", {"en": "Bye", "ja": "さようなら"})

    summary = repair_coverage_index(settings)

    assert summary["mode"] == "bulk"
    assert summary["complete"] is True
    assert _coverage_rows() == [(first, "en"), (first, "es"), (second, "en"), (second, "ja")]


def test_repair_is_idempotent_and_prunes_orphans(seed, settings):
    card = seed.card("alpha", {"en": "Hello", "es": "Hola"})
    seed.card("beta", {"en": "Morning", "de": "Morgen"})
    repair_coverage_index(settings)
    snapshot = _coverage_rows()

    repair_coverage_index(settings)
    assert _coverage_rows() == snapshot

    with database.get_conn() as conn:
        conn.execute("UPDATE card_subtitles SET text = '' WHERE card_id = ? AND language = 'es'", (card,))
        conn.commit()
    repair_coverage_index(settings, full=True)
    assert (card, "es") not in _coverage_rows()


def test_chunked_repair_advances_watermark(seed, settings, monkeypatch):
    cards = [seed.card(f"src{i % 3}", {"en": f"line {i}", "es": f"linea {i}"}) for i in range(7)]

    monkeypatch.setattr(coverage, "_bulk_repair", _refuse_bulk)
    small = replace(settings, coverage_chunk_size=3)
    summary = repair_coverage_index(small)

    assert summary["mode"] == "chunked"
    assert summary["chunks"] == 3
    assert summary["complete"] is True
    assert summary["watermark"] == cards[-1]
    assert len(_coverage_rows()) == 14
    with database.get_conn() as conn:
        assert database.get_watermark(conn, REPAIR_JOB) == 0


def test_chunked_pass_resumes_from_checkpoint(seed, settings, monkeypatch):
    cards = [seed.card("alpha", {"en": f"line {i}", "es": f"linea {i}"}) for i in range(4)]
    with database.get_conn() as conn:
        database.set_watermark(conn, REPAIR_JOB, cards[1])
        conn.commit()

    monkeypatch.setattr(coverage, "_bulk_repair", _refuse_bulk)
    summary = repair_coverage_index(replace(settings, coverage_chunk_size=10))

    assert summary["chunks"] == 1
    assert summary["inserted"] == 4
    assert [card_id for card_id, _ in _coverage_rows()] == [cards[2], cards[2], cards[3], cards[3]]


def test_completed_chunked_pass_still_prunes_on_next_run(seed, settings, monkeypatch):
    cards = [seed.card("alpha", {"en": f"line {i}", "es": f"linea {i}"}) for i in range(4)]
    monkeypatch.setattr(coverage, "_bulk_repair", _refuse_bulk)
    small = replace(settings, coverage_chunk_size=2)
    repair_coverage_index(small)
    assert len(_coverage_rows()) == 8

    with database.get_conn() as conn:
        conn.execute("DELETE FROM card_subtitles WHERE card_id = ? AND language = 'es'", (cards[0],))
        conn.execute("DELETE FROM card_subtitles WHERE card_id = ?", (cards[3],))
        conn.commit()
    summary = repair_coverage_index(small)

    assert summary["complete"] is True
    assert summary["pruned"] == 3
    rows = _coverage_rows()
    assert (cards[0], "es") not in rows
    assert all(card_id != cards[3] for card_id, _ in rows)

    params = SearchParams(subtitle_languages=["es"])
    by_plan = []
    for use_index in (True, False):
        sql, args = build_predicates(params, None, settings, use_index=use_index).select_page(100, 0)
        by_plan.append([row["card_id"] for row in database.query_all(sql, args)])
    assert by_plan[0] == by_plan[1] == [cards[1], cards[2]]


def test_sync_card_coverage_rederives_rows(seed, settings):
    card = seed.card("alpha", {"en": "Hello", "es": "Hola"})
    repair_coverage_index(settings)
    with database.get_conn() as conn:
        conn.execute("DELETE FROM card_subtitles WHERE card_id = ? AND language = 'es'", (card,))
        conn.execute("INSERT INTO card_subtitles (card_id, language, text) VALUES (?, 'it', 'Ciao')", (card,))
        sync_card_coverage(conn, [card, card], max_params=1)
        conn.commit()
    assert _coverage_rows() == [(card, "en"), (card, "it")]


def test_health_thresholds(seed, settings):
    for i in range(4):
        seed.card("alpha", {"en": f"line {i}", "es": f"linea {i}"})
    repair_coverage_index(settings)

    with database.get_conn() as conn:
        strict = estimate_coverage(conn, settings)
        assert strict.index_rows == 8
        assert strict.available_cards == 4
        assert strict.estimated_coverage == 1.0
        assert strict.healthy is False  # too few rows

        relaxed = estimate_coverage(conn, replace(settings, coverage_min_rows=5))
        assert relaxed.healthy is True

        sparse = estimate_coverage(conn, replace(settings, coverage_min_rows=5, coverage_languages_per_card=4.0))
        assert sparse.estimated_coverage == 0.5
        assert sparse.healthy is False


def test_planner_choices(seed, settings):
    for i in range(4):
        seed.card("alpha", {"en": f"line {i}", "es": f"linea {i}"})
    with database.get_conn() as conn:
        assert choose_plan(conn, SearchParams(), settings).kind == PLAN_NONE

        fallback = choose_plan(conn, SearchParams(subtitle_languages=["es"]), settings)
        assert fallback.kind == PLAN_FALLBACK
        assert fallback.needs_repair is True

    repair_coverage_index(settings)
    relaxed = replace(settings, coverage_min_rows=5, cache_enabled=False)
    with database.get_conn() as conn:
        plan = choose_plan(conn, SearchParams(subtitle_languages=["es"]), relaxed)
    assert plan.kind == PLAN_INDEX
    assert plan.use_index is True
    assert plan.needs_repair is False


def test_repair_refreshes_cached_health(seed, settings):
    for i in range(4):
        seed.card("alpha", {"en": f"line {i}", "es": f"linea {i}"})
    relaxed = replace(settings, coverage_min_rows=5)
    params = SearchParams(subtitle_languages=["es"])

    with database.get_conn() as conn:
        assert choose_plan(conn, params, relaxed).kind == PLAN_FALLBACK

    repair_coverage_index(relaxed)

    with database.get_conn() as conn:
        assert choose_plan(conn, params, relaxed).kind == PLAN_INDEX
