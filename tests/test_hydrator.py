import asyncio
import sqlite3
import threading
import time
from dataclasses import replace

from db.database import query_all
from utils.hydrator import batch_size_for, hydrate_cards


def _rows(card_ids, language="en"):
    return [{"card_id": card_id, "content_main_language": language} for card_id in card_ids]


def test_hydrates_main_and_requested_languages(seed, settings):
    first = seed.card("alpha", {"en": "Hello", "es": "Hola", "fr": "Salut"}, levels=[("CEFR", "A1", "en")])
    second = seed.card("alpha", {"en": "Bye", "es": "Adiós"})

    result = asyncio.run(hydrate_cards(_rows([first, second]), ["es"], settings))

    assert result.failed_batches == 0
    assert result.subtitles[first] == {"en": "Hello", "es": "Hola"}
    assert result.subtitles[second] == {"en": "Bye", "es": "Adiós"}
    assert result.levels[first] == [{"framework": "CEFR", "level": "A1", "language": "en"}]
    assert second not in result.levels


def test_batches_respect_parameter_ceiling(settings):
    calls = []

    def fetch(sql, params):
        calls.append(list(params))
        return []

    tight = replace(settings, max_bound_parameters=10, hydrator_batch_size=50)
    assert batch_size_for(tight, 3) == 6

    asyncio.run(hydrate_cards(_rows(range(1, 21)), ["es", "fr"], tight, fetch=fetch))

    assert calls
    assert all(len(params) <= 10 for params in calls)
    fetched_ids = sorted(p for params in calls if "en" in params for p in params if isinstance(p, int))
    assert fetched_ids == list(range(1, 21))


def test_failed_batch_degrades_to_empty(seed, settings):
    ids = [seed.card("alpha", {"en": f"line {i}"}) for i in range(6)]
    failing = set(ids[:3])

    def fetch(sql, params):
        if "card_subtitles" in sql and failing & set(params):
            raise sqlite3.OperationalError("disk I/O error")
        return query_all(sql, params)

    small = replace(settings, hydrator_batch_size=3)
    result = asyncio.run(hydrate_cards(_rows(ids), [], small, fetch=fetch))

    assert result.failed_batches == 1
    for card_id in ids[:3]:
        assert card_id not in result.subtitles
    for card_id in ids[3:]:
        assert result.subtitles[card_id]["en"].startswith("line")


def test_unexpected_fetch_error_counts_as_failed_batch(seed, settings):
    card = seed.card("alpha", {"en": "Hello", "es": "Hola"}, levels=[("CEFR", "A1", "en")])

    def fetch(sql, params):
        if "card_difficulty_levels" in sql:
            raise RuntimeError("worker thread lost")
        return query_all(sql, params)

    result = asyncio.run(hydrate_cards(_rows([card]), ["es"], settings, fetch=fetch))

    assert result.failed_batches == 1
    assert result.subtitles[card] == {"en": "Hello", "es": "Hola"}
    assert card not in result.levels


def test_concurrency_is_bounded(settings):
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def fetch(sql, params):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1
        return []

    narrow = replace(settings, hydrator_batch_size=1, hydrator_max_concurrency=2)
    asyncio.run(hydrate_cards(_rows(range(1, 11)), [], narrow, fetch=fetch))
    assert 1 <= state["peak"] <= 2


def test_empty_rows_skip_fetching(settings):
    def fetch(sql, params):
        raise AssertionError("should not fetch")

    result = asyncio.run(hydrate_cards([], ["es"], settings, fetch=fetch))
    assert result.subtitles == {} and result.levels == {}
