from db import database
from utils import cache
from utils.cache import cache_delete_prefix, cache_get, cache_set, make_cache_key, purge_expired


def test_cache_key_is_order_independent():
    a = make_cache_key("search", {"q": "hi", "page": 1, "subtitle_languages": ["es"]})
    b = make_cache_key("search", {"subtitle_languages": ["es"], "page": 1, "q": "hi"})
    assert a == b
    assert a.startswith("search:")
    assert a != make_cache_key("search", {"q": "hi", "page": 2, "subtitle_languages": ["es"]})


def test_entry_age_is_rechecked_against_ttl(store, monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(cache, "_now", lambda: clock["now"])

    assert cache_set("search:k", {"items": [1]}, ttl=600) is True
    clock["now"] += 30
    assert cache_get("search:k", ttl=600) == ({"items": [1]}, 30.0)
    # store-level expiry not reached yet, but the caller's window is shorter
    assert cache_get("search:k", ttl=10) is None


def test_purge_and_prefix_delete(store, monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(cache, "_now", lambda: clock["now"])
    cache_set("suggest:a", [], ttl=5)
    cache_set("suggest:b", [], ttl=500)
    cache_set("counts:c", {}, ttl=500)

    clock["now"] += 10
    assert purge_expired() == 1
    assert cache_delete_prefix("suggest") == 1
    with database.get_conn() as conn:
        keys = [row[0] for row in conn.execute("SELECT key FROM kv_cache")]
    assert keys == ["counts:c"]
