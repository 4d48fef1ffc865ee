from utils.diversify import diversify


def _cards(source_counts):
    cards = []
    for source, count in source_counts:
        cards.extend({"source": source, "n": i} for i in range(count))
    return cards


def _source(card):
    return card["source"]


def test_first_picks_cover_every_source():
    cards = _cards([("a", 12), ("b", 10), ("c", 11), ("d", 15)])
    picked = diversify(cards, 10, key=_source)
    assert len(picked) == 10
    assert len({card["source"] for card in picked[:4]}) == 4


def test_single_source_keeps_order():
    cards = _cards([("a", 20)])
    picked = diversify(cards, 5, key=_source)
    assert picked == cards[:5]


def test_exhausted_groups_are_skipped():
    cards = _cards([("a", 1), ("b", 6)])
    picked = diversify(cards, 5, key=_source)
    assert [card["source"] for card in picked] == ["a", "b", "b", "b", "b"]
    assert [card["n"] for card in picked if card["source"] == "b"] == [0, 1, 2, 3]


def test_fewer_candidates_than_size():
    cards = _cards([("a", 2), ("b", 1)])
    picked = diversify(cards, 10, key=_source)
    assert len(picked) == 3
    assert diversify(cards, 0, key=_source) == []
