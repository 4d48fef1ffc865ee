from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Dict, List, Sequence, TypeVar

T = TypeVar("T")


def diversify(
    cards: Sequence[T],
    size: int,
    key: Callable[[T], str],
    max_rounds_factor: int = 3,
) -> List[T]:
    """Round-robin one card per source until `size` cards are picked.

    Sources are visited in order of first appearance; within a source the
    original order is kept. One cursor per group, no list shifting.
    """
    if size <= 0:
        return []
    groups: Dict[str, List[T]] = OrderedDict()
    for card in cards:
        groups.setdefault(key(card), []).append(card)
    if len(groups) <= 1:
        return list(cards[:size])

    buckets = list(groups.values())
    cursors = [0] * len(buckets)
    picked: List[T] = []
    rounds = 0
    max_rounds = max(1, size * max_rounds_factor)
    while len(picked) < size and rounds < max_rounds:
        progressed = False
        for i, bucket in enumerate(buckets):
            if cursors[i] >= len(bucket):
                continue
            picked.append(bucket[cursors[i]])
            cursors[i] += 1
            progressed = True
            if len(picked) >= size:
                break
        if not progressed:
            break
        rounds += 1
    return picked
