from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

DEFAULT_FRAMEWORK = "CEFR"

FRAMEWORK_LEVELS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "CEFR": ("A1", "A2", "B1", "B2", "C1", "C2"),
    "JLPT": ("N5", "N4", "N3", "N2", "N1"),
    "HSK": ("1", "2", "3", "4", "5", "6", "7", "8", "9"),
    "TOPIK": ("1", "2", "3", "4", "5", "6"),
})

_LANGUAGE_FRAMEWORKS: Mapping[str, str] = MappingProxyType({
    "ja": "JLPT",
    "japanese": "JLPT",
    "zh": "HSK",
    "chinese": "HSK",
    "ko": "TOPIK",
    "korean": "TOPIK",
})


def framework_for_language(language: Optional[str]) -> str:
    """Map a main language to its proficiency framework (CEFR by default)."""
    if not language:
        return DEFAULT_FRAMEWORK
    lang = language.strip().lower()
    if lang.startswith("zh"):
        return "HSK"
    return _LANGUAGE_FRAMEWORKS.get(lang.split("-")[0], DEFAULT_FRAMEWORK)


def _normalize_level(level: str, framework: str) -> str:
    cleaned = str(level).strip().upper()
    if framework in ("HSK", "TOPIK"):
        cleaned = cleaned.removeprefix(framework).strip()
    return cleaned


def level_index(level: Optional[str], framework: str) -> int:
    """Position of `level` in the framework's ordered list, or -1."""
    if level is None:
        return -1
    order = FRAMEWORK_LEVELS.get(framework, ())
    try:
        return order.index(_normalize_level(level, framework))
    except ValueError:
        return -1


def resolve_allowed_levels(
    language: Optional[str],
    level_min: Optional[str],
    level_max: Optional[str],
) -> Tuple[str, Optional[List[str]]]:
    """Expand a level_min/level_max pair into the explicit allowed-level set.

    Returns (framework, levels). levels is None when no level filter applies:
    neither bound given, an unknown level, or an inverted range.
    """
    framework = framework_for_language(language)
    if not level_min and not level_max:
        return framework, None
    order = FRAMEWORK_LEVELS[framework]
    min_idx = level_index(level_min, framework) if level_min else 0
    max_idx = level_index(level_max, framework) if level_max else len(order) - 1
    if min_idx < 0 or max_idx < 0 or min_idx > max_idx:
        return framework, None
    return framework, list(order[min_idx:max_idx + 1])
