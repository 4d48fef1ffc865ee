"""Composable search predicates.

Each filter contributes one SQL fragment plus its bound parameters. A
``PredicateSet`` joins them under the shared card/episode/content join and
keeps the running parameter count under the store's ceiling.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from config import Settings
from models.search import SearchParams
from utils.errors import ParameterLimitExceeded
from utils.levels import resolve_allowed_levels
from utils.text import CJK_LANGUAGES, SearchPhrase, escape_like, is_cjk_language

CARD_COLUMNS = """
    c.id AS card_id,
    c.card_number,
    c.start_time,
    c.end_time,
    c.duration,
    c.image_key,
    c.audio_key,
    c.difficulty_score,
    e.slug AS episode_slug,
    e.episode_number,
    ci.slug AS content_slug,
    ci.title AS content_title,
    ci.main_language AS content_main_language
"""

BASE_FROM = """
    FROM cards c
    JOIN episodes e ON e.id = c.episode_id
    JOIN content_items ci ON ci.id = e.content_item_id
"""

_NON_EMPTY = "TRIM({alias}.text) != ''"


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


@dataclass(frozen=True)
class Clause:
    sql: str
    params: Tuple[Any, ...] = ()


class SearchFilter:
    """A single optional predicate."""

    def clause(self) -> Clause:
        raise NotImplementedError


@dataclass(frozen=True)
class AvailableFilter(SearchFilter):
    def clause(self) -> Clause:
        return Clause("c.is_available = 1")


@dataclass(frozen=True)
class MainLanguageFilter(SearchFilter):
    """Card must carry non-empty text in its content item's main language."""

    language: Optional[str] = None

    def clause(self) -> Clause:
        exists = (
            "EXISTS (SELECT 1 FROM card_subtitles cs_main"
            " WHERE cs_main.card_id = c.id"
            " AND cs_main.language = ci.main_language"
            f" AND {_NON_EMPTY.format(alias='cs_main')})"
        )
        if self.language:
            return Clause(f"ci.main_language = ? AND {exists}", (self.language,))
        return Clause(exists)


@dataclass(frozen=True)
class SubtitleCoverageFilter(SearchFilter):
    """Card must have non-empty subtitles in every requested language."""

    languages: Tuple[str, ...]
    use_index: bool = False

    def clause(self) -> Clause:
        ph = _placeholders(len(self.languages))
        if self.use_index:
            sql = (
                "(SELECT COUNT(DISTINCT cov.language) FROM card_subtitle_language_map cov"
                f" WHERE cov.card_id = c.id AND cov.language IN ({ph})) = ?"
            )
        else:
            sql = (
                "(SELECT COUNT(DISTINCT cs_cov.language) FROM card_subtitles cs_cov"
                f" WHERE cs_cov.card_id = c.id AND cs_cov.language IN ({ph})"
                f" AND {_NON_EMPTY.format(alias='cs_cov')}) = ?"
            )
        return Clause(sql, (*self.languages, len(self.languages)))


@dataclass(frozen=True)
class SourceFilter(SearchFilter):
    slugs: Tuple[str, ...]

    def clause(self) -> Clause:
        return Clause(f"ci.slug IN ({_placeholders(len(self.slugs))})", self.slugs)


@dataclass(frozen=True)
class DifficultyFilter(SearchFilter):
    minimum: float = 0
    maximum: float = 100

    def clause(self) -> Clause:
        return Clause(
            "c.difficulty_score IS NOT NULL AND c.difficulty_score >= ? AND c.difficulty_score <= ?",
            (self.minimum, self.maximum),
        )


@dataclass(frozen=True)
class LevelFilter(SearchFilter):
    framework: str
    levels: Tuple[str, ...]

    def clause(self) -> Clause:
        return Clause(
            "EXISTS (SELECT 1 FROM card_difficulty_levels cdl"
            " WHERE cdl.card_id = c.id AND cdl.framework = ?"
            f" AND cdl.level IN ({_placeholders(len(self.levels))}))",
            (self.framework, *self.levels),
        )


_CJK_LENGTH = "LENGTH(TRIM(cs_len.text))"
_SPACED_LENGTH = "(LENGTH(TRIM(cs_len.text)) - LENGTH(REPLACE(TRIM(cs_len.text), ' ', '')) + 1)"


@dataclass(frozen=True)
class LengthFilter(SearchFilter):
    """Word-count proxy on the main-language text: characters for CJK, spaces + 1 otherwise."""

    language: Optional[str] = None
    minimum: Optional[int] = None
    maximum: Optional[int] = None

    def _expression(self) -> str:
        if self.language:
            return _CJK_LENGTH if is_cjk_language(self.language) else _SPACED_LENGTH
        cjk = ",".join(f"'{code}'" for code in sorted(CJK_LANGUAGES))
        return (
            f"(CASE WHEN LOWER(SUBSTR(ci.main_language, 1, 2)) IN ({cjk})"
            f" THEN {_CJK_LENGTH} ELSE {_SPACED_LENGTH} END)"
        )

    def clause(self) -> Clause:
        expr = self._expression()
        bounds: List[str] = []
        params: List[Any] = []
        if self.minimum is not None:
            bounds.append(f"{expr} >= ?")
            params.append(self.minimum)
        if self.maximum is not None:
            bounds.append(f"{expr} <= ?")
            params.append(self.maximum)
        sql = (
            "EXISTS (SELECT 1 FROM card_subtitles cs_len"
            " WHERE cs_len.card_id = c.id AND cs_len.language = ci.main_language"
            f" AND {_NON_EMPTY.format(alias='cs_len')}"
        )
        for bound in bounds:
            sql += f" AND {bound}"
        return Clause(sql + ")", tuple(params))


@dataclass(frozen=True)
class DurationFilter(SearchFilter):
    maximum: float

    def clause(self) -> Clause:
        return Clause("c.duration IS NOT NULL AND c.duration <= ?", (self.maximum,))


@dataclass(frozen=True)
class ReviewFilter(SearchFilter):
    """Range on the user's review count; only cards with a review-state row for the user match."""

    user_id: str
    minimum: Optional[int] = None
    maximum: Optional[int] = None

    def clause(self) -> Clause:
        sql = (
            "EXISTS (SELECT 1 FROM user_card_states ucs"
            " WHERE ucs.user_id = ? AND ucs.card_id = c.id"
        )
        params: List[Any] = [self.user_id]
        if self.minimum is not None:
            sql += " AND ucs.review_count >= ?"
            params.append(self.minimum)
        if self.maximum is not None:
            sql += " AND ucs.review_count <= ?"
            params.append(self.maximum)
        return Clause(sql + ")", tuple(params))


@dataclass(frozen=True)
class TextFilter(SearchFilter):
    """Literal substring match of a normalized phrase in the searched language."""

    phrase: SearchPhrase
    language: Optional[str] = None

    def clause(self) -> Clause:
        return Clause(
            "EXISTS (SELECT 1 FROM card_subtitles cs_q"
            " WHERE cs_q.card_id = c.id"
            " AND cs_q.language = COALESCE(?, ci.main_language)"
            " AND search_text(cs_q.text, ?) LIKE ? ESCAPE '\\')",
            (self.language, int(self.phrase.cjk), f"%{escape_like(self.phrase.phrase)}%"),
        )


@dataclass
class PredicateSet:
    filters: List[SearchFilter] = field(default_factory=list)
    max_params: int = 999

    def add(self, search_filter: SearchFilter) -> "PredicateSet":
        self.filters.append(search_filter)
        return self

    def where(self, extra_params: int = 0) -> Tuple[str, List[Any]]:
        fragments: List[str] = []
        params: List[Any] = []
        for search_filter in self.filters:
            clause = search_filter.clause()
            if not clause.sql:
                continue
            fragments.append(f"({clause.sql})")
            params.extend(clause.params)
        if len(params) + extra_params > self.max_params:
            raise ParameterLimitExceeded(len(params) + extra_params, self.max_params)
        return " AND ".join(fragments) or "1 = 1", params

    def select_page(self, limit: int, offset: int) -> Tuple[str, List[Any]]:
        where, params = self.where(extra_params=2)
        sql = f"SELECT {CARD_COLUMNS} {BASE_FROM} WHERE {where} ORDER BY c.id ASC LIMIT ? OFFSET ?"
        return sql, params + [limit, offset]

    def count(self) -> Tuple[str, List[Any]]:
        where, params = self.where()
        return f"SELECT COUNT(*) AS total {BASE_FROM} WHERE {where}", params

    def counts_by_source(self) -> Tuple[str, List[Any]]:
        where, params = self.where()
        sql = (
            f"SELECT ci.slug AS content_id, COUNT(*) AS count {BASE_FROM}"
            f" WHERE {where} GROUP BY ci.slug ORDER BY ci.slug"
        )
        return sql, params


def fetch_limit(size: int, settings: Settings) -> int:
    """Over-fetch headroom for diversification, capped."""
    return min(math.ceil(size * settings.overfetch_factor), settings.overfetch_cap)


def build_predicates(
    params: SearchParams,
    phrase: Optional[SearchPhrase],
    settings: Settings,
    use_index: bool = False,
) -> PredicateSet:
    """Translate a request's filters into a PredicateSet, capping unbounded inputs."""
    main_language = params.main_language
    predicates = PredicateSet(max_params=settings.max_bound_parameters)
    predicates.add(AvailableFilter()).add(MainLanguageFilter(main_language))

    if params.subtitle_languages:
        predicates.add(SubtitleCoverageFilter(tuple(params.subtitle_languages), use_index=use_index))

    if params.content_ids:
        predicates.add(SourceFilter(tuple(params.content_ids[:settings.max_content_sources])))

    d_min, d_max = params.difficulty_min, params.difficulty_max
    if (d_min is not None and d_min > 0) or (d_max is not None and d_max < 100):
        predicates.add(DifficultyFilter(
            minimum=d_min if d_min is not None else 0,
            maximum=d_max if d_max is not None else 100,
        ))

    framework, levels = resolve_allowed_levels(main_language, params.level_min, params.level_max)
    if levels:
        predicates.add(LevelFilter(framework, tuple(levels)))

    if params.length_min is not None or params.length_max is not None:
        predicates.add(LengthFilter(main_language, params.length_min, params.length_max))

    if params.duration_max is not None and params.duration_max > 0:
        predicates.add(DurationFilter(params.duration_max))

    if params.has_review_filter:
        predicates.add(ReviewFilter(params.user_id, params.review_min, params.review_max))

    if phrase is not None and phrase.matchable:
        predicates.add(TextFilter(phrase, main_language))

    return predicates
