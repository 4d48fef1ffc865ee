"""Script detection and search-text normalization.

The same normalization runs on both sides of a phrase match: ``normalize_query``
turns user input into a needle, and ``search_text`` (registered as a SQL
function on every connection) turns stored subtitle text into the haystack.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import List, Optional

MAX_QUERY_TOKENS = 8
MIN_QUERY_LENGTH = 2

CJK_LANGUAGES = frozenset({"ja", "zh", "ko"})

# Han (ext. A, unified, compatibility), Hiragana, Katakana
_CJK_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u3400-\u4DBF\u4E00-\u9FFF\uF900-\uFAFF]")
# Bracketed phonetic glosses carried in source text: 番線[ばんせん], 请[qǐng]
_GLOSS_RE = re.compile(r"\[[^\]]*\]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[\W_]+")
_QUOTE_CHARS_RE = re.compile(r"[\"'\u2018\u2019\u201C\u201D\u300C\u300D]")
_QUOTED_RE = re.compile(r"^\s*[\"\u201C](.+)[\"\u201D]\s*$", re.DOTALL)


@dataclass(frozen=True)
class SearchPhrase:
    phrase: str
    cjk: bool

    @property
    def matchable(self) -> bool:
        return bool(self.phrase)


def primary_language(code: Optional[str]) -> Optional[str]:
    """Reduce a language tag to its primary subtag: 'en-US' -> 'en'."""
    if not code:
        return None
    cleaned = code.strip().replace("_", "-").split("-")[0].lower()
    return cleaned or None


def is_cjk_language(code: Optional[str]) -> bool:
    return primary_language(code) in CJK_LANGUAGES


def has_cjk(text: str) -> bool:
    return bool(text) and _CJK_RE.search(text) is not None


def strip_glosses(text: str) -> str:
    return _GLOSS_RE.sub("", text)


def fold_text(text: str) -> str:
    return unicodedata.normalize("NFKC", text).casefold()


def normalize_query(
    raw: Optional[str],
    language: Optional[str] = None,
    max_tokens: int = MAX_QUERY_TOKENS,
) -> Optional[SearchPhrase]:
    """Normalize user input into a literal substring needle.

    Returns:
        None if raw is empty/None (no text filter at all),
        a SearchPhrase with an empty phrase if nothing searchable remains
        (no match possible), otherwise the normalized phrase.
    """
    if raw is None:
        return None
    cleaned = raw.strip()
    if not cleaned:
        return None

    if has_cjk(cleaned) or is_cjk_language(language):
        text = _WHITESPACE_RE.sub("", fold_text(cleaned))
        text = _QUOTE_CHARS_RE.sub("", strip_glosses(text))
        return SearchPhrase(phrase=text, cjk=True)

    if len(cleaned) < MIN_QUERY_LENGTH:
        return None

    quoted = _QUOTED_RE.match(cleaned)
    if quoted:
        phrase = _NON_ALNUM_RE.sub(" ", fold_text(quoted.group(1))).strip()
        return SearchPhrase(phrase=phrase, cjk=False)

    tokens: List[str] = [t for t in _NON_ALNUM_RE.sub(" ", fold_text(cleaned)).split() if t]
    return SearchPhrase(phrase=" ".join(tokens[:max_tokens]), cjk=False)


def search_text(text: Optional[str], cjk: int) -> Optional[str]:
    """Haystack form of stored subtitle text, mirroring normalize_query."""
    if text is None:
        return None
    cleaned = fold_text(text)
    if cjk:
        return _WHITESPACE_RE.sub("", strip_glosses(cleaned))
    return _NON_ALNUM_RE.sub(" ", cleaned).strip()


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def cjk_segments(text: str) -> List[str]:
    """Gloss-free runs of word characters, the span an n-gram may cover."""
    cleaned = fold_text(strip_glosses(text))
    return [seg for seg in _NON_ALNUM_RE.split(cleaned) if seg]
