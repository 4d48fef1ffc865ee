from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional


class SearchParams(BaseModel):
    """Normalized filter set shared by the search and counts operations."""

    q: Optional[str] = None
    main_language: Optional[str] = None
    subtitle_languages: List[str] = Field(default_factory=list)
    content_ids: List[str] = Field(default_factory=list)
    difficulty_min: Optional[float] = None
    difficulty_max: Optional[float] = None
    level_min: Optional[str] = None
    level_max: Optional[str] = None
    length_min: Optional[int] = None
    length_max: Optional[int] = None
    duration_max: Optional[float] = None
    review_min: Optional[int] = None
    review_max: Optional[int] = None
    user_id: Optional[str] = None
    page: int = Field(default=1, ge=1)
    size: int = Field(default=50, ge=1)
    include_total: bool = False

    @field_validator("subtitle_languages", "content_ids")
    @classmethod
    def dedupe(cls, values: List[str]) -> List[str]:
        seen = []
        for value in values:
            value = value.strip()
            if value and value not in seen:
                seen.append(value)
        return seen

    @field_validator("main_language", "level_min", "level_max", "user_id", "q")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def has_review_filter(self) -> bool:
        return bool(self.user_id) and (self.review_min is not None or self.review_max is not None)

    def cache_params(self, *, paged: bool = True) -> Dict[str, Any]:
        data = self.model_dump()
        data["subtitle_languages"] = sorted(self.subtitle_languages)
        data["content_ids"] = sorted(self.content_ids)
        if not paged:
            for key in ("page", "size", "include_total"):
                data.pop(key)
        return data


class LevelRating(BaseModel):
    framework: str
    level: str
    language: Optional[str] = None


class SearchItem(BaseModel):
    card_id: int
    content_slug: str
    content_title: str
    episode_slug: Optional[str] = None
    episode_number: int
    card_number: int
    start_time: float
    end_time: float
    duration: Optional[float] = None
    difficulty_score: Optional[float] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    text: str = ""
    subtitle: Dict[str, str] = Field(default_factory=dict)
    cefr_level: Optional[str] = None
    levels: List[LevelRating] = Field(default_factory=list)


class SearchResponse(BaseModel):
    items: List[SearchItem]
    total: int
    page: int
    size: int
    error: Optional[str] = None


class CountsResponse(BaseModel):
    counts: Dict[str, int]
    error: Optional[str] = None


class Suggestion(BaseModel):
    term: str
    frequency: int


class SuggestResponse(BaseModel):
    suggestions: List[Suggestion]
