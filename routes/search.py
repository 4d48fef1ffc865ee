import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import Settings, load_settings
from models.search import CountsResponse, SearchParams, SearchResponse, SuggestResponse
from utils.cache import cache_get, cache_set, make_cache_key
from utils.coverage import repair_coverage_index, request_repair
from utils.errors import ParameterLimitExceeded, QueryExecutionFailure
from utils.search import SearchOutcome, run_counts, run_search
from utils.terms import SUGGEST_CACHE_PREFIX, suggest
from utils.text import primary_language

logger = logging.getLogger(__name__)

router = APIRouter()


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _check_range(name: str, low, high) -> None:
    if low is not None and high is not None and low > high:
        raise HTTPException(status_code=400, detail=f"{name}_min must not exceed {name}_max")


def _search_params(
    settings: Settings,
    q: Optional[str] = None,
    main_language: Optional[str] = None,
    subtitle_languages: Optional[str] = None,
    content_ids: Optional[str] = None,
    difficulty_min: Optional[float] = None,
    difficulty_max: Optional[float] = None,
    level_min: Optional[str] = None,
    level_max: Optional[str] = None,
    length_min: Optional[int] = None,
    length_max: Optional[int] = None,
    duration_max: Optional[float] = None,
    review_min: Optional[int] = None,
    review_max: Optional[int] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    size: int = 50,
    include_total: bool = False,
) -> SearchParams:
    if page < 1:
        raise HTTPException(status_code=400, detail="page must be >= 1")
    if size < 1:
        raise HTTPException(status_code=400, detail="size must be >= 1")
    for value, name in ((difficulty_min, "difficulty_min"), (difficulty_max, "difficulty_max")):
        if value is not None and not 0 <= value <= 100:
            raise HTTPException(status_code=400, detail=f"{name} must be between 0 and 100")
    _check_range("difficulty", difficulty_min, difficulty_max)
    _check_range("length", length_min, length_max)
    _check_range("review", review_min, review_max)
    try:
        return SearchParams(
            q=q,
            main_language=main_language,
            subtitle_languages=split_csv(subtitle_languages),
            content_ids=split_csv(content_ids)[:settings.max_content_sources],
            difficulty_min=difficulty_min,
            difficulty_max=difficulty_max,
            level_min=level_min,
            level_max=level_max,
            length_min=length_min,
            length_max=length_max,
            duration_max=duration_max,
            review_min=review_min,
            review_max=review_max,
            user_id=user_id,
            page=page,
            size=min(size, settings.max_page_size),
            include_total=include_total,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False)) from exc


def _cached_response(data, age: float) -> JSONResponse:
    return JSONResponse(data, headers={"X-Cache": "HIT", "X-Cache-Age": str(int(age))})


def _schedule(outcome: SearchOutcome, settings: Settings, background_tasks: BackgroundTasks, key: str, ttl: int) -> None:
    if outcome.plan.needs_repair and request_repair(settings):
        logger.info("[search] Enqueueing coverage repair")
        background_tasks.add_task(repair_coverage_index, settings)
    if settings.cache_enabled and ttl > 0:
        background_tasks.add_task(cache_set, key, outcome.payload, ttl)


@router.get("", response_model=SearchResponse)
async def search_cards(
    background_tasks: BackgroundTasks,
    q: Optional[str] = None,
    main_language: Optional[str] = None,
    subtitle_languages: Optional[str] = None,
    content_ids: Optional[str] = None,
    difficulty_min: Optional[float] = None,
    difficulty_max: Optional[float] = None,
    level_min: Optional[str] = None,
    level_max: Optional[str] = None,
    length_min: Optional[int] = None,
    length_max: Optional[int] = None,
    duration_max: Optional[float] = None,
    review_min: Optional[int] = None,
    review_max: Optional[int] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    size: int = 50,
    include_total: bool = False,
    settings: Settings = Depends(load_settings),
):
    params = _search_params(
        settings, q, main_language, subtitle_languages, content_ids,
        difficulty_min, difficulty_max, level_min, level_max,
        length_min, length_max, duration_max, review_min, review_max,
        user_id, page, size, include_total,
    )
    key = make_cache_key("search", params.cache_params())
    if settings.cache_enabled and settings.cache_ttl > 0:
        hit = await asyncio.to_thread(cache_get, key, settings.cache_ttl)
        if hit is not None:
            logger.info(f"[search] Cache HIT (age {hit[1]:.1f}s)")
            return _cached_response(*hit)

    try:
        outcome = await run_search(params, settings)
    except ParameterLimitExceeded as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except QueryExecutionFailure:
        payload = {"items": [], "total": 0, "page": params.page, "size": params.size, "error": "search_failed"}
        return JSONResponse(payload, headers={"X-Cache": "MISS", "X-Cache-Age": "0"})

    _schedule(outcome, settings, background_tasks, key, settings.cache_ttl)
    return JSONResponse(outcome.payload, headers={"X-Cache": "MISS", "X-Cache-Age": "0"})


@router.get("/counts", response_model=CountsResponse)
async def search_counts(
    background_tasks: BackgroundTasks,
    q: Optional[str] = None,
    main_language: Optional[str] = None,
    subtitle_languages: Optional[str] = None,
    content_ids: Optional[str] = None,
    difficulty_min: Optional[float] = None,
    difficulty_max: Optional[float] = None,
    level_min: Optional[str] = None,
    level_max: Optional[str] = None,
    length_min: Optional[int] = None,
    length_max: Optional[int] = None,
    duration_max: Optional[float] = None,
    review_min: Optional[int] = None,
    review_max: Optional[int] = None,
    user_id: Optional[str] = None,
    settings: Settings = Depends(load_settings),
):
    params = _search_params(
        settings, q, main_language, subtitle_languages, content_ids,
        difficulty_min, difficulty_max, level_min, level_max,
        length_min, length_max, duration_max, review_min, review_max, user_id,
    )
    key = make_cache_key("counts", params.cache_params(paged=False))
    if settings.cache_enabled and settings.counts_cache_ttl > 0:
        hit = await asyncio.to_thread(cache_get, key, settings.counts_cache_ttl)
        if hit is not None:
            return _cached_response(*hit)

    try:
        outcome = await run_counts(params, settings)
    except ParameterLimitExceeded as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except QueryExecutionFailure:
        return JSONResponse({"counts": {}, "error": "search_failed"}, headers={"X-Cache": "MISS", "X-Cache-Age": "0"})

    _schedule(outcome, settings, background_tasks, key, settings.counts_cache_ttl)
    return JSONResponse(outcome.payload, headers={"X-Cache": "MISS", "X-Cache-Age": "0"})


@router.get("/suggest", response_model=SuggestResponse)
async def search_suggest(
    background_tasks: BackgroundTasks,
    q: Optional[str] = None,
    language: Optional[str] = None,
    limit: int = 10,
    settings: Settings = Depends(load_settings),
):
    limit = max(1, min(50, limit))
    lang = primary_language(language)
    key = make_cache_key(SUGGEST_CACHE_PREFIX, {"q": (q or "").strip().lower(), "language": lang, "limit": limit})
    if settings.cache_enabled and settings.suggest_cache_ttl > 0:
        hit = await asyncio.to_thread(cache_get, key, settings.suggest_cache_ttl)
        if hit is not None:
            return _cached_response(*hit)

    suggestions = await asyncio.to_thread(suggest, q, lang, limit)
    payload = {"suggestions": suggestions}
    if suggestions and settings.cache_enabled and settings.suggest_cache_ttl > 0:
        background_tasks.add_task(cache_set, key, payload, settings.suggest_cache_ttl)
    return JSONResponse(payload, headers={"X-Cache": "MISS", "X-Cache-Age": "0"})
