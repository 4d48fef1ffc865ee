"""Pick the physical shape of the subtitle-coverage predicate."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from config import Settings
from models.search import SearchParams
from utils.coverage import CoverageHealth, cached_coverage_health
from utils.errors import IndexUnavailable

logger = logging.getLogger(__name__)

PLAN_NONE = "none"
PLAN_INDEX = "index"
PLAN_FALLBACK = "fallback"


@dataclass(frozen=True)
class QueryPlan:
    kind: str
    health: Optional[CoverageHealth] = None
    needs_repair: bool = False

    @property
    def use_index(self) -> bool:
        return self.kind == PLAN_INDEX


def _require_healthy(conn: sqlite3.Connection, settings: Settings) -> CoverageHealth:
    health = cached_coverage_health(conn, settings)
    if not health.healthy:
        raise IndexUnavailable(
            f"coverage estimate {health.estimated_coverage} over {health.index_rows} rows"
        )
    return health


def choose_plan(conn: sqlite3.Connection, params: SearchParams, settings: Settings) -> QueryPlan:
    """Use the coverage index only when it looks healthy; otherwise fall back and ask for repair."""
    if not params.subtitle_languages:
        return QueryPlan(PLAN_NONE)
    try:
        health = _require_healthy(conn, settings)
    except IndexUnavailable as e:
        logger.info(f"[planner] Coverage index unavailable ({e}), using fallback")
        return QueryPlan(PLAN_FALLBACK, needs_repair=True)
    except sqlite3.Error as e:
        logger.warning(f"[planner] Coverage estimate failed, using fallback: {e}")
        return QueryPlan(PLAN_FALLBACK, needs_repair=True)
    logger.debug(f"[planner] Using coverage index (estimate {health.estimated_coverage})")
    return QueryPlan(PLAN_INDEX, health=health)
