from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status

from config import Settings, load_settings
from db.database import get_db, get_watermark
from utils.coverage import REPAIR_JOB, estimate_coverage, repair_coverage_index
from utils.terms import rebuild_search_terms

router = APIRouter()


@router.post("/coverage/repair", status_code=status.HTTP_202_ACCEPTED)
async def trigger_coverage_repair(
    background_tasks: BackgroundTasks,
    full: bool = False,
    settings: Settings = Depends(load_settings),
):
    background_tasks.add_task(repair_coverage_index, settings, full)
    return {"status": "queued", "job": REPAIR_JOB, "full": full}


@router.get("/coverage/health")
async def coverage_health(conn=Depends(get_db), settings: Settings = Depends(load_settings)):
    health = estimate_coverage(conn, settings)
    return {**health.to_dict(), "watermark": get_watermark(conn, REPAIR_JOB)}


@router.post("/terms/rebuild", status_code=status.HTTP_202_ACCEPTED)
async def trigger_terms_rebuild(
    background_tasks: BackgroundTasks,
    language: Optional[str] = None,
    full: bool = False,
    settings: Settings = Depends(load_settings),
):
    background_tasks.add_task(rebuild_search_terms, settings, language or None, full)
    return {"status": "queued", "language": language, "full": full}
