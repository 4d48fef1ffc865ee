import argparse
import logging
import uvicorn
from fastapi import FastAPI
from contextlib import asynccontextmanager

import sys
from pathlib import Path

# Add project root to path for package imports
base_dir = Path(__file__).parent
sys.path.insert(0, str(base_dir))

from db.database import init_db
from config import load_config, load_settings, CONFIG_DIR
from routes import search, admin  # Import routers
from utils.cache import purge_expired
from utils.coverage import repair_coverage_index
from utils.terms import rebuild_search_terms

logger = logging.getLogger(__name__)


def configure_logging(config) -> None:
    logging.basicConfig(
        level=getattr(logging, config["logging"]["level"], logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# First-run init
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: config, logging, schema, stale cache rows
    config = load_config()
    configure_logging(config)
    init_db()
    purge_expired()
    logger.info(f"subsearch ready (data dir {CONFIG_DIR})")
    yield


app = FastAPI(title="subsearch", description="Multilingual subtitle search and indexing", lifespan=lifespan)

# Include routers
app.include_router(search.router, prefix="/search", tags=["search"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="subsearch")
    parser.add_argument("--init", action="store_true", help="Initialize DB and config")
    parser.add_argument("--dev", action="store_true", help="Run in dev mode with reload")
    parser.add_argument("--repair-coverage", action="store_true", help="Rebuild the subtitle coverage index")
    parser.add_argument("--rebuild-terms", action="store_true", help="Merge new subtitles into the autocomplete terms")
    parser.add_argument("--language", default=None, help="Restrict --rebuild-terms to one language")
    parser.add_argument("--full", action="store_true", help="Start the job from scratch instead of the watermark")
    args = parser.parse_args()
    config = load_config()  # Ensures config is copied if missing
    configure_logging(config)
    if args.init:
        init_db()
        print(f"DB initialized and config copied to {CONFIG_DIR}/")
        sys.exit(0)
    if args.repair_coverage or args.rebuild_terms:
        init_db()
        settings = load_settings()
        if args.repair_coverage:
            print(repair_coverage_index(settings, full=args.full))
        if args.rebuild_terms:
            for summary in rebuild_search_terms(settings, language=args.language, full=args.full):
                print(summary)
        sys.exit(0)
    # Run server
    port = 8000
    reload = args.dev
    uvicorn.run("main:app", host="127.0.0.1", port=port, reload=reload, log_level="info")
