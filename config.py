import tomllib
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv
import os

CONFIG_DIR = Path.home() / ".subsearch"
CONFIG_PATH = CONFIG_DIR / "config.toml"
PROJECT_CONFIG_EXAMPLE = Path(__file__).parent / "config.toml"


def _env(name: str, fallback: Any) -> Any:
    return os.getenv(f"SUBSEARCH_{name}", fallback)


def load_config() -> Dict[str, Any]:
    """Load config from ~/.subsearch/config.toml, copy example if missing, load .env overrides."""
    load_dotenv()  # Load .env for overrides (e.g., SUBSEARCH_CACHE_TTL env var)
    if not CONFIG_PATH.exists():
        CONFIG_DIR.mkdir(exist_ok=True)
        shutil.copy(PROJECT_CONFIG_EXAMPLE, CONFIG_PATH)
    with open(CONFIG_PATH, "rb") as f:
        config = tomllib.load(f)

    store_cfg = config.get("store", {})
    config["store"] = {
        "max_bound_parameters": int(_env("MAX_BOUND_PARAMETERS", store_cfg.get("max_bound_parameters", 999))),
    }
    search_cfg = config.get("search", {})
    config["search"] = {
        "cache_enabled": str(_env("CACHE_ENABLED", search_cfg.get("cache_enabled", True))).lower() == "true",
        "cache_ttl": int(_env("CACHE_TTL", search_cfg.get("cache_ttl", 300))),
        "counts_cache_ttl": int(_env("COUNTS_CACHE_TTL", search_cfg.get("counts_cache_ttl", 600))),
        "suggest_cache_ttl": int(_env("SUGGEST_CACHE_TTL", search_cfg.get("suggest_cache_ttl", 3600))),
        "max_page_size": int(search_cfg.get("max_page_size", 100)),
        "overfetch_factor": float(search_cfg.get("overfetch_factor", 1.5)),
        "overfetch_cap": int(search_cfg.get("overfetch_cap", 75)),
        "max_query_tokens": int(search_cfg.get("max_query_tokens", 8)),
        "max_content_sources": int(search_cfg.get("max_content_sources", 100)),
        "media_base_url": _env("MEDIA_BASE_URL", search_cfg.get("media_base_url", "")),
    }
    coverage_cfg = config.get("coverage", {})
    config["coverage"] = {
        "min_ratio": float(_env("COVERAGE_MIN_RATIO", coverage_cfg.get("min_ratio", 0.5))),
        "min_rows": int(_env("COVERAGE_MIN_ROWS", coverage_cfg.get("min_rows", 5000))),
        "languages_per_card": float(coverage_cfg.get("languages_per_card", 2.0)),
        "chunk_size": int(coverage_cfg.get("chunk_size", 10000)),
        "repair_budget_seconds": float(coverage_cfg.get("repair_budget_seconds", 10.0)),
        "health_ttl": int(coverage_cfg.get("health_ttl", 60)),
    }
    hydrator_cfg = config.get("hydrator", {})
    config["hydrator"] = {
        "batch_size": int(hydrator_cfg.get("batch_size", 50)),
        "max_concurrency": int(_env("HYDRATOR_CONCURRENCY", hydrator_cfg.get("max_concurrency", 20))),
    }
    terms_cfg = config.get("terms", {})
    config["terms"] = {
        "batch_rows": int(terms_cfg.get("batch_rows", 500)),
        "min_ngram": int(terms_cfg.get("min_ngram", 2)),
        "max_ngram": int(terms_cfg.get("max_ngram", 6)),
    }
    logging_cfg = config.get("logging", {})
    config["logging"] = {
        "level": str(_env("LOG_LEVEL", logging_cfg.get("level", "INFO"))).upper(),
    }
    return config


def get_config_value(section: str, key: str, default: Optional[Any] = None) -> Any:
    """Get nested config value, e.g., get_config_value('search', 'cache_ttl')."""
    config = load_config()
    value = config.get(section, {}).get(key, default)
    return value


@dataclass(frozen=True)
class Settings:
    """Flattened, immutable view of the search engine's tunables."""

    max_bound_parameters: int = 999
    cache_enabled: bool = True
    cache_ttl: int = 300
    counts_cache_ttl: int = 600
    suggest_cache_ttl: int = 3600
    max_page_size: int = 100
    overfetch_factor: float = 1.5
    overfetch_cap: int = 75
    max_query_tokens: int = 8
    max_content_sources: int = 100
    media_base_url: str = ""
    coverage_min_ratio: float = 0.5
    coverage_min_rows: int = 5000
    coverage_languages_per_card: float = 2.0
    coverage_chunk_size: int = 10000
    coverage_repair_budget_seconds: float = 10.0
    coverage_health_ttl: int = 60
    hydrator_batch_size: int = 50
    hydrator_max_concurrency: int = 20
    terms_batch_rows: int = 500
    terms_min_ngram: int = 2
    terms_max_ngram: int = 6


def load_settings() -> Settings:
    """Build a Settings snapshot from the current config file and environment."""
    config = load_config()
    search = config["search"]
    coverage = config["coverage"]
    hydrator = config["hydrator"]
    terms = config["terms"]
    return Settings(
        max_bound_parameters=config["store"]["max_bound_parameters"],
        cache_enabled=search["cache_enabled"],
        cache_ttl=search["cache_ttl"],
        counts_cache_ttl=search["counts_cache_ttl"],
        suggest_cache_ttl=search["suggest_cache_ttl"],
        max_page_size=search["max_page_size"],
        overfetch_factor=search["overfetch_factor"],
        overfetch_cap=search["overfetch_cap"],
        max_query_tokens=search["max_query_tokens"],
        max_content_sources=search["max_content_sources"],
        media_base_url=search["media_base_url"],
        coverage_min_ratio=coverage["min_ratio"],
        coverage_min_rows=coverage["min_rows"],
        coverage_languages_per_card=coverage["languages_per_card"],
        coverage_chunk_size=coverage["chunk_size"],
        coverage_repair_budget_seconds=coverage["repair_budget_seconds"],
        coverage_health_ttl=coverage["health_ttl"],
        hydrator_batch_size=hydrator["batch_size"],
        hydrator_max_concurrency=hydrator["max_concurrency"],
        terms_batch_rows=terms["batch_rows"],
        terms_min_ngram=terms["min_ngram"],
        terms_max_ngram=terms["max_ngram"],
    )
