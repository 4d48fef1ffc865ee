from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pytest

import config
from config import Settings
from db import database


def _write_test_config(config_path: Path) -> None:
    config_path.write_text(
        "\n".join(
            [
                "[store]",
                "max_bound_parameters = 999",
                "",
                "[search]",
                "cache_enabled = true",
                "cache_ttl = 300",
                "counts_cache_ttl = 600",
                "suggest_cache_ttl = 3600",
                "media_base_url = \"https://media.example.test\"",
                "",
                "[coverage]",
                "min_ratio = 0.5",
                "min_rows = 5000",
                "health_ttl = 60",
                "",
                "[logging]",
                "level = \"DEBUG\"",
            ]
        ),
        encoding="utf-8",
    )


class Seeder:
    """Raw-SQL fixture builder for content items, episodes and cards."""

    def __init__(self):
        self._episodes: Dict[str, int] = {}

    def episode(self, slug: str, main_language: str = "en", title: Optional[str] = None) -> int:
        if slug in self._episodes:
            return self._episodes[slug]
        with database.get_conn() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO content_items (slug, title, main_language) VALUES (?, ?, ?)",
                (slug, title or slug.title(), main_language),
            )
            content_id = cursor.lastrowid
            cursor.execute(
                "INSERT INTO episodes (content_item_id, episode_number, slug) VALUES (?, 1, ?)",
                (content_id, f"{slug}-e1"),
            )
            episode_id = cursor.lastrowid
            conn.commit()
        self._episodes[slug] = episode_id
        return episode_id

    def card(
        self,
        slug: str,
        subtitles: Dict[str, str],
        main_language: str = "en",
        difficulty: Optional[float] = None,
        duration: float = 2.0,
        levels: Iterable[Tuple[str, str, Optional[str]]] = (),
        available: bool = True,
        number: Optional[int] = None,
    ) -> int:
        episode_id = self.episode(slug, main_language)
        with database.get_conn() as conn:
            cursor = conn.cursor()
            if number is None:
                number = cursor.execute(
                    "SELECT COUNT(*) FROM cards WHERE episode_id = ?", (episode_id,)
                ).fetchone()[0] + 1
            cursor.execute(
                """
                INSERT INTO cards (episode_id, card_number, start_time, end_time, duration,
                                   difficulty_score, is_available, image_key, audio_key)
                VALUES (?, ?, 0, ?, ?, ?, ?, ?, ?)
                """,
                (
                    episode_id, number, duration, duration, difficulty, int(available),
                    f"{slug}/{number}.jpg", f"{slug}/{number}.mp3",
                ),
            )
            card_id = cursor.lastrowid
            for language, text in subtitles.items():
                cursor.execute(
                    "INSERT INTO card_subtitles (card_id, language, text) VALUES (?, ?, ?)",
                    (card_id, language, text),
                )
            for framework, level, language in levels:
                cursor.execute(
                    "INSERT INTO card_difficulty_levels (card_id, framework, level, language) VALUES (?, ?, ?, ?)",
                    (card_id, framework, level, language),
                )
            conn.commit()
        return card_id

    def reviews(self, user_id: str, card_id: int, count: int) -> None:
        with database.get_conn() as conn:
            conn.execute(
                "INSERT INTO user_card_states (user_id, card_id, review_count) VALUES (?, ?, ?)",
                (user_id, card_id, count),
            )
            conn.commit()


@pytest.fixture
def store(tmp_path, monkeypatch):
    config_dir = tmp_path / ".subsearch"
    config_dir.mkdir()
    config_path = config_dir / "config.toml"
    _write_test_config(config_path)

    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_PATH", config_path)
    monkeypatch.setattr(database, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(database, "DB_PATH", config_dir / "subsearch.db")
    for name in ("CACHE_ENABLED", "CACHE_TTL", "COVERAGE_MIN_ROWS", "COVERAGE_MIN_RATIO", "MAX_BOUND_PARAMETERS"):
        monkeypatch.delenv(f"SUBSEARCH_{name}", raising=False)

    database.init_db()
    return config_dir


@pytest.fixture
def seed(store):
    return Seeder()


@pytest.fixture
def settings():
    return Settings(media_base_url="https://media.example.test")
