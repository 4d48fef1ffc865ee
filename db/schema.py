# SQL schema for the subsearch database

SCHEMA_VERSION = 3

SCHEMA_SQL = """
-- Content sources (films, series, books)
CREATE TABLE IF NOT EXISTS content_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    main_language TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'movie'
);

-- Episodes
CREATE TABLE IF NOT EXISTS episodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content_item_id INTEGER NOT NULL,
    episode_number INTEGER NOT NULL,
    slug TEXT,
    title TEXT,
    FOREIGN KEY (content_item_id) REFERENCES content_items (id) ON DELETE CASCADE
);

-- Cards (atomic searchable fragments)
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    episode_id INTEGER NOT NULL,
    card_number INTEGER NOT NULL,
    start_time REAL NOT NULL DEFAULT 0,
    end_time REAL NOT NULL DEFAULT 0,
    duration REAL,
    difficulty_score REAL CHECK(difficulty_score IS NULL OR (difficulty_score >= 0 AND difficulty_score <= 100)),
    is_available INTEGER NOT NULL DEFAULT 1,
    image_key TEXT,
    audio_key TEXT,
    FOREIGN KEY (episode_id) REFERENCES episodes (id) ON DELETE CASCADE
);

-- Subtitle text, source of truth for search
CREATE TABLE IF NOT EXISTS card_subtitles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL,
    language TEXT NOT NULL,
    text TEXT NOT NULL,
    UNIQUE (card_id, language),
    FOREIGN KEY (card_id) REFERENCES cards (id) ON DELETE CASCADE
);

-- Proficiency ratings (CEFR, JLPT, HSK, TOPIK, ...)
CREATE TABLE IF NOT EXISTS card_difficulty_levels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL,
    framework TEXT NOT NULL,
    level TEXT NOT NULL,
    language TEXT,
    UNIQUE (card_id, framework, language),
    FOREIGN KEY (card_id) REFERENCES cards (id) ON DELETE CASCADE
);

-- Coverage index: derived (card, language) presence, rebuilt by the repair job
CREATE TABLE IF NOT EXISTS card_subtitle_language_map (
    card_id INTEGER NOT NULL,
    language TEXT NOT NULL,
    PRIMARY KEY (card_id, language)
);

-- Per-user review state (written elsewhere, read-only here)
CREATE TABLE IF NOT EXISTS user_card_states (
    user_id TEXT NOT NULL,
    card_id INTEGER NOT NULL,
    review_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, card_id)
);

-- Autocomplete terms
CREATE TABLE IF NOT EXISTS search_terms (
    term TEXT NOT NULL,
    language TEXT NOT NULL,
    frequency INTEGER NOT NULL DEFAULT 0,
    context_count INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (term, language)
);

-- Background job checkpoints
CREATE TABLE IF NOT EXISTS job_state (
    name TEXT PRIMARY KEY,
    watermark INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Key-value cache with TTL
CREATE TABLE IF NOT EXISTS kv_cache (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

# Indexes for performance
INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_episodes_item ON episodes (content_item_id);
CREATE INDEX IF NOT EXISTS idx_cards_episode ON cards (episode_id);
CREATE INDEX IF NOT EXISTS idx_cards_available ON cards (is_available, id);
CREATE INDEX IF NOT EXISTS idx_cards_difficulty ON cards (difficulty_score);
CREATE INDEX IF NOT EXISTS idx_content_items_main_language ON content_items (main_language);
CREATE INDEX IF NOT EXISTS idx_card_subtitles_card ON card_subtitles (card_id);
CREATE INDEX IF NOT EXISTS idx_card_subtitles_language ON card_subtitles (language, card_id);
CREATE INDEX IF NOT EXISTS idx_card_difficulty_levels_card ON card_difficulty_levels (card_id, framework, level);
CREATE INDEX IF NOT EXISTS idx_card_subtitle_language_map_lang_card ON card_subtitle_language_map (language, card_id);
CREATE INDEX IF NOT EXISTS idx_user_card_states_card ON user_card_states (card_id, user_id);
CREATE INDEX IF NOT EXISTS idx_search_terms_autocomplete ON search_terms (language, term, frequency DESC);
CREATE INDEX IF NOT EXISTS idx_kv_cache_expires ON kv_cache (expires_at);
"""
