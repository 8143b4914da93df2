"""Centralized configuration for the graph dashboard backend.

All settings are read from environment variables (with .env file support).
Import `settings` from this module; never call os.getenv() directly.

Usage:
    from graphdash.config import settings

    driver = AsyncGraphDatabase.driver(
        settings.neo4j_uri,
        auth=(settings.neo4j_user, settings.neo4j_password),
    )
"""

from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Environment ─────────────────────────────────────────────
    app_env: str = "development"
    allow_destructive_queries: bool = False  # opt-in outside development

    # ── Neo4j ───────────────────────────────────────────────────
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "neo4j"
    neo4j_database: str = "neo4j"

    # ── Query builder ───────────────────────────────────────────
    default_limit: int = 10
    settle_delay: float = 0.15      # coalescing window for enabled toggles
    settle_cooldown: float = 0.2    # ignore toggle echoes after an execution
    restore_delay: float = 0.1      # length of the restoring phase
    token_param: str = "builder"

    # ── Schema introspection ────────────────────────────────────
    schema_sample_size: int = 1000

    # ── Saved queries / history ─────────────────────────────────
    queries_db_path: str = "data/queries/queries.sqlite3"
    history_max: int = 50

    # ── HTTP ────────────────────────────────────────────────────
    cors_origins: List[str] = ["http://localhost:3000"]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def is_dev_env(self) -> bool:
        return self.app_env.strip().lower() in {"dev", "development", "local", "test"}


# Singleton, import this everywhere
settings = Settings()
