"""
exam_ai_core/settings.py
-----------------------------------
Environment-driven configuration (.env via python-dotenv).

Keys are read when load_settings() is called, not at import time,
so the core can be imported and tested without any API key.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from exam_core.allocation_planner import PlannerConfig
from exam_core.composition_controller import ComposerConfig
from exam_core.pattern_analyzer import AnalyzerConfig

DEFAULT_ENV_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return default if raw in (None, "") else float(raw)


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return default if raw in (None, "") else int(raw)


def _get_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    """Unset keeps the default; "none" disables the limit."""
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return None if raw.strip().lower() == "none" else float(raw)


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_model: str
    openai_embedding_model: str
    google_api_key: Optional[str]
    gemini_model: str
    embedding_cache_path: str

    analyzer: AnalyzerConfig
    planner: PlannerConfig
    composer: ComposerConfig

    # infrastructure retry (ApiThrottler), separate from composer.max_retries
    api_min_interval: float = 2.0
    api_max_retries: int = 5
    api_max_wait: float = 25.0


def load_settings(env_path: Optional[str] = DEFAULT_ENV_PATH) -> Settings:
    """Load .env (if present) and build every config object from the environment."""
    if env_path:
        load_dotenv(dotenv_path=env_path)

    analyzer = AnalyzerConfig(
        decay=_get_float("EXAM_DECAY", 0.9),
        overdue_threshold=_get_int("EXAM_OVERDUE_THRESHOLD", 2),
        min_distinct_years=_get_int("EXAM_MIN_YEARS", 5),
        trend_tolerance=_get_float("EXAM_TREND_TOLERANCE", 0.10),
    )
    planner = PlannerConfig(
        replacement_mark_band=_get_float("EXAM_REPLACEMENT_MARK_BAND", 0.5),
        type_tolerance=_get_float("EXAM_TYPE_TOLERANCE", 0.10),
        mark_share_tolerance=_get_float("EXAM_MARK_SHARE_TOLERANCE", 0.15),
    )
    composer = ComposerConfig(
        alignment_threshold=_get_float("EXAM_ALIGNMENT_THRESHOLD", 0.75),
        max_retries=_get_int("EXAM_MAX_RETRIES", 5),
        max_workers=_get_int("EXAM_MAX_WORKERS", 4),
        validation_timeout=_get_optional_float("EXAM_VALIDATION_TIMEOUT", 60.0),
    )

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        embedding_cache_path=os.getenv("EXAM_EMBEDDING_CACHE", "embedding_cache.db"),
        analyzer=analyzer,
        planner=planner,
        composer=composer,
        api_min_interval=_get_float("EXAM_API_MIN_INTERVAL", 2.0),
        api_max_retries=_get_int("EXAM_API_MAX_RETRIES", 5),
        api_max_wait=_get_float("EXAM_API_MAX_WAIT", 25.0),
    )
