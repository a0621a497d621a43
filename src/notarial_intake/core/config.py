# ============================================================================
# src/notarial_intake/core/config.py
# ============================================================================
"""
Centralized Pipeline Configuration

Loads pipeline tuning from environment variables (.env file) with sensible
defaults. Service endpoints, paths and logging live in the pydantic settings
under ``notarial_intake.config``; this module covers the knobs the batch
pipeline components read from their ``config`` dict.

Usage:
    from notarial_intake.core.config import get_config

    config = get_config()
    pipeline = IntakePipeline(session_id, extraction_client, config=config)
"""

import os
from pathlib import Path
from typing import Dict, Any
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv


def _load_dotenv():
    """Load .env file if it exists."""
    # Project root first, then current working directory
    env_path = Path(__file__).parent.parent.parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
        return True

    cwd_env = Path.cwd() / '.env'
    if cwd_env.exists():
        load_dotenv(cwd_env)
        return True

    return False


def _get_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


def _get_int(key: str, default: int = 0) -> int:
    """Get integer from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(key: str, default: float = 0.0) -> float:
    """Get float from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Config:
    """
    Configuration container with attribute access.

    All values are loaded from environment variables with defaults.
    """

    # Concurrency lanes. Identifications and marriage certificates depend on
    # the flags set by the previous page, so their lane stays sequential.
    context_lane_concurrency: int = field(default_factory=lambda: _get_int('CONTEXT_LANE_CONCURRENCY', 1))
    registry_lane_concurrency: int = field(default_factory=lambda: _get_int('REGISTRY_LANE_CONCURRENCY', 2))
    plans_lane_concurrency: int = field(default_factory=lambda: _get_int('PLANS_LANE_CONCURRENCY', 2))

    # Extraction
    extraction_timeout: float = field(default_factory=lambda: _get_float('EXTRACTION_TIMEOUT', 120.0))
    include_raw_text: bool = field(default_factory=lambda: _get_bool('INCLUDE_RAW_TEXT', True))

    # Page splitting
    render_dpi: int = field(default_factory=lambda: _get_int('RENDER_DPI', 150))
    max_pages_per_file: int = field(default_factory=lambda: _get_int('MAX_PAGES_PER_FILE', 60))

    # Classification heuristic: flat images below this size are treated as IDs
    identification_max_bytes: int = field(default_factory=lambda: _get_int('IDENTIFICATION_MAX_BYTES', 4 * 1024 * 1024))

    # Page result cache (2h default, clamped to 5 min .. 24 h)
    use_cache: bool = field(default_factory=lambda: _get_bool('USE_CACHE', True))
    cache_max_size: int = field(default_factory=lambda: _get_int('CACHE_MAX_SIZE', 500))
    cache_ttl: int = field(default_factory=lambda: _get_int('CACHE_TTL', 7200))
    cache_persist: bool = field(default_factory=lambda: _get_bool('CACHE_PERSIST', False))

    # Server-side "already processed" check
    use_cache_check: bool = field(default_factory=lambda: _get_bool('USE_CACHE_CHECK', True))

    # Record persistence
    persist_debounce: float = field(default_factory=lambda: _get_float('PERSIST_DEBOUNCE', 1.5))

    def __post_init__(self):
        self.cache_ttl = max(300, min(86400, self.cache_ttl))

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for passing to components."""
        return {
            # Concurrency
            'context_lane_concurrency': self.context_lane_concurrency,
            'registry_lane_concurrency': self.registry_lane_concurrency,
            'plans_lane_concurrency': self.plans_lane_concurrency,

            # Extraction
            'extraction_timeout': self.extraction_timeout,
            'include_raw_text': self.include_raw_text,

            # Page splitting
            'render_dpi': self.render_dpi,
            'max_pages_per_file': self.max_pages_per_file,

            # Classification
            'identification_max_bytes': self.identification_max_bytes,

            # Caching
            'use_cache': self.use_cache,
            'cache_max_size': self.cache_max_size,
            'cache_ttl': self.cache_ttl,
            'cache_persist': self.cache_persist,
            'use_cache_check': self.use_cache_check,

            # Persistence
            'persist_debounce': self.persist_debounce,
        }


@lru_cache(maxsize=1)
def get_config() -> Dict[str, Any]:
    """
    Get configuration dictionary.

    Cached for performance - call once and pass to components.

    Returns:
        Configuration dictionary with all settings
    """
    _load_dotenv()
    return Config().to_dict()


def reload_config() -> Dict[str, Any]:
    """Reload configuration from environment."""
    get_config.cache_clear()
    return get_config()
