# ============================================================================
# src/notarial_intake/config/base_config.py
# ============================================================================
"""
Base Configuration
- Project root
- Session record database
- Page result cache directory
"""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

class BaseSettingsConfig(BaseSettings):
    # Root project directory
    PROJECT_ROOT: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent.parent,
        description="Root directory of the project"
    )

    # Working data directory
    DATA_DIR: Path = Field(
        default=Path("data"),
        description="Directory for local runtime data"
    )

    # Canonical record storage
    SESSION_DB_PATH: Path = Field(
        default=Path("data/sessions.db"),
        description="SQLite database holding the last known record per session"
    )

    # Page extraction results
    CACHE_DIR: Path = Field(
        default=Path("cache/pages"),
        description="Persistent fingerprint cache of page extraction results"
    )

    def create_directories(self):
        """Create all necessary directories if they don't exist"""
        dirs = [
            self.DATA_DIR,
            self.CACHE_DIR,
            self.SESSION_DB_PATH.parent
        ]
        for directory in dirs:
            directory.mkdir(parents=True, exist_ok=True)

# Global instance
base_settings = BaseSettingsConfig()
