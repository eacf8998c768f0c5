from pydantic_settings import BaseSettings
from typing import List, Any
import json
from pathlib import Path


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Workspace Terminal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # CORS - comma-separated or JSON list
    CORS_ORIGINS_STR: str = "http://localhost:3000"

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # Empty disables the rotating file handler

    # ==========================================
    # Workspaces
    # ==========================================
    WORKSPACE_ROOT: str = "/tmp/workspaces"  # <WORKSPACE_ROOT>/<project_id> is the session cwd

    # ==========================================
    # Terminal sessions
    # ==========================================
    TERMINAL_HISTORY_LIMIT: int = 1000  # Output chunks kept per session (oldest evicted first)
    TERMINAL_REAPER_ENABLED: bool = True
    TERMINAL_REAPER_INTERVAL_SECONDS: float = 60  # Sweep every minute
    TERMINAL_IDLE_TIMEOUT_SECONDS: float = 3600  # Reap sessions idle for 1 hour
    TERMINAL_STREAMING_ACK_SECONDS: float = 0.1  # Dev-server commands answer after this delay
    TERMINAL_REPLACE_GRACE_SECONDS: float = 5  # Wait for the old process before detaching it
    TERMINAL_READ_CHUNK_SIZE: int = 4096

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    @property
    def WORKSPACE_DIR(self) -> Path:
        return Path(self.WORKSPACE_ROOT)


settings = Settings()
