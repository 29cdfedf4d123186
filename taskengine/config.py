# taskengine/config.py
"""
Task Engine configuration, read from the environment (and .env when present)
"""

import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class Settings:
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "100"))

    # ==========================================================================
    # FastAPI Settings
    # ==========================================================================
    FASTAPI_HOST: str = os.getenv("FASTAPI_HOST", "0.0.0.0")
    FASTAPI_PORT: int = int(os.getenv("FASTAPI_PORT", "8000"))

    # ==========================================================================
    # Database Configuration
    # ==========================================================================
    @property
    def DATABASE_URL(self) -> str:
        """Get database URL with fallback for development"""
        url = os.getenv("DATABASE_URL")
        if url:
            return url
        # Default to SQLite for development
        return "sqlite:///./taskengine.db"

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD") or None

    @property
    def REDIS_URL(self) -> str:
        """Construct Redis URL from components"""
        url = os.getenv("REDIS_URL")
        if url:
            return url
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ==========================================================================
    # Outbound Messaging
    # ==========================================================================
    MESSAGE_QUEUE_BACKEND: str = os.getenv("MESSAGE_QUEUE_BACKEND", "database")
    OUTBOUND_QUEUE_KEY: str = os.getenv("OUTBOUND_QUEUE_KEY", "outbound_messages")

    # ==========================================================================
    # Retry Defaults (resilience layer)
    # ==========================================================================
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_INITIAL_DELAY_MS: int = int(os.getenv("RETRY_INITIAL_DELAY_MS", "1000"))
    RETRY_MAX_DELAY_MS: int = int(os.getenv("RETRY_MAX_DELAY_MS", "10000"))
    RETRY_BACKOFF_MULTIPLIER: float = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2"))

    # ==========================================================================
    # Circuit Breaker Defaults
    # ==========================================================================
    CIRCUIT_FAILURE_THRESHOLD: int = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
    CIRCUIT_RESET_TIMEOUT: float = float(os.getenv("CIRCUIT_RESET_TIMEOUT", "60"))
    CIRCUIT_SUCCESS_THRESHOLD: int = int(os.getenv("CIRCUIT_SUCCESS_THRESHOLD", "2"))
    CIRCUIT_HALF_OPEN_MAX_CALLS: int = int(os.getenv("CIRCUIT_HALF_OPEN_MAX_CALLS", "3"))
    CIRCUIT_MONITORING_WINDOW: float = float(os.getenv("CIRCUIT_MONITORING_WINDOW", "120"))

    # ==========================================================================
    # Executor Settings
    # ==========================================================================
    API_CALL_TIMEOUT_MS: int = int(os.getenv("API_CALL_TIMEOUT_MS", "30000"))
    SCHEDULER_BATCH_SIZE: int = int(os.getenv("SCHEDULER_BATCH_SIZE", "10"))
    SCHEDULER_MAX_CONCURRENCY: int = int(os.getenv("SCHEDULER_MAX_CONCURRENCY", "1"))
    SCREENSHOT_DIR: str = os.getenv("SCREENSHOT_DIR", "/tmp")

    # ==========================================================================
    # External Credentials
    # ==========================================================================
    GHL_API_KEY: Optional[str] = os.getenv("GHL_API_KEY") or None
    GHL_LOCATION_ID: Optional[str] = os.getenv("GHL_LOCATION_ID") or None
    GHL_API_URL: str = os.getenv("GHL_API_URL", "https://rest.gohighlevel.com/v1")

    BROWSERBASE_API_KEY: Optional[str] = os.getenv("BROWSERBASE_API_KEY") or None
    BROWSERBASE_PROJECT_ID: Optional[str] = os.getenv("BROWSERBASE_PROJECT_ID") or None
    BROWSERBASE_API_URL: str = os.getenv("BROWSERBASE_API_URL", "https://api.browserbase.com/v1")
    STAGEHAND_API_URL: str = os.getenv("STAGEHAND_API_URL", "https://api.stagehand.browserbase.com/v1")
    STAGEHAND_MODEL: str = os.getenv("STAGEHAND_MODEL", os.getenv("AI_MODEL", "google/gemini-2.0-flash"))
    MODEL_API_KEY: Optional[str] = os.getenv("MODEL_API_KEY") or None

    def get_log_config(self) -> dict:
        """Get structured logging configuration"""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "taskengine.middleware.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                },
                "structured": {
                    "format": "[%(asctime)s] [corr-id:%(correlation_id)s] [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "filters": ["correlation"],
                    "stream": "ext://sys.stdout"
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "structured",
                    "filters": ["correlation"],
                    "filename": os.path.join(self.LOG_DIR, "taskengine.log"),
                    "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                    "backupCount": 5
                }
            },
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": ["console", "file"]
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
