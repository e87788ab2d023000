"""
Application Configuration

Centralized configuration management for the risk engine.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings with secure defaults."""

    # Application
    APP_NAME: str = "SeniorShield Risk Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS - Strict whitelist (no wildcards in production)
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5000",
        "http://127.0.0.1:5000",
    ]

    # Flagging thresholds
    # Empirical constants carried over unchanged; alerts and tests rely on them
    FLAG_THRESHOLD: int = 70             # score > this => flagged
    HIGH_SEVERITY_THRESHOLD: int = 90    # score >= this => "high" alert

    # Retrospective reanalysis
    RETROSPECTIVE_MIN_AGE_DAYS: int = 30   # younger transactions are left alone
    RETROSPECTIVE_FLAG_FLOOR: int = 50     # previously "clean" below this
    RETROSPECTIVE_SCORE_DELTA: int = 30    # material change in score

    # Situation reminders
    REMINDER_INTERVAL_SECONDS: int = 3600

    # Demo data
    SEED_DEMO_DATA: bool = True
    DEMO_USER_COUNT: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = True


# Singleton settings instance
settings = Settings()
