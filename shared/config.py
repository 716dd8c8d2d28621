"""
Application configuration settings
"""
import logging
from typing import List

import structlog
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env")

    # API Configuration
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Investor Records Platform"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Database
    DATABASE_URL: str = "sqlite:///./investor_records.db"

    # Security
    SECRET_KEY: str = "your-secret-key-here"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Change reasons
    CHANGE_REASON_MIN_LENGTH: int = 10
    CHANGE_REASON_MAX_LENGTH: int = 500
    BULK_REJECTION_REASON_MIN_LENGTH: int = 20
    SUSPENSION_REASON_MIN_LENGTH: int = 10

    # KYC
    KYC_VALIDITY_DAYS: int = 365
    CONFLICT_RETRY_ATTEMPTS: int = 3

    # Bulk operations
    BULK_MAX_WORKERS: int = 1
    BULK_MAX_IDS: int = 500

    # Outbound messaging
    DISPATCH_RETRY_ATTEMPTS: int = 3
    APP_URL: str = "http://localhost:3000"
    FROM_EMAIL: str = "no-reply@localhost"

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()


def configure_logging(level: str = None) -> None:
    """Apply the configured log level to structlog."""
    level_name = (level or settings.LOG_LEVEL).upper()
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
    )
