"""
Configuration management for the listing pipeline.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # OpenAI
    OPENAI_EXTRACTION_MODEL: str = os.getenv('OPENAI_EXTRACTION_MODEL', 'gpt-4o-mini')
    OPENAI_EXTRACTION_TEMPERATURE: float = float(os.getenv('OPENAI_EXTRACTION_TEMPERATURE', '0.1'))
    OPENAI_EMBEDDING_MODEL: str = os.getenv('OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small')
    OPENAI_EMBEDDING_DIMENSIONS: int = int(os.getenv('OPENAI_EMBEDDING_DIMENSIONS', '1536'))

    # Postgres
    DATABASE_URL: str = os.getenv('DATABASE_URL', '')

    # Confidence routing
    CONFIDENCE_AUTO_THRESHOLD: float = float(os.getenv('CONFIDENCE_AUTO_THRESHOLD', '0.8'))
    CONFIDENCE_REVIEW_THRESHOLD: float = float(os.getenv('CONFIDENCE_REVIEW_THRESHOLD', '0.5'))
    LISTING_EXPIRY_DAYS: int = int(os.getenv('LISTING_EXPIRY_DAYS', '30'))

    # Processing / catchup
    PROCESSING_WORKERS: int = int(os.getenv('PROCESSING_WORKERS', '4'))
    PROCESSING_QUEUE_SIZE: int = int(os.getenv('PROCESSING_QUEUE_SIZE', '500'))
    CATCHUP_BATCH_SIZE: int = int(os.getenv('CATCHUP_BATCH_SIZE', '50'))
    CATCHUP_PROGRESS_EVERY: int = int(os.getenv('CATCHUP_PROGRESS_EVERY', '10'))
    AUTO_CATCHUP_INTERVAL_SECONDS: float = float(os.getenv('AUTO_CATCHUP_INTERVAL_SECONDS', '300'))
    PROCESSING_ERROR_MAX_LENGTH: int = int(os.getenv('PROCESSING_ERROR_MAX_LENGTH', '2000'))

    # Currency conversion
    EXCHANGE_RATE_BASE_URL: str = os.getenv(
        'EXCHANGE_RATE_BASE_URL', 'https://api.frankfurter.dev/v1'
    )

    # Notification mail
    SMTP_HOST: str = os.getenv('SMTP_HOST', '')
    SMTP_PORT: int = int(os.getenv('SMTP_PORT', '25'))
    MAIL_FROM_ADDRESS: str = os.getenv('MAIL_FROM_ADDRESS', 'noreply@tradeintel.com')

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')


# Singleton config instance
config = Config()
