# RFPMail/config/settings.py

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')

class Settings(BaseSettings):
    imap_host: str = Field(default="imap.gmail.com", env="IMAP_HOST")
    imap_port: int = Field(default=993, env="IMAP_PORT")
    imap_user: Optional[str] = Field(default=None, env="IMAP_USER")
    imap_password: Optional[str] = Field(default=None, env="IMAP_PASSWORD")
    imap_mailbox: str = Field(default="INBOX", env="IMAP_MAILBOX")
    imap_use_ssl: bool = Field(default=True, env="IMAP_USE_SSL")
    imap_timeout_seconds: float = Field(default=30.0, env="IMAP_TIMEOUT_SECONDS")
    imap_max_messages_per_poll: int = Field(
        default=10, env="IMAP_MAX_MESSAGES_PER_POLL"
    )

    email_poll_enabled: bool = Field(default=True, env="EMAIL_POLL_ENABLED")
    email_poll_interval_seconds: float = Field(
        default=300.0, env="EMAIL_POLL_INTERVAL_SECONDS"
    )
    email_poll_initial_delay_seconds: float = Field(
        default=2.0, env="EMAIL_POLL_INITIAL_DELAY_SECONDS"
    )
    email_poll_retry_attempts: int = Field(default=3, env="EMAIL_POLL_RETRY_ATTEMPTS")
    email_poll_retry_initial_delay_seconds: float = Field(
        default=5.0, env="EMAIL_POLL_RETRY_INITIAL_DELAY_SECONDS"
    )
    ingestion_max_workers: int = Field(default=1, env="INGESTION_MAX_WORKERS")

    lmstudio_base_url: str = Field(
        default="http://127.0.0.1:1234", env="LMSTUDIO_BASE_URL"
    )
    lmstudio_chat_model: str = Field(
        default="qwen2.5-7b-instruct", env="LMSTUDIO_CHAT_MODEL"
    )
    lmstudio_timeout: int = Field(default=120, env="LMSTUDIO_TIMEOUT")
    lmstudio_api_key: Optional[str] = Field(default=None, env="LMSTUDIO_API_KEY")
    extraction_temperature: float = Field(default=0.0, env="EXTRACTION_TEMPERATURE")

    ocr_language: str = Field(default="eng", env="OCR_LANGUAGE")

    database_path: str = Field(
        default=os.path.join(PROJECT_ROOT, "rfpmail_dev.sqlite"), env="DATABASE_PATH"
    )
    pg_host: Optional[str] = Field(default=None, env="PG_HOST")
    pg_port: int = Field(default=5432, env="PG_PORT")
    pg_database: Optional[str] = Field(default=None, env="PG_DATABASE")
    pg_user: Optional[str] = Field(default=None, env="PG_USER")
    pg_password: Optional[str] = Field(default=None, env="PG_PASSWORD")

    log_dir: str = Field(default=os.path.join(PROJECT_ROOT, "logs"), env="LOG_DIR")

    class Config:
        env_file = ENV_FILE_PATH
        env_file_encoding = 'utf-8'
        extra = "ignore"

    @field_validator("imap_user", "imap_password", "pg_host", "lmstudio_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("imap_max_messages_per_poll", "email_poll_retry_attempts", "ingestion_max_workers")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Value must be a positive integer")
        return value

    @property
    def imap_configured(self) -> bool:
        return bool(self.imap_host and self.imap_user and self.imap_password)

try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
