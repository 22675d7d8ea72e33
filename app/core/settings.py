"""Configuration and environment settings for the AI categorization engine."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the AI categorization engine."""

    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    groq_temperature: float = 0.2
    groq_max_completion_tokens: int = 4096
    groq_top_p: float = 0.95
    groq_stream: bool = True
    groq_stop: list[str] | None = None
    classifier_backend: str = "groq"
    classifier_timeout_seconds: float = 90.0
    batch_size: int = 40
    max_affected_preview: int = 50
    default_new_category_icon: str = "folder"
    default_new_category_color: str = "#6B7280"
    default_user_id: str = "default"
    database_url: str = "sqlite:///categorization.db"
    log_file: str = "logs/ai_categorization.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
