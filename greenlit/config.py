"""Greenlit configuration, loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "GREENLIT_", "env_file": ".env"}

    # Enrichment (Anthropic)
    anthropic_api_key: str = ""
    enrichment_model: str = "claude-sonnet-4-5"
    enrichment_timeout: float = 60.0
    enrichment_concurrency: int = 4

    # App Store Review Guidelines
    guidelines_url: str = "https://developer.apple.com/app-store/review/guidelines/"
    guidelines_ttl_hours: float = 24.0
    guidelines_timeout: float = 10.0

    # Scanner
    scanner_path: str = "greenlight"
    scanner_timeout: float = 300.0

    # Uploads
    upload_dir: str = "uploads"
    max_upload_bytes: int = 500 * 1024 * 1024
    download_timeout: float = 120.0

    # Database
    database_path: str = "greenlit.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 3456


settings = Settings()
