"""Application configuration settings."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Exam Attempt Engine"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/exam_engine.db"

    # Paths
    base_dir: Path = Path(__file__).parent.parent
    data_dir: Path = base_dir / "data"
    catalog_dir: Path = data_dir / "catalog"

    # Bearer tokens are issued by the identity provider, we only verify them
    secret_key: str = "dev-secret-change-me"
    algorithm: str = "HS256"

    # Scoring
    clamp_negative_total: bool = True  # final attempt score never below zero

    # Background work
    run_sweeper: bool = True
    sweep_interval_seconds: float = 30.0
    ranking_timeout_seconds: float = 5.0

    # Terminal write retries on transient database errors
    finalize_max_retries: int = 3
    finalize_retry_delay: float = 0.1  # seconds, multiplied by attempt number

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
