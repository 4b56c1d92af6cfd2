"""
Application settings and configuration.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration using environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./noos.db"

    # API
    API_PREFIX: str = "/api"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

    # Algorithm pool (CPU/DB heavy, kept small on purpose)
    ALGO_POOL_WORKERS: int = 2
    ALGO_QUEUE_CAPACITY: int = 10

    # File pool (exports)
    FILE_POOL_WORKERS: int = 3
    FILE_QUEUE_CAPACITY: int = 15
    EXPORT_DIR: str = "./exports"

    # Algorithm parameter defaults
    DEFAULT_PARAMETER_SET: str = "default"
    DEFAULT_LIQUIDATION_THRESHOLD: float = 25.0  # percent of MRP
    DEFAULT_BESTSELLER_MULTIPLIER: float = 1.2
    DEFAULT_MIN_VOLUME_THRESHOLD: float = 25.0
    DEFAULT_CONSISTENCY_THRESHOLD: float = 0.75
    DEFAULT_CORE_DURATION_MONTHS: int = 6
    DEFAULT_BESTSELLER_DURATION_DAYS: int = 90

    # Query limits and retention
    RESULTS_LATEST_LIMIT: int = 1000
    TASKS_RECENT_DEFAULT: int = 50
    TASKS_RECENT_MAX: int = 200
    TASK_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
