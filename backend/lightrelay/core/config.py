from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path

# Define the backend root directory (where this config file's parent/parent/parent is)
BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent

class Settings(BaseSettings):
    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "LightRelay"
    PROJECT_VERSION: str = "1.0.0"

    # Buffered command store (SQL document table)
    DATABASE_URL: str = f"sqlite:///{BACKEND_ROOT / 'lightrelay.db'}"
    COMMANDS_TABLE: str = "esp32_commands"

    # Low-latency command store (realtime database REST endpoint)
    REALTIME_DB_URL: Optional[str] = None  # e.g. https://<project>.firebaseio.com
    REALTIME_DB_AUTH: Optional[str] = None  # Set via environment variable for security
    REALTIME_COMMANDS_PATH: str = "esp32_commands"

    # Queue behaviour
    STORE_TIMEOUT_SECONDS: float = 5.0
    DEFAULT_DELIVERY_PATH: str = "buffered"  # "buffered" or "low_latency"

    # Janitor
    JANITOR_ENABLED: bool = True
    JANITOR_INTERVAL_SECONDS: int = 300
    COMMAND_RETENTION_HOURS: int = 24
    REALTIME_MAX_AGE_SECONDS: int = 60

    # Auth
    JWT_SECRET_KEY: str = "change-me"  # MUST be overridden in production
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Direct device control
    DEVICE_HTTP_PORT: int = 80
    DEVICE_TIMEOUT_SECONDS: float = 5.0

    # CORS Configuration
    CORS_ORIGINS: list[str] = ["*"]  # Allow all origins by default; tighten for production
    CORS_ALLOW_CREDENTIALS: bool = False

    LOG_LEVEL: str = "INFO"

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
