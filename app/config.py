from functools import lru_cache
from typing import List, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Landing Experiments"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./experiments.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # A/B testing engine
    AB_DEFAULT_CONFIDENCE_LEVEL: float = 95.0
    AB_DEFAULT_MIN_SAMPLE_SIZE: int = 100
    AB_MIN_VISITORS_FOR_SIGNIFICANCE: int = 30
    AB_RETENTION_DAYS: int = 90
    AB_CLEANUP_BATCH_SIZE: int = 1000
    # Reject conversions whose variant differs from the visitor's allocation
    AB_STRICT_CONVERSIONS: bool = True

    # CORS
    CORS_ORIGINS: Union[List[str], str] = []

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Handle both comma-separated and JSON array strings
            if v.strip().startswith("["):
                import json

                return json.loads(v)
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("AB_DEFAULT_CONFIDENCE_LEVEL")
    @classmethod
    def check_confidence_level(cls, v):
        if not 0 < v < 100:
            raise ValueError("AB_DEFAULT_CONFIDENCE_LEVEL must be between 0 and 100")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
