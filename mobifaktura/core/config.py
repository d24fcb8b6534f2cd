from pydantic_settings import BaseSettings
from pydantic import model_validator
from urllib.parse import quote_plus
import os

PLACEHOLDER_JWT_SECRET = "change-me"


class Settings(BaseSettings):
    APP_ENV: str = "local"
    LOCAL_URL: str = "http://127.0.0.1:8000"

    # Database URL - can be provided directly or constructed from components
    DATABASE_URL: str | None = None

    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = ""

    # Auth / sessions
    JWT_SECRET: str = PLACEHOLDER_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "mobifaktura_session"
    COOKIE_DOMAIN: str | None = None
    SESSION_DURATION_DAYS: int = 60
    MAX_LOGIN_ATTEMPTS: int = 3
    LOGIN_LOCKOUT_SECONDS: int = 30

    # S3 compatible object storage (MinIO)
    S3_ENDPOINT: str = "http://localhost:9000"
    S3_ACCESS_KEY: str = "minioadmin"
    S3_SECRET_KEY: str = "minioadmin"
    S3_BUCKET: str = "invoices"
    S3_REGION: str = "us-east-1"

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Background jobs
    ENABLE_CRON: bool = True
    CLEANUP_HOUR: int = 1
    REVIEW_STALE_SECONDS: int = 10

    class Config:
        env_file = ".env" if os.getenv("APP_ENV", "local") == "local" else ".env.prod"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @model_validator(mode='after')
    def construct_database_url(self):
        """Construct DATABASE_URL from components if not provided directly."""
        if not self.DATABASE_URL:
            if not self.DB_NAME:
                raise ValueError("Either DATABASE_URL or DB_NAME must be provided")

            password_part = f":{quote_plus(self.DB_PASSWORD)}" if self.DB_PASSWORD else ""
            self.DATABASE_URL = f"postgresql://{self.DB_USER}{password_part}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

        assert self.DATABASE_URL is not None, "DATABASE_URL must be set"
        return self

    @model_validator(mode='after')
    def require_jwt_secret(self):
        """Refuse the placeholder signing secret anywhere but a local checkout."""
        if self.APP_ENV.lower() not in ("local", "test") and self.JWT_SECRET == PLACEHOLDER_JWT_SECRET:
            raise ValueError(f"JWT_SECRET must be set when APP_ENV is {self.APP_ENV}")
        return self

    @property
    def database_url(self) -> str:
        """Get DATABASE_URL as a guaranteed string."""
        assert self.DATABASE_URL is not None, "DATABASE_URL must be set"
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("prod", "production")


settings = Settings()
