from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Planner Sync"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/planner.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8081",
        "http://127.0.0.1:3000",
    ]
    LOG_LEVEL: str = "INFO"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 168
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT_SECONDS: int = 2
    DB_POOL_RECYCLE_SECONDS: int = 1800
    DB_CHECKOUT_WARN_SECONDS: float = 5.0
    SYNC_MAX_BATCH_RECORDS: int = 1000
    SYNC_PULL_OVERLAP_SECONDS: float = 5.0
    INSTANCE_RANGE_MAX_DAYS: int = 366
    RATE_LIMIT_AUTH_LOGIN_ATTEMPTS: int = 10
    RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS: int = 300
    RATE_LIMIT_AUTH_REGISTER_ATTEMPTS: int = 5
    RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS: int = 600
    SECURITY_HEADERS_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    @property
    def is_sqlite(self) -> bool:
        return (self.DATABASE_URL or "").strip().lower().startswith("sqlite")

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if len((self.SECRET_KEY or "").strip()) < 32:
            errors.append("SECRET_KEY must be at least 32 characters")
        if "*" in self.CORS_ORIGINS:
            errors.append("CORS_ORIGINS must not contain a wildcard")
        if self.DB_ECHO:
            errors.append("DB_ECHO must be disabled in production-like environments")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
if settings.is_sqlite:
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
