from typing import Optional
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Basic configuration ---
    APP_NAME: str = "Clinic Data Service"
    APP_DESCRIPTION: str = "Generic repository and unit-of-work data-access layer with a sample clinic API"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"  # development, production, testing
    DEBUG: bool = True

    # --- Database (SQLModel) ---
    DB_SCHEME: str = "mysql"  # mysql, sqlite
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "root"
    DB_NAME: str = "clinic_db"  # file path when DB_SCHEME=sqlite
    DB_ECHO: bool = False

    @property
    def DATABASE_URL(self) -> str:
        # Async driver URL
        if self.DB_SCHEME == "sqlite":
            return f"sqlite+aiosqlite:///{self.DB_NAME}"
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"mysql+aiomysql://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def SYNC_DATABASE_URL(self) -> str:
        # Blocking driver URL, same database
        if self.DB_SCHEME == "sqlite":
            return f"sqlite:///{self.DB_NAME}"
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"mysql+pymysql://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Unit of work ---
    # Sync repositories save on every mutation; async ones stage until uow.commit()
    UOW_AUTO_COMMIT: bool = True
    ASYNC_UOW_AUTO_COMMIT: bool = False
    DEFAULT_PAGE_SIZE: int = 20

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # --- API route prefixes (optional, overridable in private projects) ---
    API_V1_CLINIC_PREFIX: str = "/api/v1/clinic"

    # --- Pydantic ---
    # Load env from project root .env; priority: env vars > .env > defaults
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )


# Singleton settings instance
settings = Settings()
