from typing import Optional
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Basic configuration ---
    APP_NAME: str = "Member Directory"
    APP_DESCRIPTION: str = "Members and teams over a declarative repository layer with paging and auditing"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"  # development, production, testing
    DEBUG: bool = True

    # --- Database (SQLModel) ---
    DB_DRIVER: str = "mysql+aiomysql"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "root"
    DB_NAME: str = "member_db"
    DATABASE_URL_OVERRIDE: Optional[str] = None  # e.g. sqlite+aiosqlite:///./member.db
    DB_ECHO: bool = False
    DB_AUTO_CREATE: bool = False  # create tables on startup instead of running alembic

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        # Build async connection URL
        safe_password = quote_plus(self.DB_PASSWORD)
        return f"{self.DB_DRIVER}://{self.DB_USER}:{safe_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Paging ---
    DEFAULT_PAGE_SIZE: int = 3
    MAX_PAGE_SIZE: int = 2000

    # --- Auditing ---
    DEFAULT_ACTOR: str = "system"  # createdBy/updatedBy when the request carries no actor
    ACTOR_HEADER: str = "X-Actor"

    # --- Demo data ---
    SEED_DEMO_MEMBERS: int = 0  # >0 seeds "user0".."userN-1" on startup

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    LOG_DATA_ACCESS: bool = True  # separate data-access log (finders, bulk updates, transactions)

    # --- API route prefixes (optional, overridable in private projects) ---
    API_MEMBERS_PREFIX: str = ""

    # --- Gunicorn process name (optional) ---
    GUNICORN_PROC_NAME: Optional[str] = None  # Fallback to APP_NAME when empty

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
