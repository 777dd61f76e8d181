# estate_direct/config.py
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import EmailStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///estate_direct/estate_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str | None = None
    jwt_audience: str | None = None
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "plain"

    # --- Email ---
    email_backend: str = "local"
    sendgrid_api_key: str | None = None
    email_from_address: EmailStr | None = None
    email_from_name: str = "Real Estate Direct"
    email_output_dir: str = "uploads/emails"

    # --- Payments ---
    stripe_api_key: str | None = None
    stripe_publishable_key: str | None = None
    stripe_webhook_secret: str | None = None
    currency: str = "cad"
    platform_fee_rate: Decimal = Decimal("0.01")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
