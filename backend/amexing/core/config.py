# backend/amexing/core/config.py
from pydantic_settings import BaseSettings
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import secrets
from typing import List


class Settings(BaseSettings):
    # --- Security / JWT ---
    SECRET_KEY: str = secrets.token_urlsafe(32)  # set through ENV in production
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8
    BCRYPT_ROUNDS: int = 12

    # --- Login lockout / password policy ---
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCKOUT_DURATION_MINUTES: int = 30
    PASSWORD_MIN_LENGTH: int = 12
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_NUMBERS: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = False

    # --- Database ---
    DATABASE_URL: str = "sqlite:///./amexing.db"

    # --- CORS ---
    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    # --- Pricing ---
    DEFAULT_CURRENCY: str = "MXN"
    PAYMENT_SURCHARGE_PERCENTAGE: float = 21.09
    IVA_RATE: float = 0.16
    QUOTE_VALIDITY_DAYS: int = 30

    # --- RBAC ---
    BUSINESS_HOURS_START: int = 9
    BUSINESS_HOURS_END: int = 18  # exclusive
    TIMEZONE: str = "America/Mexico_City"  # IANA name, used for business hours

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    AUDIT_LOG_ENABLED: bool = True

    # --- Seeds ---
    SUPERADMIN_EMAIL: str = "superadmin@amexing.com"
    SUPERADMIN_USERNAME: str = "superadmin"
    SUPERADMIN_PASSWORD: str = "ChangeMe-Amexing2025"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

# SQLite needs check_same_thread disabled for the threadpool FastAPI uses
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# SQLAlchemy Engine & Session
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

