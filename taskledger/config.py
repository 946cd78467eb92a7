# taskledger/config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(val: str | None, default=False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

class Config:
    # --- Core ---
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    APP_VERSION = os.getenv("APP_VERSION")

    # DB
    SQLALCHEMY_DATABASE_URI = (
        os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
        or "sqlite:///taskledger.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Pagination ---
    DEFAULT_PER_PAGE = int(os.getenv("DEFAULT_PER_PAGE", "25"))
    MAX_PER_PAGE = int(os.getenv("MAX_PER_PAGE", "1000"))

    # --- Money ---
    CURRENCY = os.getenv("CURRENCY", "SAR")
    # fraction of (amount - expense_amount) paid to the assignee on completion
    COMMISSION_RATE = os.getenv("COMMISSION_RATE", "0.10")

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FILENAME = os.getenv("LOG_FILENAME", "taskledger.log")
    LOG_JSON = _as_bool(os.getenv("LOG_JSON", "0"))
    LOG_TO_FILE = _as_bool(os.getenv("LOG_TO_FILE", "1"))

    # --- Sentry ---
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_TO_FILE = False
    LOG_LEVEL = "DEBUG"
    SENTRY_DSN = ""
