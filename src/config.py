"""Configuration module for the classroom backend.

This module provides centralized configuration management, including directory
paths, document store settings, API server settings, and domain defaults.
All configuration values can be overridden via environment variables.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory name
DATA_DIR_NAME = os.getenv("DATA_DIR_NAME", "data")
DATA_DIR = ROOT_DIR / DATA_DIR_NAME

# --- Document Store Configuration ---

DOCUMENT_DB_URL: str = os.getenv(
    "DOCUMENT_DB_URL", f"sqlite:///{DATA_DIR}/classroom.db"
)

# Seconds a SQLite connection waits for the write lock before failing
SQLITE_BUSY_TIMEOUT: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

# Maximum number of staged writes in one batch or transaction commit
MAX_BATCH_WRITES: int = int(os.getenv("MAX_BATCH_WRITES", "500"))

# Optimistic transaction retry budget and jittered exponential backoff (seconds)
TRANSACTION_MAX_ATTEMPTS: int = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5"))
TRANSACTION_BACKOFF_BASE: float = float(os.getenv("TRANSACTION_BACKOFF_BASE", "0.01"))
TRANSACTION_BACKOFF_MAX: float = float(os.getenv("TRANSACTION_BACKOFF_MAX", "0.5"))

# Upper bound between re-reads of a live subscription when no local commit
# wakes it up (picks up writes from other processes)
WATCH_POLL_INTERVAL: float = float(os.getenv("WATCH_POLL_INTERVAL", "1.0"))

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:4200,http://127.0.0.1:4200,http://localhost:3000,"
    "http://127.0.0.1:3000",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# --- Authentication Configuration ---

# Tokens are issued by the external identity service; we only verify them.
JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-in-production")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# --- Domain Configuration ---

# Roles a member can hold inside a class
ROLES = ("student", "instructor", "ta")

# Roles counted in counts.instructors and allowed to manage a class
INSTRUCTOR_ROLES = ("instructor", "ta")

QUESTION_KINDS = ("mcq-single", "mcq-multi", "text")

# Sentinel stored in an attempt's answers for an unanswered slot
UNANSWERED = -1

# Course contentVersion used when the course document has none
DEFAULT_CONTENT_VERSION: int = 1

QUICK_QUIZ_NUM_QUESTIONS: int = int(os.getenv("QUICK_QUIZ_NUM_QUESTIONS", "5"))
QUICK_QUIZ_POINTS: int = int(os.getenv("QUICK_QUIZ_POINTS", "100"))

