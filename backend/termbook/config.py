"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    LOG_LEVEL: str
    ALLOW_DEV_CORS: bool
    ACTIVITY_MAX_STUDY_MINUTES: int
    STUDY_MAX_SESSIONS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'termbook.db'}")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        default_cors = "true" if self.ENV == "dev" else "false"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", default_cors).lower() == "true"
        self.ACTIVITY_MAX_STUDY_MINUTES = int(os.getenv("ACTIVITY_MAX_STUDY_MINUTES", str(24 * 60)))  # one day
        self.STUDY_MAX_SESSIONS = int(os.getenv("STUDY_MAX_SESSIONS", "200"))
        self._validate()

    def _validate(self):
        if not self.DATABASE_URL.strip():
            raise RuntimeError("DATABASE_URL must not be empty")
        if self.ACTIVITY_MAX_STUDY_MINUTES <= 0:
            raise RuntimeError("ACTIVITY_MAX_STUDY_MINUTES must be a positive number of minutes")
        if self.STUDY_MAX_SESSIONS <= 0:
            raise RuntimeError("STUDY_MAX_SESSIONS must be positive")


settings = Settings()
