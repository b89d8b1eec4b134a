"""Application configuration loaded from environment variables."""

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the HomeFix backend."""

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./homefix.db")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    MAX_JOB_PHOTOS: int = int(os.getenv("MAX_JOB_PHOTOS", "5"))
    MAX_SHEET_PHOTOS: int = int(os.getenv("MAX_SHEET_PHOTOS", "10"))
    MATCH_AVAILABILITY_DAYS: int = int(os.getenv("MATCH_AVAILABILITY_DAYS", "3"))
    CURRENCY: str = os.getenv("CURRENCY", "gbp")


settings = Settings()
