"""Application configuration, read once from the environment."""
import os
from pathlib import Path

from dotenv import load_dotenv


_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)


class Config:

    # MongoDB
    MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
    MONGODB_DB = os.getenv("MONGODB_DB", "chatcore")

    # Realtime: without REDIS_URL rooms stay process-local
    REDIS_URL = os.getenv("REDIS_URL")
    REDIS_CHANNEL = os.getenv("REDIS_CHANNEL", "chatcore:realtime")

    # Bearer tokens are issued by the identity service, only decoded here
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Message history paging
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "200"))


config = Config()
