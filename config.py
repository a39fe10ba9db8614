import os

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    """Application settings, read from the environment (.env supported)"""

    # Server
    APP_HOST = os.getenv("APP_HOST", "127.0.0.1")
    APP_PORT = int(os.getenv("APP_PORT", 5000))
    DEBUG = os.getenv("DEBUG", "False").lower() == "true"
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")

    # Storage
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, ".cache", "geoguesser.sqlite"))
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(BASE_DIR, ".cache", "uploads"))
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 25 * 1024 * 1024))  # 25MB

    # Game settings
    TOTAL_ROUNDS = int(os.getenv("TOTAL_ROUNDS", 5))
    CORRECT_RADIUS_PX = float(os.getenv("CORRECT_RADIUS_PX", 40))
    LEADERBOARD_LIMIT = int(os.getenv("LEADERBOARD_LIMIT", 10))

    # Logging; empty disables the file handler
    LOG_DIR = os.getenv("LOG_DIR", "logs")

    @classmethod
    def as_dict(cls) -> dict:
        return {k: v for k, v in vars(cls).items() if k.isupper()}

    @classmethod
    def validate(cls, settings: dict = None):
        """Validate game settings"""
        settings = settings or cls.as_dict()
        if settings["TOTAL_ROUNDS"] <= 0:
            raise ValueError("TOTAL_ROUNDS must be a positive integer")
        if settings["LEADERBOARD_LIMIT"] <= 0:
            raise ValueError("LEADERBOARD_LIMIT must be a positive integer")
        if settings["CORRECT_RADIUS_PX"] < 0:
            raise ValueError("CORRECT_RADIUS_PX must not be negative")
