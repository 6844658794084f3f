import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Ladder engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///ladder.db')

    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'False').lower() == 'true'

    # Event delivery settings
    REDIS_URL = os.getenv('REDIS_URL')
    EVENT_CHANNEL_PREFIX = os.getenv('EVENT_CHANNEL_PREFIX', 'ladder-events')

    # Concurrency settings
    OPTIMISTIC_RETRY_ATTEMPTS = int(os.getenv('OPTIMISTIC_RETRY_ATTEMPTS', 3))

    # Challenge state retention
    PENDING_CHALLENGE_CAP = 30
    HISTORY_RETENTION = 50
    HISTORY_LIST_LIMIT = 100

    @classmethod
    def get_async_database_url(cls) -> str:
        """Get the database URL with an async driver"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.OPTIMISTIC_RETRY_ATTEMPTS < 1:
            raise ValueError("OPTIMISTIC_RETRY_ATTEMPTS must be at least 1")
        if cls.HISTORY_RETENTION > cls.HISTORY_LIST_LIMIT:
            raise ValueError("HISTORY_RETENTION cannot exceed HISTORY_LIST_LIMIT")
