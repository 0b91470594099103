import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Progress engine configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///progress_engine.db')
    
    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    # Empty disables the log file
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    
    # Redis is optional; rank recalculation runs unlocked without it
    REDIS_URL = os.getenv('REDIS_URL', '')
    
    # Request path budgets (seconds)
    STORAGE_TIMEOUT_SECONDS = float(os.getenv('STORAGE_TIMEOUT_SECONDS', '2.0'))
    PROCESSING_TIMEOUT_SECONDS = float(os.getenv('PROCESSING_TIMEOUT_SECONDS', '5.0'))
    
    # Row-level conflict retries (single row operation, never the whole event)
    CONFLICT_MAX_RETRIES = int(os.getenv('CONFLICT_MAX_RETRIES', '3'))
    
    # An unprocessed event log entry claimed longer ago than this may be re-claimed
    EVENT_CLAIM_TIMEOUT_SECONDS = int(os.getenv('EVENT_CLAIM_TIMEOUT_SECONDS', '30'))
    
    # Leaderboard settings
    RANK_RECALC_LOCK_SECONDS = int(os.getenv('RANK_RECALC_LOCK_SECONDS', '30'))
    LEADERBOARD_CACHE_TTL = int(os.getenv('LEADERBOARD_CACHE_TTL', '60'))
    
    @classmethod
    def get_async_database_url(cls) -> str:
        """Get the database URL with an async driver"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        elif database_url.startswith('postgresql://'):
            database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://')
        return database_url
    
    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.STORAGE_TIMEOUT_SECONDS <= 0 or cls.PROCESSING_TIMEOUT_SECONDS <= 0:
            raise ValueError("Timeouts must be positive")
        if cls.CONFLICT_MAX_RETRIES < 1:
            raise ValueError("CONFLICT_MAX_RETRIES must be at least 1")
        if cls.EVENT_CLAIM_TIMEOUT_SECONDS <= 0:
            raise ValueError("EVENT_CLAIM_TIMEOUT_SECONDS must be positive")
