"""Configuration management for the Call Analytics server."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration."""

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Persistence
    # For development: SQLite (file-based). "sqlite://" keeps everything in memory.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./call_analytics.db")
    # Celery broker/backend for the daily export job.
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Reporting day boundaries (talk time, idle session dates, daily export).
    REPORT_TIMEZONE: str = os.getenv("REPORT_TIMEZONE", "Asia/Kolkata")

    # Presence engine
    # Idle gaps at or below this many seconds are not recorded as idle sessions.
    IDLE_THRESHOLD_SECONDS: int = int(os.getenv("IDLE_THRESHOLD_SECONDS", "30"))
    PRESENCE_TTL_SECONDS: int = int(os.getenv("PRESENCE_TTL_SECONDS", "86400"))

    # Reminders
    REMINDER_TICK_SECONDS: float = float(os.getenv("REMINDER_TICK_SECONDS", "60"))
    DEFAULT_REMINDER_INTERVAL_MINUTES: int = int(os.getenv("DEFAULT_REMINDER_INTERVAL_MINUTES", "5"))

    # Delivery queue (idle sessions + call history towards the analytics sink)
    QUEUE_BATCH_SIZE: int = int(os.getenv("QUEUE_BATCH_SIZE", "5"))
    QUEUE_BACKOFF_SECONDS: float = float(os.getenv("QUEUE_BACKOFF_SECONDS", "5"))
    QUEUE_POLL_SECONDS: float = float(os.getenv("QUEUE_POLL_SECONDS", "2"))

    # External analytics table (NocoDB-style REST API). Disabled when the URL is empty.
    ANALYTICS_SINK_URL: str = os.getenv("ANALYTICS_SINK_URL", "")
    ANALYTICS_SINK_TOKEN: str = os.getenv("ANALYTICS_SINK_TOKEN", "")
    ANALYTICS_SINK_TIMEOUT_SECONDS: float = float(os.getenv("ANALYTICS_SINK_TIMEOUT_SECONDS", "10"))
    ANALYTICS_TABLE_CALLS: str = os.getenv("ANALYTICS_TABLE_CALLS", "call_records")
    ANALYTICS_TABLE_IDLE_SESSIONS: str = os.getenv("ANALYTICS_TABLE_IDLE_SESSIONS", "idle_sessions")
    ANALYTICS_TABLE_DAILY_STATS: str = os.getenv("ANALYTICS_TABLE_DAILY_STATS", "daily_stats")

    # Daily stats export (Celery beat), in REPORT_TIMEZONE
    DAILY_EXPORT_HOUR: int = int(os.getenv("DAILY_EXPORT_HOUR", "23"))
    DAILY_EXPORT_MINUTE: int = int(os.getenv("DAILY_EXPORT_MINUTE", "55"))

    @classmethod
    def has_analytics_sink(cls) -> bool:
        """Check if the external analytics table API is configured."""
        return bool(cls.ANALYTICS_SINK_URL)

    @classmethod
    def cors_origins(cls) -> list[str]:
        return [origin.strip() for origin in cls.CORS_ORIGINS.split(",") if origin.strip()]


# Create a global config instance
config = Config()
