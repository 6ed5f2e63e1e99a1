"""Configuration settings for the bot."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
MEDIA_DIR = DATA_DIR / "media"
PRONUNCIATIONS_DIR = MEDIA_DIR / "pronunciations"

# Study settings
MAX_STARS = 5
TICK_INTERVAL_SECONDS = 30
TICK_MINUTES = 0.5  # minutes credited per tick
BACKUP_VERSION = "1.0"


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        MEDIA_DIR,
        PRONUNCIATIONS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    media_dir: Path = MEDIA_DIR
    pronunciations_dir: Path = PRONUNCIATIONS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///dictbot.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class BotSettings:
    """Bot configuration settings."""
    token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")


@dataclass
class LessonSettings:
    """Where lesson data is fetched from."""
    base_url: str = os.getenv("LESSON_BASE_URL", "http://localhost:8000/data")
    index_name: str = os.getenv("LESSON_INDEX", "units-index.json")
    default_unit: str = os.getenv("DEFAULT_UNIT", "unit5")
    fetch_timeout: float = float(os.getenv("LESSON_FETCH_TIMEOUT", "10"))


@dataclass
class AudioSettings:
    """Speech synthesis settings."""
    lang: str = os.getenv("TTS_LANG", "en")
    tld: str = os.getenv("TTS_TLD", "co.uk")  # British English accent
    slow: bool = os.getenv("TTS_SLOW", "false").lower() == "true"
    switch_grace_seconds: float = float(os.getenv("AUDIO_SWITCH_GRACE", "0.1"))


@dataclass
class StudySettings:
    """Study process settings."""
    max_stars: int = MAX_STARS
    tick_interval_seconds: int = int(os.getenv("TICK_INTERVAL_SECONDS", str(TICK_INTERVAL_SECONDS)))
    tick_minutes: float = float(os.getenv("TICK_MINUTES", str(TICK_MINUTES)))
    backup_version: str = BACKUP_VERSION


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_bot_settings() -> BotSettings:
    """Get bot settings."""
    return BotSettings()


def get_lesson_settings() -> LessonSettings:
    """Get lesson settings."""
    return LessonSettings()


def get_audio_settings() -> AudioSettings:
    """Get audio settings."""
    return AudioSettings()


def get_study_settings() -> StudySettings:
    """Get study settings."""
    return StudySettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    bot: BotSettings = field(default_factory=get_bot_settings)
    lessons: LessonSettings = field(default_factory=get_lesson_settings)
    audio: AudioSettings = field(default_factory=get_audio_settings)
    study: StudySettings = field(default_factory=get_study_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not self.bot.token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")

        if not self.lessons.base_url:
            raise ValueError("LESSON_BASE_URL is required")

        if self.lessons.fetch_timeout <= 0:
            raise ValueError("LESSON_FETCH_TIMEOUT must be positive")

        if self.study.tick_interval_seconds < 1:
            raise ValueError("TICK_INTERVAL_SECONDS must be positive")

        if self.study.tick_minutes < 0:
            raise ValueError("TICK_MINUTES cannot be negative")

        if self.audio.switch_grace_seconds < 0:
            raise ValueError("AUDIO_SWITCH_GRACE cannot be negative")


# Create global settings instance
settings = Settings()
settings.validate()
