"""
Configuration Management for the image updater
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import List, Mapping, Optional

from croniter import croniter

from updates.types import DEFAULT_TEMP_SUFFIX

DEFAULT_CRON = '* * * * *'


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers so our configuration wins
    # and file descriptors don't leak
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = getattr(logging, (level or AppConfig.LOG_LEVEL).upper(), logging.INFO)
    root_logger.setLevel(log_level)

    # Console handler for stdout
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler with rotation for application logs
    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'image-updater.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # docker-py and urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


class AppConfig:
    """Main application configuration"""

    # Scheduling
    CRON = os.getenv('CRON', DEFAULT_CRON)
    RUN_ON_STARTUP = _env_bool(os.getenv('RUN_ON_STARTUP'))

    # Engine call limits (seconds)
    ENGINE_TIMEOUT = float(os.getenv('ENGINE_TIMEOUT', 60))
    PULL_TIMEOUT = float(os.getenv('PULL_TIMEOUT', 1800))
    STOP_TIMEOUT = int(os.getenv('STOP_TIMEOUT', 10))

    # Replacement
    TEMP_SUFFIX = os.getenv('TEMP_SUFFIX', DEFAULT_TEMP_SUFFIX)
    IGNORE_CONTAINERS = _env_list(os.getenv('IGNORE_CONTAINERS'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def reload(cls, environ: Optional[Mapping[str, str]] = None):
        """Re-read configuration from environ (defaults to os.environ)"""
        env = os.environ if environ is None else environ
        cls.CRON = env.get('CRON', DEFAULT_CRON)
        cls.RUN_ON_STARTUP = _env_bool(env.get('RUN_ON_STARTUP'))
        cls.ENGINE_TIMEOUT = float(env.get('ENGINE_TIMEOUT', 60))
        cls.PULL_TIMEOUT = float(env.get('PULL_TIMEOUT', 1800))
        cls.STOP_TIMEOUT = int(env.get('STOP_TIMEOUT', 10))
        cls.TEMP_SUFFIX = env.get('TEMP_SUFFIX', DEFAULT_TEMP_SUFFIX)
        cls.IGNORE_CONTAINERS = _env_list(env.get('IGNORE_CONTAINERS'))
        cls.LOG_LEVEL = env.get('LOG_LEVEL', 'INFO')
        return cls

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if not croniter.is_valid(cls.CRON):
            raise ValueError(f"Invalid cron expression: {cls.CRON!r}")

        if cls.ENGINE_TIMEOUT <= 0:
            raise ValueError(f"ENGINE_TIMEOUT must be positive: {cls.ENGINE_TIMEOUT}")

        if cls.PULL_TIMEOUT <= 0:
            raise ValueError(f"PULL_TIMEOUT must be positive: {cls.PULL_TIMEOUT}")

        if cls.STOP_TIMEOUT < 0:
            raise ValueError(f"STOP_TIMEOUT cannot be negative: {cls.STOP_TIMEOUT}")

        if cls.STOP_TIMEOUT >= cls.ENGINE_TIMEOUT:
            raise ValueError(
                f"STOP_TIMEOUT ({cls.STOP_TIMEOUT}s) must be shorter than ENGINE_TIMEOUT ({cls.ENGINE_TIMEOUT}s)"
            )

        if not cls.TEMP_SUFFIX:
            raise ValueError("TEMP_SUFFIX cannot be empty")

        return True
