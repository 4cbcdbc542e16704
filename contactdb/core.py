"""Application configuration and logging setup.

This module defines the settings loaded from environment variables and
provides helpers for accessing cached settings and configuring the
package logger.
"""

import logging
import sys
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration loaded from ``CONTACTDB_``-prefixed environment variables.

    Attributes:
        DATA_DIR: Directory holding one sub-directory per database.
        SALT_LENGTH: Number of random bytes in a freshly generated salt.
        HASH_ALGORITHM: Digest used by the PBKDF2 key derivation.
        HASH_ITERATIONS: PBKDF2 iteration count.
        HASH_KEY_LENGTH: Length of the derived key, in bits.
        SQL_ECHO: Echo every SQL statement through the SQLAlchemy logger.
        LOG_LEVEL: Level of the ``contactdb`` logger.
        LOG_FORMAT: Format string of the ``contactdb`` log handler.
    """

    DATA_DIR: Path = Path("./databases")
    SALT_LENGTH: int = 512
    HASH_ALGORITHM: str = "sha1"
    HASH_ITERATIONS: int = 65536
    HASH_KEY_LENGTH: int = 256
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(levelname)8s | %(name)s : %(message)s"

    class Config:
        """Pydantic configuration for loading environment variables."""

        env_file = ".env"
        env_prefix = "CONTACTDB_"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings.

    The settings object is cached to prevent reloading environment
    variables multiple times during the process lifetime.
    """

    return Settings()


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """Attach a stream handler to the ``contactdb`` logger.

    Calling this more than once does not add duplicate handlers; the level
    is updated on every call.

    Args:
        settings (Settings | None): Settings to read the level and format
            from. Defaults to the cached settings.

    Returns:
        logging.Logger: The configured package logger.
    """

    settings = settings or get_settings()
    logger = logging.getLogger("contactdb")
    logger.setLevel(settings.LOG_LEVEL.upper())

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        logger.addHandler(handler)

    return logger
