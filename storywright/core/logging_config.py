"""Logging setup for Storywright processes."""

import logging
from typing import Optional

from storywright.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the configured level.

    Args:
        level: Explicit level name; defaults to ``Settings.log_level``
    """
    level_name = level or get_settings().log_level
    logging.basicConfig(level=getattr(logging, level_name.upper(), logging.INFO), format=LOG_FORMAT)

    # Provider SDKs log every request at INFO
    for noisy in ("httpx", "anthropic", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")
