"""Logging configuration."""

import logging
import sys
from typing import Optional, TextIO

from medchain_api.settings import Settings

JSON_FORMAT = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}'
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings, stream: Optional[TextIO] = None) -> None:
    """Configure root logging from settings (stdout unless ``stream`` is given)."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=JSON_FORMAT if settings.log_format == "json" else TEXT_FORMAT,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        force=True,
    )
