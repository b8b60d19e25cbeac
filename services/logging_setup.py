"""Root logger configuration for the CLI and embedding applications."""

from __future__ import annotations

import logging

from services.models import LoggingSettings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: LoggingSettings | None = None, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Level and optional log file
        verbose: Force DEBUG level regardless of settings
    """
    settings = settings or LoggingSettings()
    log_level = logging.DEBUG if verbose else getattr(logging, settings.log_level)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
        ],
        force=True,
    )

    # Add file handler if log file specified
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)
