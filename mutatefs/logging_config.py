"""Structlog setup for test sessions that want interception events."""

import logging

import structlog

from mutatefs.config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog to filter below the configured level.
    
    Args:
        settings: Settings to read the level from. Defaults to the
            global settings instance.
    """
    settings = settings or get_settings()
    level_name = "DEBUG" if settings.debug else settings.log_level
    level = getattr(logging, level_name)
    
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
