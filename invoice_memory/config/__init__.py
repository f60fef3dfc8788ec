"""
Configuration module for the invoice memory engine.

Provides centralized configuration management using Pydantic Settings
and structured logging with structlog.
"""

from invoice_memory.config.logging_config import configure_logging, get_logger
from invoice_memory.config.settings import Environment, Settings, get_settings


__all__ = [
    "Settings",
    "get_settings",
    "Environment",
    "configure_logging",
    "get_logger",
]
