"""Configuration module for loading and managing application settings"""
import logging
from typing import Dict, Any

from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS

__all__ = ['settings_conf', 'load_settings_conf', 'validate_settings', 'setup_logging', 'SettingsError', 'DEFAULTS']

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = None) -> None:
    """Configure root logging once for the whole application."""
    logging.basicConfig(
        level=getattr(logging, level or settings_conf['log_level'], logging.INFO),
        format=LOG_FORMAT
    )


try:
    settings_conf: Dict[str, Any] = load_settings_conf()
except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "See settings.conf.example for the available keys."
    )
