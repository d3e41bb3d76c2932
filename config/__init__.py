"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS

__all__ = ['settings_conf', 'load_config', 'SettingsError', 'DEFAULTS']

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load and validate configuration from file and environment.

    Args:
        config_path: Optional path to config file. If not provided,
                    MARKET_SETTINGS or settings.conf in the current directory is used.

    Returns:
        Dict of validated settings
    """
    return validate_settings(load_settings_conf(config_path))

try:
    settings_conf: Dict[str, Any] = load_config()

except SettingsError as e:
    # Re-raise the error but provide more context
    raise type(e)(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please check settings.conf and any MARKET_* environment variables.\n"
        "See settings.conf.example for the available settings."
    )
