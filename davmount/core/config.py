# core/config.py
"""Configuration management for davmount."""

import json
import logging
import os
import sys
from typing import Optional, Dict, Any

from davmount.utils.helpers import atomic_write

logger = logging.getLogger(__name__)

APP_NAME = 'davmount'


def get_data_dir() -> str:
    """
    Get directory for storing configuration and offline files.

    Returns:
        Path to data directory
    """
    override = os.environ.get('DAVMOUNT_HOME')
    if override:
        return os.path.abspath(os.path.expanduser(override))

    if sys.platform.startswith('win'):
        appdata = os.environ.get('APPDATA')
        if appdata:
            return os.path.join(appdata, APP_NAME)

    xdg = os.environ.get('XDG_DATA_HOME')
    if xdg:
        return os.path.join(xdg, APP_NAME)

    return os.path.join(os.path.expanduser('~'), '.local', 'share', APP_NAME)


class ConfigManager:
    """Manager for application settings."""

    # Default settings
    DEFAULT_SETTINGS = {
        'logs_enabled': True,
        'log_level': 'INFO',
        'connection_timeout': 10,
        'read_timeout': 30,
        'download_timeout': 600,
        'verify_ssl': True,
        'user_agent': 'davmount/1.0',
        'chunk_size': 256 * 1024,
        # Bytes that must stay free after a download completes
        'min_free_space': 50 * 1024 * 1024,
        # Empty means <data_dir>/offline
        'offline_dir': '',
        # Seconds a folder deletion waits for each cancelled download
        'cancel_timeout': 30,
    }

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_dir: Custom configuration directory (optional)
        """
        self.config_dir = config_dir or get_data_dir()
        self.config_file = os.path.join(self.config_dir, "settings.json")

        os.makedirs(self.config_dir, exist_ok=True)
        logger.debug(f"Config directory: {self.config_dir}")

        self.config = self._load_config()

        settings = self.DEFAULT_SETTINGS.copy()
        settings.update(self.config.get('settings', {}))
        self.config['settings'] = settings
        self.settings = settings

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        if not os.path.exists(self.config_file):
            logger.debug(f"Configuration file not found: {self.config_file}")
            return {}

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            logger.debug(f"Loaded config from {self.config_file}")
            if not isinstance(data, dict):
                logger.error("Configuration file is not a JSON object, ignoring")
                return {}
            return data
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Error loading configuration: {e}")
            return {}

    def _save_config(self):
        """Save configuration to file."""
        data = json.dumps(self.config, indent=2, ensure_ascii=False)
        atomic_write(self.config_file, data.encode('utf-8'))
        logger.debug(f"Configuration saved to {self.config_file}")

    # Public methods for settings management

    def save_config(self):
        """Save current configuration."""
        self.config['settings'] = self.settings
        self._save_config()

    def update_settings(self, **kwargs):
        """Update multiple settings at once."""
        unknown = set(kwargs) - set(self.DEFAULT_SETTINGS)
        if unknown:
            raise KeyError(f"Unknown settings: {', '.join(sorted(unknown))}")
        self.settings.update(kwargs)
        self.save_config()

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get setting value by key."""
        return self.settings.get(key, default)

    def set_setting(self, key: str, value: Any):
        """Set single setting value."""
        self.update_settings(**{key: value})

    @property
    def offline_dir(self) -> str:
        """Directory owned by the offline cache."""
        configured = self.settings.get('offline_dir')
        if configured:
            return os.path.abspath(os.path.expanduser(configured))
        return os.path.join(self.config_dir, 'offline')

    @property
    def log_dir(self) -> Optional[str]:
        if not self.settings.get('logs_enabled', True):
            return None
        return os.path.join(self.config_dir, 'logs')
