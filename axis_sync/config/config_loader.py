"""
Configuration loader for Axis Sync
Defaults, overridden by config/axis.yaml, overridden by environment variables
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv

from axis_sync.core.errors import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('config/axis.yaml')


def default_config() -> Dict[str, Any]:
    """Built-in configuration, usable without any file or environment"""
    return {
        'database': {
            'url': 'sqlite+aiosqlite:///./data/axis.db',
        },
        'google': {
            'mode': 'google',  # 'google' or 'mock'
            'client_id': '',
            'client_secret': '',
            'token_url': 'https://oauth2.googleapis.com/token',
            'api_base_url': 'https://www.googleapis.com/calendar/v3',
            'timeout_seconds': 30,
        },
        'sync': {
            'calendar_name': 'Axis',
            'calendar_description': 'Tasks and events from your Time Management app',
            'webhook_base_url': '',
            'default_event_minutes': 60,
            'past_days': 90,
            'future_days': 180,
            'webhook_ttl_days': 7,
            'webhook_refresh_hours': 6,
            'webhook_expiry_buffer_hours': 24,
            'periodic_pull_minutes': 60,
            'startup_delay_seconds': 10,
            'read_only_calendar_patterns': [
                r'#holiday@',
                r'#contacts@',
                r'#weeknum@',
            ],
        },
        'api': {
            'host': '0.0.0.0',
            'port': 8080,
            'api_key': 'development-key-change-in-production',
            'cors_origins': ['*'],
        },
        'security': {
            'token_encryption_key': '',
        },
        'task_queue': {
            'workers': 2,
        },
        'logging': {
            'level': 'INFO',
            'file': 'logs/axis.log',
            'file_enabled': False,
        },
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from environment and YAML files"""

    load_dotenv()

    config = default_config()

    yaml_path = Path(config_path) if config_path else Path(os.getenv('AXIS_CONFIG', DEFAULT_CONFIG_PATH))

    if yaml_path.exists():
        try:
            with open(yaml_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    _deep_update(config, yaml_config)
                    logger.info(f"Configuration loaded from {yaml_path}")
        except Exception as e:
            logger.error(f"Failed to load configuration from {yaml_path}: {e}")
            logger.error("Using default configuration")
    else:
        logger.warning(f"Configuration file {yaml_path} not found, using defaults")

    _apply_env_overrides(config)

    logger.info("Configuration loaded successfully")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """Environment variables win over file values"""
    overrides = {
        'DATABASE_URL': ('database', 'url'),
        'GOOGLE_CLIENT_ID': ('google', 'client_id'),
        'GOOGLE_CLIENT_SECRET': ('google', 'client_secret'),
        'AXIS_CALENDAR_MODE': ('google', 'mode'),
        'WEBHOOK_BASE_URL': ('sync', 'webhook_base_url'),
        'APP_CALENDAR_NAME': ('sync', 'calendar_name'),
        'AXIS_API_KEY': ('api', 'api_key'),
        'AXIS_TOKEN_KEY': ('security', 'token_encryption_key'),
        'LOG_LEVEL': ('logging', 'level'),
    }

    for env_name, (section, key) in overrides.items():
        value = os.getenv(env_name)
        if value:
            config.setdefault(section, {})[key] = value


def _deep_update(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> None:
    """Deep update nested dictionary"""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            _deep_update(base_dict[key], value)
        else:
            base_dict[key] = value


@dataclass
class SyncSettings:
    """Typed view over the `sync` configuration section"""
    calendar_name: str = 'Axis'
    calendar_description: str = 'Tasks and events from your Time Management app'
    webhook_base_url: str = ''
    default_event_minutes: int = 60
    past_days: int = 90
    future_days: int = 180
    webhook_ttl_days: int = 7
    webhook_refresh_hours: int = 6
    webhook_expiry_buffer_hours: int = 24
    periodic_pull_minutes: int = 60
    startup_delay_seconds: int = 10
    read_only_calendar_patterns: List[str] = field(
        default_factory=lambda: [r'#holiday@', r'#contacts@', r'#weeknum@']
    )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SyncSettings':
        section = dict(config.get('sync', {}))
        known = {name: section[name] for name in cls.__dataclass_fields__ if name in section}
        settings = cls(**known)
        settings.validate()
        return settings

    @property
    def webhook_url(self) -> Optional[str]:
        """Public push-notification endpoint, or None when webhooks are not configured"""
        if not self.webhook_base_url:
            return None
        return f"{self.webhook_base_url.rstrip('/')}/webhook/google-calendar"

    def validate(self):
        """Validate sync configuration"""
        if not self.calendar_name:
            raise ConfigError("sync.calendar_name is required")
        if self.default_event_minutes < 1:
            raise ConfigError("sync.default_event_minutes must be at least 1")
        if self.past_days < 0 or self.future_days < 1:
            raise ConfigError("sync window must cover at least one future day")
        if self.webhook_base_url and not self.webhook_base_url.startswith('https://'):
            logger.warning("sync.webhook_base_url is not HTTPS; Google rejects non-HTTPS channels")
