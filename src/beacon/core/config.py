"""
Configuration Management System for Beacon

Handles loading configuration from environment variables, config files,
and validates the merged result.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


# Largest storage key a responder token may normalize to
MAX_TOKEN_KEY_LENGTH = 150

STORE_BACKENDS = ('memory', 'sqlite')
PUSH_GATEWAYS = ('expo', 'log')


class ConfigurationManager:
    """
    Manages system configuration layered from defaults, YAML files
    and environment variables.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "Beacon",
                "debug": False
            },
            "store": {
                "backend": "memory",
                "path": "data/beacon.db",
                "max_connections": 10
            },
            "push": {
                "gateway": "expo",
                "url": "https://exp.host/--/api/v2/push/send",
                "channel_id": "emergency",
                "timeout": 30
            },
            "responders": {
                "token_key_max_length": MAX_TOKEN_KEY_LENGTH
            },
            "notifications": {
                "title_prefix": "Emergency: ",
                "coordinate_precision": 4
            },
            "navigation": {
                "directions_url": "https://www.google.com/maps/dir/?api=1&destination={lat},{lng}"
            },
            "logging": {
                "level": "INFO",
                "file": "logs/beacon.log",
                "max_size": "10MB",
                "backup_count": 5,
                "console": True,
                "console_level": "INFO"
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority = highest number)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config: Dict[str, Any] = {}

        # Lowest priority first so higher ones override
        for source in sorted(self.sources, key=lambda x: x.priority):
            source_config = source.loader()
            if source_config:
                merged_config = self._deep_merge(merged_config, source_config)
                self.logger.debug(f"Loaded configuration from {source.name}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        env_mappings = {
            "BEACON_DEBUG": "app.debug",
            "BEACON_LOG_LEVEL": "logging.level",
            "BEACON_STORE_BACKEND": "store.backend",
            "BEACON_DB_PATH": "store.path",
            "BEACON_PUSH_GATEWAY": "push.gateway",
            "BEACON_PUSH_URL": "push.url",
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Error loading config file {path}: {e}")

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        for section in ('app', 'store', 'push'):
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        backend = self.get('store.backend')
        if backend not in STORE_BACKENDS:
            errors.append(f"Invalid store backend: {backend}")

        gateway = self.get('push.gateway')
        if gateway not in PUSH_GATEWAYS:
            errors.append(f"Invalid push gateway: {gateway}")

        if gateway == 'expo' and not self.get('push.url'):
            errors.append("push.url is required for the expo gateway")

        if not self.get('push.channel_id'):
            errors.append("push.channel_id must not be empty")

        timeout = self.get('push.timeout')
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            errors.append(f"Invalid push timeout: {timeout}")

        key_length = self.get('responders.token_key_max_length', MAX_TOKEN_KEY_LENGTH)
        if not isinstance(key_length, int) or not 1 <= key_length <= MAX_TOKEN_KEY_LENGTH:
            errors.append(f"Invalid responders.token_key_max_length: {key_length}")

        precision = self.get('notifications.coordinate_precision', 4)
        if not isinstance(precision, int) or precision < 0:
            errors.append(f"Invalid notifications.coordinate_precision: {precision}")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        levels = {
            'logging.level': self.get('logging.level', 'INFO'),
            'logging.console_level': self.get('logging.console_level', 'INFO'),
        }
        services = self.get('logging.services') or {}
        if isinstance(services, dict):
            for service, level in services.items():
                levels[f'logging.services.{service}'] = level
        else:
            errors.append("logging.services must be a mapping of service name to level")

        for key, level in levels.items():
            if not isinstance(level, str) or level.upper() not in valid_levels:
                errors.append(f"Invalid log level for {key}: {level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def as_dict(self) -> Dict[str, Any]:
        """Return the merged configuration"""
        return self.config
