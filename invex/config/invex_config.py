"""
invex Configuration Management

This module provides configuration management for invex.
"""

import copy
import logging
from typing import Dict, Any, Optional
from pathlib import Path

import yaml

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default_config.yaml'


def _load_defaults() -> Dict[str, Any]:
    with open(DEFAULT_CONFIG_PATH, 'r') as f:
        return yaml.safe_load(f) or {}


def _update_config_recursive(base: Dict[str, Any], update: Dict[str, Any]) -> None:
    """Update configuration recursively"""
    for key, value in update.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            _update_config_recursive(base[key], value)
        else:
            base[key] = value


class InvexConfig:
    """
    Manages system-wide configuration for invex

    The shared instance follows the singleton pattern; ``from_dict`` builds
    standalone instances for embedding and tests.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, 'initialized'):
            self.config: Dict[str, Any] = _load_defaults()

            self.config_file = Path.home() / '.invex' / 'config.yaml'
            if self.config_file.exists():
                self._load_config()

            self.initialized = True

    @classmethod
    def from_dict(cls, overrides: Optional[Dict[str, Any]] = None) -> 'InvexConfig':
        """Build a standalone configuration (defaults merged with ``overrides``)

        The returned instance is not the shared singleton and never touches
        the user configuration file.
        """
        instance = object.__new__(cls)
        instance.config = _load_defaults()
        instance.config_file = None
        instance.initialized = True
        if overrides:
            _update_config_recursive(instance.config, copy.deepcopy(overrides))
        return instance

    @classmethod
    def from_file(cls, config_path: str) -> 'InvexConfig':
        """Load configuration from file

        Args:
            config_path: Path to configuration file

        Returns:
            InvexConfig instance
        """
        instance = cls()
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except Exception as e:
            logger.error(f"Failed to load configuration from {config_path}: {str(e)}")
            raise
        _update_config_recursive(instance.config, file_config)
        return instance

    @classmethod
    def setup(cls, **kwargs) -> None:
        """
        Set up invex configuration and persist it to the user config file

        Args:
            database: Database configuration
                - type: 'sqlite' or 'postgresql'
                - path: Path to SQLite database file
                - postgres: host, port, database, user, password, sslmode
            logging: Logging configuration
                - level: Logging level
                - file: Path to log file
            storage, invoice, parser, ledger, authorization: section overrides
        """
        instance = cls()

        for section, values in kwargs.items():
            if isinstance(values, dict) and isinstance(instance.config.get(section), dict):
                _update_config_recursive(instance.config[section], values)
            else:
                instance.config[section] = values

        instance.config_file.parent.mkdir(parents=True, exist_ok=True)
        instance._save_config()

        logger.info("invex configuration updated")

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance so the next access reloads configuration"""
        cls._instance = None

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation)
            default: Default value if key not found
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value (dot notation)"""
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def _load_config(self) -> None:
        """Merge the user configuration file over the defaults"""
        try:
            with open(self.config_file, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in configuration file {self.config_file}: {str(e)}")
            raise RuntimeError(f"Invalid YAML in configuration file: {str(e)}")

        if file_config:
            _update_config_recursive(self.config, file_config)
            logger.info(f"Configuration loaded from {self.config_file}")

        self._validate_config()

    def _validate_config(self) -> None:
        """Validate configuration structure and values"""
        if not isinstance(self.config, dict):
            raise RuntimeError("Configuration must be a dictionary")

        for section in ['database', 'storage', 'logging']:
            if section not in self.config:
                raise RuntimeError(f"Missing required configuration section: {section}")

        db_config = self.config['database']
        db_type = db_config.get('type')
        if db_type not in ['sqlite', 'postgresql', 'postgres']:
            raise RuntimeError(f"Unsupported database type: {db_type}")

        if db_type == 'sqlite' and not db_config.get('path'):
            raise RuntimeError("SQLite database path not specified")

        min_days = self.get('ledger.min_days_between_sync', 0)
        if not isinstance(min_days, int) or min_days < 0:
            raise RuntimeError("ledger.min_days_between_sync must be a non-negative integer")

    def _save_config(self) -> None:
        """Save configuration to file"""
        try:
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(self.config, f, default_flow_style=False)
            logger.info(f"Configuration saved to {self.config_file}")
        except Exception as e:
            logger.error(f"Failed to save configuration: {str(e)}")
            raise

    def validate(self) -> bool:
        """Validate configuration"""
        try:
            self._validate_config()
            return True
        except RuntimeError as e:
            logger.error(f"Configuration validation failed: {str(e)}")
            return False

    def get_database_config(self) -> Dict[str, Any]:
        return self.config.get('database', {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config.get('logging', {})

    def get_all(self) -> Dict[str, Any]:
        """Get a deep copy of all configuration"""
        return copy.deepcopy(self.config)
