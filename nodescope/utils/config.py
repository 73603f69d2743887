# nodescope/utils/config.py - Configuration management
"""
Configuration management for the agent.
Loads configuration from YAML files and merges it over the defaults.
"""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging


class Config:
    """
    Configuration manager for the agent.

    Loads configuration from YAML files and provides access to settings.
    """

    DEFAULT_CONFIG = {
        'agent': {
            'collection_period': 10,
            'max_workers': 4,
            'archive': False,
        },
        'collectors': {
            'exclude': [],
            'gadgets': ['dns', 'tcptracer'],
        },
        'registry': {
            'poll_interval': 2.0,
            'crictl_path': 'crictl',
        },
        'probes': {
            'buffer_pages': 64,
            'proc_poll_interval': 0.5,
        },
        'storage': {
            'account_name': '',
            'access_key': '',
            'container_name': '',
            'key_type': '',
            'endpoint_url': '',
            'region': '',
        },
    }

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
        """
        self.logger = logging.getLogger(__name__)
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_file:
            self.load_from_file(config_file)

    def load_from_file(self, config_file: str):
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML file
        """
        config_path = Path(config_file)

        if not config_path.exists():
            self.logger.warning(f"Config file not found: {config_file}, using defaults")
            return

        with open(config_path, 'r') as f:
            loaded_config = yaml.safe_load(f) or {}

        self._merge_config(self.config, loaded_config)
        self.logger.info(f"Loaded configuration from {config_file}")

    def _merge_config(self, base: Dict, override: Dict):
        """
        Recursively merge configuration dictionaries.
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'agent.collection_period')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """
        Set configuration value by dot-notation key.
        """
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def to_dict(self) -> Dict:
        return copy.deepcopy(self.config)
