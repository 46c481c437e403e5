#!/usr/bin/env python3
"""
Configuration management for the IMAP mailbox migration system.
"""

import logging
from typing import Any, Dict

import yaml

from models import (DEFAULT_BATCH_SIZE, DEFAULT_LOCK_TIMEOUT, DEFAULT_MAX_CONCURRENCY, DEFAULT_PACING_DELAY,
                    DEFAULT_PORT, ConnectionProfile)
from utils import mask_secret

DEFAULT_SETTINGS = {
    'batch_size': DEFAULT_BATCH_SIZE,
    'max_concurrency': DEFAULT_MAX_CONCURRENCY,
    'pacing_delay': DEFAULT_PACING_DELAY,
    'lock_timeout': DEFAULT_LOCK_TIMEOUT,
    'log_file': 'imap_migrate.log',
}


class ConfigManager:
    """Handles configuration loading and validation."""

    def __init__(self, config_file: str = "config.yaml"):
        self.config_file = config_file
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, 'r') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file '{self.config_file}' not found")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        if not isinstance(config, dict):
            raise ValueError(f"Configuration file '{self.config_file}' must contain a mapping")
        self.validate_config(config)
        settings = dict(DEFAULT_SETTINGS)
        settings.update(config.get('settings') or {})
        config['settings'] = settings
        return config

    def validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration structure."""
        required_sections = ['source', 'destination']
        for section in required_sections:
            if not isinstance(config.get(section), dict):
                raise ValueError(f"Missing required configuration section: {section}")

            required_fields = ['server', 'username', 'password']
            for field in required_fields:
                if field not in config[section]:
                    raise ValueError(f"Missing required {section} field: {field}")
            if 'use_ssl' in config[section] and not isinstance(config[section]['use_ssl'], bool):
                raise ValueError(f"'{section}.use_ssl' must be true or false")

        settings = config.get('settings') or {}
        if not isinstance(settings, dict):
            raise ValueError("'settings' must be a mapping")
        for key in ('batch_size', 'max_concurrency'):
            if key in settings and (not isinstance(settings[key], int) or isinstance(settings[key], bool)
                                    or settings[key] < 1):
                raise ValueError(f"'{key}' must be an integer >= 1")
        for key in ('pacing_delay', 'lock_timeout'):
            if key in settings and (not isinstance(settings[key], (int, float)) or isinstance(settings[key], bool)
                                    or settings[key] < 0):
                raise ValueError(f"'{key}' must be a number >= 0")

    def profile(self, section: str) -> ConnectionProfile:
        """Build the connection profile of 'source' or 'destination'."""
        server_config = self.config[section]
        profile = ConnectionProfile(
            host=str(server_config['server']),
            port=int(server_config.get('port', DEFAULT_PORT)),
            username=str(server_config['username']),
            secret=str(server_config['password']),
            use_tls=bool(server_config.get('use_ssl', True)),
        )
        logging.debug(f"{section.title()} profile: {profile.label} (password: {mask_secret(profile.secret)})")
        return profile

    @property
    def settings(self) -> Dict[str, Any]:
        return self.config['settings']
