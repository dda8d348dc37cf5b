"""
Configuration loading and management for AVS Identity.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'sso.password': 'SSO_PASSWORD',
        'management.password': 'MANAGEMENT_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        sso_config = self.config.get('sso') or {}
        for field in ['server', 'username', 'password']:
            if not sso_config.get(field):
                errors.append(f"Missing required SSO field: {field}")

        management_config = self.config.get('management') or {}
        for field in ['host', 'username']:
            if not management_config.get(field):
                errors.append(f"Missing required management field: {field}")
        if management_config and not (management_config.get('password') or management_config.get('key_file')):
            errors.append("Management endpoint requires either password or key_file")

        diagnostics_config = self.config.get('diagnostics') or {}
        for field in ['port_timeout', 'ping_count', 'tls_timeout']:
            value = diagnostics_config.get(field)
            if value is not None and (not isinstance(value, int) or value <= 0):
                errors.append(f"diagnostics.{field} must be a positive integer")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        sso_defaults = {
            'module': 'rest_client',
            'api_base': '/api/sso',
            'verify_ssl': True,
            'ca_cert_file': None,
            'timeout': 30,
            'local_domain': 'vsphere.local',
            'admin_group': 'CloudAdmins'
        }
        sso_config = self.config.setdefault('sso', {})
        for key, value in sso_defaults.items():
            sso_config.setdefault(key, value)

        management_defaults = {
            'port': 22,
            'command_timeout': 30,
            'control_persist': 300,
            'key_file': None
        }
        management_config = self.config.setdefault('management', {})
        for key, value in management_defaults.items():
            management_config.setdefault(key, value)

        certificate_defaults = {
            'download_dir': 'certs',
            'download_timeout': 30,
            'verify_ssl': True
        }
        certificate_config = self.config.setdefault('certificates', {})
        for key, value in certificate_defaults.items():
            certificate_config.setdefault(key, value)

        diagnostics_defaults = {
            'port_timeout': 5,
            'ping_count': 4,
            'tls_timeout': 10
        }
        diagnostics_config = self.config.setdefault('diagnostics', {})
        for key, value in diagnostics_defaults.items():
            diagnostics_config.setdefault(key, value)

        precheck_config = self.config.setdefault('precheck', {})
        precheck_config.setdefault('verify_bind', False)

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
