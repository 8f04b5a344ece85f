"""
Configuration loading and management for LDAP SQL Sync.

This module handles loading configuration from an optional YAML file, a
``.env`` file and environment variables, with validation and defaults.
The environment variable names follow Greenlight's ``.env`` file, so an
existing Greenlight installation can be synced without extra configuration.
"""

import os
import re
import yaml
import logging
from dotenv import dotenv_values
from typing import Dict, Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'
DEFAULT_ENV_FILE = '.env'

LDAP_METHODS = ('plain', 'ssl', 'tls')
LDAP_AUTH_MODES = ('simple', 'anonymous', 'user')
DB_ADAPTERS = ('postgresql',)

_INTERVAL_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h)')
_INTERVAL_UNITS = {'ms': 0.001, 's': 1, 'm': 60, 'h': 3600}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def parse_interval(value: Any) -> float:
    """
    Parse a sync interval into seconds.

    Accepts plain numbers (seconds) and duration strings such as ``90s``,
    ``15m`` or ``1h30m``. An empty value disables scheduling.

    Raises:
        ConfigurationError: If the value cannot be parsed or is negative
    """
    if value is None or value == '':
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _INTERVAL_PART.findall(text)
            if not parts or ''.join(n + u for n, u in parts) != text:
                raise ConfigurationError(f"Cannot parse interval: {value!r}")
            seconds = sum(float(n) * _INTERVAL_UNITS[u] for n, u in parts)

    if seconds < 0:
        raise ConfigurationError(f"Negative interval: {value!r}")
    return seconds


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable -> configuration key
    ENV_OVERRIDES = {
        'LDAP_SERVER': 'ldap.server',
        'LDAP_PORT': 'ldap.port',
        'LDAP_METHOD': 'ldap.method',
        'LDAP_AUTH': 'ldap.auth',
        'LDAP_BIND_DN': 'ldap.bind_dn',
        'LDAP_PASSWORD': 'ldap.password',
        'LDAP_BASE': 'ldap.base',
        'LDAP_UID': 'ldap.uid',
        'LDAP_FILTER': 'ldap.filter',
        'LDAP_ATTRIBUTE_MAPPING': 'ldap.attribute_mapping',
        'DB_ADAPTER': 'database.adapter',
        'DB_HOST': 'database.host',
        'DB_PORT': 'database.port',
        'DB_NAME': 'database.name',
        'DB_USERNAME': 'database.username',
        'DB_PASSWORD': 'database.password',
        'INTERVAL': 'sync.interval',
    }

    # Greenlight's .env names the database port just PORT; read from the .env file only
    ENV_FALLBACKS = {
        'database.port': 'PORT',
    }

    def __init__(self, config_path: Optional[str] = None, env_file: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to YAML config file. If None, uses CONFIG_PATH env var or
                'config.yaml'; a missing default file is not an error
            env_file: Path to a .env file. If None, uses ENV_FILE env var or '.env'
            environ: Environment mapping, defaults to os.environ
        """
        self.environ = os.environ if environ is None else environ
        self.explicit_config = bool(config_path or self.environ.get('CONFIG_PATH'))
        self.config_path = config_path or self.environ.get('CONFIG_PATH', DEFAULT_CONFIG_PATH)
        self.env_file = env_file or self.environ.get('ENV_FILE', DEFAULT_ENV_FILE)
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        self.config = self._load_yaml()

        # .env file first, so the process environment wins
        self._apply_env_overrides(self._load_env_file(), source=self.env_file, fallbacks=True)
        self._apply_env_overrides(self.environ, source='environment')

        self._apply_defaults()
        self._validate()

        logger.info("Configuration loaded successfully")
        return self.config

    def _load_yaml(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            if self.explicit_config:
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")
            logger.debug(f"No configuration file at {self.config_path}, using environment only")
            return {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")
        logger.debug(f"Read configuration file {self.config_path}")
        return config

    def _load_env_file(self) -> Dict[str, Optional[str]]:
        if not self.env_file or not os.path.isfile(self.env_file):
            return {}
        logger.debug(f"Reading environment file {self.env_file}")
        return dotenv_values(self.env_file)

    def _apply_env_overrides(self, env: Mapping[str, Optional[str]], source: str,
                            fallbacks: bool = False):
        """Apply environment variable overrides from one source."""
        for env_var, config_key in self.ENV_OVERRIDES.items():
            env_value = env.get(env_var)
            if env_value is None and fallbacks:
                fallback = self.ENV_FALLBACKS.get(config_key)
                env_value = env.get(fallback) if fallback else None
            if env_value is not None:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied {source} override for {config_key}")

        # DEBUG only needs to be present
        if 'DEBUG' in env:
            self._set_nested_value(self.config, 'logging.debug', True)

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

        ldap_config = self.config['ldap']
        for field in ('server', 'base'):
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        method = str(ldap_config.get('method')).lower()
        if method not in LDAP_METHODS:
            errors.append(f"Unsupported LDAP method {method!r}, expected one of {', '.join(LDAP_METHODS)}")

        auth = str(ldap_config.get('auth')).lower()
        if auth not in LDAP_AUTH_MODES:
            errors.append(f"Unsupported LDAP auth {auth!r}, expected one of {', '.join(LDAP_AUTH_MODES)}")
        elif auth == 'simple' and not ldap_config.get('bind_dn'):
            errors.append("Missing required LDAP field for simple auth: bind_dn")

        try:
            ldap_config['port'] = int(ldap_config['port'])
        except (TypeError, ValueError):
            errors.append(f"Invalid LDAP port: {ldap_config.get('port')!r}")

        db_config = self.config['database']
        for field in ('adapter', 'host', 'name'):
            if not db_config.get(field):
                errors.append(f"Missing required database field: {field}")

        try:
            db_config['port'] = int(db_config['port'])
        except (TypeError, ValueError):
            errors.append(f"Invalid database port: {db_config.get('port')!r}")

        sync_config = self.config['sync']
        try:
            sync_config['interval_seconds'] = parse_interval(sync_config.get('interval'))
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

        ldap_config['method'] = method
        ldap_config['auth'] = auth

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        # LDAP defaults
        ldap_config = self.config.setdefault('ldap', {})
        method = str(ldap_config.get('method') or 'plain').lower()
        ldap_defaults = {
            'method': 'plain',
            'auth': 'simple',
            'port': 636 if method == 'ssl' else 389,
            'bind_dn': '',
            'password': '',
            'uid': 'uid',
            'filter': '',
            'attribute_mapping': '',
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 10,
        }
        for key, value in ldap_defaults.items():
            if ldap_config.get(key) in (None, '') and value != '':
                ldap_config[key] = value
            ldap_config.setdefault(key, value)

        # Database defaults
        db_defaults = {
            'port': 5432,
            'username': '',
            'password': '',
            'sslmode': 'disable',
            'provider': 'greenlight',
            'table': 'users',
            'compare_stored': True,
        }
        db_config = self.config.setdefault('database', {})
        for key, value in db_defaults.items():
            if db_config.get(key) in (None, '') and value != '':
                db_config[key] = value
            db_config.setdefault(key, value)

        self.config.setdefault('sync', {}).setdefault('interval', '')

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'debug': False,
            'log_dir': None,
            'retention_days': 7,
            'console_output': True,
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None, env_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to YAML config file
        env_file: Path to .env file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path, env_file)
    return loader.load()


def redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the configuration with secrets masked."""
    safe = {}
    for section, values in config.items():
        if isinstance(values, dict):
            safe[section] = {
                key: ('****' if 'password' in key and value else value)
                for key, value in values.items()
            }
        else:
            safe[section] = values
    return safe
