"""
Configuration Management for the identity session client.

This module handles client configuration including the API key, session name,
service endpoints, storage backend and logging settings, read from an INI file.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from identity_shared.exceptions import ConfigurationError, ErrorCode
from identity_shared.interfaces import IAuthStorage
from identity_shared.logging_config import LogLevel, LogFormat, setup_logging
from identity_client.api_client import DEFAULT_ACCOUNTS_URL, DEFAULT_TOKEN_URL
from identity_client.auth.token_storage import MemoryTokenStorage, SecureTokenStorage

logger = logging.getLogger(__name__)


STORAGE_BACKENDS = ('memory', 'secure')


class ClientConfiguration:
    """
    Configuration manager for the identity session client.

    Supports configuration from:
    1. Overrides set in-process (highest priority)
    2. Configuration file
    3. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        # Load configuration
        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path."""
        return str(Path.home() / '.config' / 'identity-session' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file, then fill in defaults."""
        if Path(self._config_file).exists():
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        # Set defaults for missing values
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        # Convert ConfigParser to dictionary
        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers, booleans and null
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    # Keep as string if not valid JSON
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'identity': {
                'api_key': None,
                'session_name': '',
                'accounts_url': DEFAULT_ACCOUNTS_URL,
                'token_url': DEFAULT_TOKEN_URL,
                'timeout': None
            },
            'storage': {
                'backend': 'secure',
                'service_name': 'identity-session',
                'path': None
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'audit_file': None
            }
        }

        # Merge defaults with existing configuration
        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_api_key(self) -> str:
        """Get API key."""
        api_key = self._overrides.get('api_key') or self._config_data['identity'].get('api_key')
        if not api_key:
            raise ConfigurationError(
                "No API key configured",
                ErrorCode.CONFIG_MISSING_REQUIRED_SETTING,
                config_key='identity.api_key'
            )
        return str(api_key)

    def get_session_name(self) -> str:
        """Get session name used to namespace stored records."""
        name = self._overrides.get('session_name')
        if name is None:
            name = self._config_data['identity'].get('session_name')
        return str(name) if name is not None else ''

    def get_accounts_url(self) -> str:
        return self._overrides.get('accounts_url') or self._config_data['identity']['accounts_url']

    def get_token_url(self) -> str:
        return self._overrides.get('token_url') or self._config_data['identity']['token_url']

    def get_timeout(self) -> Optional[float]:
        """Get request timeout in seconds; None disables the timeout."""
        value = self.get_config('identity.timeout')
        if value is None:
            return None
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid timeout: {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='identity.timeout'
            )
        if timeout <= 0:
            raise ConfigurationError(
                f"Timeout must be positive: {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='identity.timeout'
            )
        return timeout

    def get_storage_backend(self) -> str:
        backend = str(self._overrides.get('storage_backend') or self._config_data['storage']['backend']).lower()
        if backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend: {backend}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='storage.backend'
            )
        return backend

    def create_storage(self) -> IAuthStorage:
        """Create the storage backend named by the configuration."""
        backend = self.get_storage_backend()
        if backend == 'memory':
            return MemoryTokenStorage()

        path = self.get_config('storage.path')
        return SecureTokenStorage(
            service_name=self.get_config('storage.service_name', 'identity-session'),
            storage_path=Path(path).expanduser() if path else None
        )

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        value = self._config_data.get(section, {}).get(config_key, default)
        return default if value is None else value

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            raise ConfigurationError(
                f"Configuration key must be 'section.key': {key}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key=key
            )

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key
            value: Override value
        """
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        # Convert dictionary back to ConfigParser format
        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, str):
                    config.set(section_name, key, value)
                else:
                    config.set(section_name, key, json.dumps(value))

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_file, 'w') as f:
            config.write(f)

        logger.info(f"Configuration saved to: {self._config_file}")

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        return {section: dict(values) for section, values in self._config_data.items()}

    def reload_configuration(self) -> None:
        """Reload configuration from file."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def setup_logging(self) -> Dict[str, logging.Logger]:
        """Configure logging from the [logging] section."""
        try:
            level = LogLevel(str(self.get_config('logging.level', 'INFO')).upper())
            log_format = LogFormat(str(self.get_config('logging.format', 'standard')).lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid logging configuration: {e}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging',
                cause=e
            )

        return setup_logging(
            log_level=level,
            log_format=log_format,
            log_file=self.get_config('logging.file'),
            audit_file=self.get_config('logging.audit_file')
        )
