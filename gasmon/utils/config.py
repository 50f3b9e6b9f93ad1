"""
Configuration management for the Spoilage Gas Monitor.
Loads configuration from environment variables with validation and defaults.
"""

import os
import sys
from pathlib import Path
from typing import Optional, Union
from dotenv import load_dotenv
import logging


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class Config:
    """
    Configuration manager that loads settings from environment variables.
    Provides validation and type conversion for configuration values.
    """

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in project root)
        """
        self.logger = logging.getLogger(__name__)

        if env_file is None:
            env_file = Path(__file__).parent.parent.parent / ".env"

        if Path(env_file).exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded configuration from {env_file}")
        else:
            self.logger.warning(f"Environment file {env_file} not found, using system environment")

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = os.getenv(key, default)
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Get path configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = str(default)

        path = Path(value)
        if not path.is_absolute():
            # Relative paths resolve against the project root
            project_root = Path(__file__).parent.parent.parent
            path = project_root / path

        return path

    @property
    def environment(self) -> str:
        """Get current environment."""
        return self.get_str("ENVIRONMENT", "development")

    # BLE Scanner Configuration
    @property
    def ble_adapter(self) -> str:
        """Get BLE adapter."""
        return self.get_str("BLE_ADAPTER", "auto")

    @property
    def ble_scan_duration(self) -> float:
        """Get BLE scan duration."""
        return self.get_float("BLE_SCAN_DURATION", 15.0)

    @property
    def ble_retry_attempts(self) -> int:
        return self.get_int("BLE_RETRY_ATTEMPTS", 3)

    @property
    def ble_retry_delay(self) -> float:
        return self.get_float("BLE_RETRY_DELAY", 2.0)

    @property
    def show_all_devices(self) -> bool:
        """List every named device during discovery, not only sensor-like ones."""
        return self.get_bool("SHOW_ALL_DEVICES", False)

    # Sensor GATT layout
    @property
    def ble_service_uuid(self) -> str:
        return self.get_str("BLE_SERVICE_UUID", "12345678-1234-5678-9abc-def123456789")

    @property
    def ble_tx_char_uuid(self) -> str:
        return self.get_str("BLE_TX_CHAR_UUID", "87654321-4321-1234-5678-abc123456789")

    # Connection Lifecycle Configuration
    @property
    def ble_connect_timeout(self) -> float:
        """Get link-layer connect timeout in seconds."""
        return self.get_float("BLE_CONNECT_TIMEOUT", 10.0)

    @property
    def ble_connection_timeout(self) -> float:
        """Get timeout for the whole connect sequence in seconds."""
        return self.get_float("BLE_CONNECTION_TIMEOUT", 15.0)

    @property
    def ble_service_discovery_delay(self) -> float:
        return self.get_float("BLE_SERVICE_DISCOVERY_DELAY", 0.5)

    @property
    def ble_characteristic_access_delay(self) -> float:
        return self.get_float("BLE_CHARACTERISTIC_ACCESS_DELAY", 0.3)

    @property
    def ble_notify_settle_delay(self) -> float:
        return self.get_float("BLE_NOTIFY_SETTLE_DELAY", 0.2)

    @property
    def ble_disconnect_settle_delay(self) -> float:
        return self.get_float("BLE_DISCONNECT_SETTLE_DELAY", 0.3)

    @property
    def ble_max_connection_attempts(self) -> int:
        return self.get_int("BLE_MAX_CONNECTION_ATTEMPTS", 3)

    @property
    def ble_reconnect_delay(self) -> float:
        """Get delay before an automatic reconnect attempt."""
        return self.get_float("BLE_RECONNECT_DELAY", 3.0)

    @property
    def ble_removal_grace_delay(self) -> float:
        """Get delay before a session that exhausted its retries is dropped."""
        return self.get_float("BLE_REMOVAL_GRACE_DELAY", 5.0)

    @property
    def history_capacity(self) -> int:
        return self.get_int("HISTORY_CAPACITY", 50)

    # Monitor Service Configuration
    @property
    def monitor_auto_connect(self) -> bool:
        return self.get_bool("MONITOR_AUTO_CONNECT", True)

    @property
    def monitor_rescan_interval(self) -> int:
        """Get seconds between discovery rounds while monitoring (0 disables)."""
        return self.get_int("MONITOR_RESCAN_INTERVAL", 60)

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    @property
    def log_enable_syslog(self) -> bool:
        return self.get_bool("LOG_ENABLE_SYSLOG", False)

    # Performance Monitoring
    @property
    def enable_performance_monitoring(self) -> bool:
        return self.get_bool("ENABLE_PERFORMANCE_MONITORING", True)

    @property
    def performance_log_interval(self) -> int:
        return self.get_int("PERFORMANCE_LOG_INTERVAL", 300)

    def validate_configuration(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = []

        # Validate BLE configuration
        try:
            if self.ble_scan_duration <= 0:
                errors.append("BLE_SCAN_DURATION must be positive")
            if self.ble_retry_attempts < 1:
                errors.append("BLE_RETRY_ATTEMPTS must be at least 1")
            if self.ble_retry_delay < 0:
                errors.append("BLE_RETRY_DELAY cannot be negative")
            if not self.ble_service_uuid:
                errors.append("BLE_SERVICE_UUID cannot be empty")
            if not self.ble_tx_char_uuid:
                errors.append("BLE_TX_CHAR_UUID cannot be empty")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate connection lifecycle
        try:
            if self.ble_connect_timeout <= 0:
                errors.append("BLE_CONNECT_TIMEOUT must be positive")
            if self.ble_connection_timeout <= 0:
                errors.append("BLE_CONNECTION_TIMEOUT must be positive")
            if self.ble_max_connection_attempts < 1:
                errors.append("BLE_MAX_CONNECTION_ATTEMPTS must be at least 1")
            delays = {
                "BLE_SERVICE_DISCOVERY_DELAY": self.ble_service_discovery_delay,
                "BLE_CHARACTERISTIC_ACCESS_DELAY": self.ble_characteristic_access_delay,
                "BLE_NOTIFY_SETTLE_DELAY": self.ble_notify_settle_delay,
                "BLE_DISCONNECT_SETTLE_DELAY": self.ble_disconnect_settle_delay,
                "BLE_RECONNECT_DELAY": self.ble_reconnect_delay,
                "BLE_REMOVAL_GRACE_DELAY": self.ble_removal_grace_delay,
            }
            for key, value in delays.items():
                if value < 0:
                    errors.append(f"{key} cannot be negative")
            if self.history_capacity < 1:
                errors.append("HISTORY_CAPACITY must be at least 1")
            if self.monitor_rescan_interval < 0:
                errors.append("MONITOR_RESCAN_INTERVAL cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate log level
        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging."""
        return {
            'ble': {
                'adapter': self.ble_adapter,
                'scan_duration': self.ble_scan_duration,
                'retry_attempts': self.ble_retry_attempts,
                'retry_delay': self.ble_retry_delay,
                'show_all_devices': self.show_all_devices,
                'service_uuid': self.ble_service_uuid,
                'tx_char_uuid': self.ble_tx_char_uuid,
            },
            'connection': {
                'connect_timeout': self.ble_connect_timeout,
                'connection_timeout': self.ble_connection_timeout,
                'max_attempts': self.ble_max_connection_attempts,
                'reconnect_delay': self.ble_reconnect_delay,
                'removal_grace_delay': self.ble_removal_grace_delay,
                'history_capacity': self.history_capacity,
            },
            'monitor': {
                'auto_connect': self.monitor_auto_connect,
                'rescan_interval': self.monitor_rescan_interval,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
                'enable_syslog': self.log_enable_syslog,
            },
        }

    def validate_environment(self):
        """Validate environment and configuration."""
        return self.validate_configuration()

    def is_virtual_environment(self) -> bool:
        """Check if running in a virtual environment."""
        return (hasattr(sys, 'real_prefix') or
                (hasattr(sys, 'base_prefix') and sys.base_prefix != sys.prefix) or
                'VIRTUAL_ENV' in os.environ)
