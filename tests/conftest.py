"""
Pytest configuration and shared fixtures for Spoilage Gas Monitor tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import pytest
from datetime import datetime
from pathlib import Path
from unittest.mock import Mock, MagicMock

# Import the modules we're testing
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from gasmon.devices.reading import SensorReading
from gasmon.devices.registry import DeviceRegistry
from gasmon.devices.session import DeviceSession
from gasmon.utils.config import Config
from gasmon.utils.logging import ProductionLogger, PerformanceMonitor
from tests.mocks.mock_ble import SENSOR_SERVICE_UUID, SENSOR_TX_CHAR_UUID


@pytest.fixture
def mock_config():
    """Create a mock configuration with near-zero delays for testing."""
    config = Mock(spec=Config)

    # BLE discovery
    config.environment = "testing"
    config.ble_scan_duration = 0.05
    config.ble_retry_attempts = 2
    config.ble_retry_delay = 0.01
    config.ble_adapter = "auto"
    config.show_all_devices = False
    config.ble_service_uuid = SENSOR_SERVICE_UUID
    config.ble_tx_char_uuid = SENSOR_TX_CHAR_UUID

    # Connection lifecycle
    config.ble_connect_timeout = 1.0
    config.ble_connection_timeout = 1.0
    config.ble_service_discovery_delay = 0
    config.ble_characteristic_access_delay = 0
    config.ble_notify_settle_delay = 0
    config.ble_disconnect_settle_delay = 0
    config.ble_max_connection_attempts = 3
    config.ble_reconnect_delay = 0.01
    config.ble_removal_grace_delay = 0.05
    config.history_capacity = 50

    # Monitor service
    config.monitor_auto_connect = True
    config.monitor_rescan_interval = 0

    # Logging configuration
    config.log_level = "DEBUG"
    config.log_dir = Path("./test_logs")
    config.log_max_file_size = 1024 * 1024  # 1MB
    config.log_backup_count = 2
    config.log_enable_console = False  # Disable console logging in tests
    config.log_enable_syslog = False

    # Performance monitoring
    config.enable_performance_monitoring = True
    config.performance_log_interval = 60

    return config


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock(spec=ProductionLogger)
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    return logger


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    monitor = Mock(spec=PerformanceMonitor)
    monitor.record_metric = Mock()
    monitor.log_ble_scan = Mock()
    monitor.log_connection_attempt = Mock()
    monitor.measure_time = Mock()
    monitor.get_metrics = Mock(return_value={})

    # Mock the context manager for measure_time
    mock_context = MagicMock()
    mock_context.__enter__ = Mock(return_value=mock_context)
    mock_context.__exit__ = Mock(return_value=None)
    monitor.measure_time.return_value = mock_context

    return monitor


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def sample_reading():
    """Reading decoded from the reference payload."""
    return SensorReading(
        nh3_ppm=1.2,
        h2s_ppm=0.3,
        co2_ppm=400.0,
        ch4_ppm=10.0,
        stage=1,
        confidence=0.8,
        temperature=22.5,
        humidity=60.0,
        timestamp=datetime(2024, 1, 1, 12, 0, 0)
    )


@pytest.fixture
def make_session():
    """Factory for device sessions."""
    def _make_session(address: str = "AA:BB:CC:DD:EE:07", name: str = "ESP32_SPOILAGE_7",
                      device_id: int = 7, history_capacity: int = 50) -> DeviceSession:
        return DeviceSession(
            device_id=device_id,
            name=name,
            address=address,
            handle=address,
            history_capacity=history_capacity
        )

    return _make_session


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_bluetooth: mark test as requiring Bluetooth hardware"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
