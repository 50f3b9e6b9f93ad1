"""
Spoilage Gas Monitor - BLE gas sensor monitoring.

Discovers spoilage gas sensors over Bluetooth Low Energy, keeps a connection
session per sensor and decodes the JSON readings they notify: NH3, H2S, CO2
and CH4 concentrations plus the spoilage stage computed on the sensor.

Features:
- Sensor discovery with name/service filtering
- Connection lifecycle with timeout, capped retries and removal
- Bounded reading history per sensor
- Interactive CLI with live dashboard
- Background monitor service
- Performance monitoring and logging
- Configuration management with environment variables
"""

__version__ = "1.0.0"
__author__ = "Spoilage Gas Monitor Team"
__description__ = "BLE spoilage gas sensor monitoring"

# Package imports for convenience
from .utils.config import Config
from .utils.logging import ProductionLogger, PerformanceMonitor
from .devices.reading import GasChannel, SensorReading
from .devices.session import ConnectionState, DeviceSession
from .devices.registry import DeviceRegistry
from .ble.scanner import SensorScanner, DiscoveredDevice
from .ble.connection import SensorConnectionManager
from .service.monitor import MonitorService

__all__ = [
    "Config",
    "ProductionLogger",
    "PerformanceMonitor",
    "GasChannel",
    "SensorReading",
    "ConnectionState",
    "DeviceSession",
    "DeviceRegistry",
    "SensorScanner",
    "DiscoveredDevice",
    "SensorConnectionManager",
    "MonitorService",
]
