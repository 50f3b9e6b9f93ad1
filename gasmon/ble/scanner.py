"""
Bluetooth Low Energy discovery for spoilage gas sensors.
Handles async BLE scanning, sensor filtering and de-duplication, with retry
logic around scanner initialization.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from ..devices.registry import DeviceRegistry
from ..utils.config import Config
from ..utils.logging import ProductionLogger, PerformanceMonitor


UNKNOWN_DEVICE_NAME = "Unknown Device"
SENSOR_NAME_MARKERS = ("ESP", "SPOILAGE", "GAS", "SENSOR")
SENSOR_SERVICE_MARKER = "12345678"

_DEVICE_ID_PATTERNS = [
    re.compile(r'ESP32_(?:SPOILAGE|GAS)_(\d+)', re.IGNORECASE),
    re.compile(r'ESP32[_-]?(\d+)', re.IGNORECASE),
    re.compile(r'(\d+)'),
]


def extract_device_id(device_name: Optional[str]) -> int:
    """
    Derive the numeric sensor id from its advertised name.

    Tries ``ESP32_SPOILAGE_<n>``/``ESP32_GAS_<n>``, then ``ESP32<sep><n>``,
    then the first run of digits anywhere in the name; defaults to 1.
    """
    for pattern in _DEVICE_ID_PATTERNS:
        match = pattern.search(device_name or "")
        if match:
            return int(match.group(1))
    return 1


def resolve_device_name(device: BLEDevice, advertisement_data: Optional[AdvertisementData]) -> str:
    """Pick the device name, falling back to the advertised local name."""
    if device.name:
        return device.name
    local_name = getattr(advertisement_data, "local_name", None)
    if local_name:
        return local_name
    return UNKNOWN_DEVICE_NAME


def is_sensor_candidate(name: str, service_uuids: List[str]) -> bool:
    """Name/service heuristic identifying spoilage sensors."""
    upper_name = name.upper()
    if any(marker in upper_name for marker in SENSOR_NAME_MARKERS):
        return True
    return any(SENSOR_SERVICE_MARKER in str(uuid).lower() for uuid in service_uuids)


@dataclass
class DiscoveredDevice:
    """A peripheral accepted during a discovery scan."""
    address: str
    name: str
    device_id: int
    rssi: Optional[int] = None
    service_uuids: List[str] = field(default_factory=list)
    device: Any = None  # bleak BLEDevice, passed on to the connection manager
    discovered_at: datetime = field(default_factory=datetime.now)


class ScannerError(Exception):
    """Base exception for scanner operations."""
    pass


class ScannerInitError(ScannerError):
    """Raised when the BLE scanner cannot be initialized."""
    pass


class ScannerOperationError(ScannerError):
    """Raised when a scan fails."""
    pass


class SensorScanner:
    """
    Fixed-duration BLE discovery for spoilage sensors.

    Features:
    - Async/await based scanning
    - Name and service UUID filtering, widened by the show-all debug toggle
    - De-duplication by platform address, skipping devices already in the registry
    - Retry logic around scanner initialization
    - Performance monitoring
    """

    def __init__(self, config: Config, logger: ProductionLogger, performance_monitor: PerformanceMonitor,
                 registry: Optional[DeviceRegistry] = None):
        """
        Initialize BLE scanner.

        Args:
            config: Application configuration
            logger: Logger instance
            performance_monitor: Performance monitoring instance
            registry: Sessions whose devices are excluded from discovery results
        """
        self.config = config
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.registry = registry

        self.scan_duration = config.ble_scan_duration
        self.retry_attempts = config.ble_retry_attempts
        self.retry_delay = config.ble_retry_delay
        self.adapter = config.ble_adapter
        self.show_all_devices = config.show_all_devices

        # State management
        self._scanner: Optional[BleakScanner] = None
        self._is_scanning = False
        self._discovered_devices: Dict[str, DiscoveredDevice] = {}
        self._callbacks: List[Callable[[DiscoveredDevice], None]] = []

        # Statistics
        self._scan_count = 0
        self._device_count = 0
        self._error_count = 0
        self._last_scan_time: Optional[datetime] = None

        self.logger.info(f"SensorScanner initialized with adapter: {self.adapter}")

    def add_callback(self, callback: Callable[[DiscoveredDevice], None]):
        """
        Add callback for discovery events.

        Args:
            callback: Function called once for each newly listed device
        """
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[DiscoveredDevice], None]):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, discovered: DiscoveredDevice):
        for callback in self._callbacks:
            try:
                callback(discovered)
            except Exception as e:
                self.logger.error(f"Error in discovery callback {getattr(callback, '__name__', callback)}: {e}")

    def _should_list(self, name: str, service_uuids: List[str]) -> bool:
        # Show-all only widens the filter; it never hides a sensor
        if self.show_all_devices and name != UNKNOWN_DEVICE_NAME:
            return True
        return is_sensor_candidate(name, service_uuids)

    def _detection_callback(self, device: BLEDevice, advertisement_data: AdvertisementData):
        """
        Callback for BLE device detection.

        Args:
            device: Detected BLE device
            advertisement_data: Advertisement data
        """
        try:
            name = resolve_device_name(device, advertisement_data)
            rssi = getattr(advertisement_data, "rssi", None)
            self.logger.debug(f"Discovered: {name} ({device.address}) RSSI: {rssi}")

            if device.address in self._discovered_devices:
                return
            if self.registry is not None and device.address in self.registry:
                return

            service_uuids = list(getattr(advertisement_data, "service_uuids", None) or [])
            if not self._should_list(name, service_uuids):
                return

            discovered = DiscoveredDevice(
                address=device.address,
                name=name,
                device_id=extract_device_id(name),
                rssi=rssi,
                service_uuids=service_uuids,
                device=device,
            )
            self._discovered_devices[device.address] = discovered
            self._device_count += 1

            self.logger.info(
                f"Discovered sensor: {name} ({device.address}, id {discovered.device_id}, RSSI: {rssi}dBm)"
            )
            self._notify_callbacks(discovered)
            self.performance_monitor.record_metric("ble_devices_discovered", 1)

        except Exception as e:
            self.logger.error(f"Error processing BLE device {getattr(device, 'address', '?')}: {e}")
            self._error_count += 1
            self.performance_monitor.record_metric("ble_scan_errors", 1)

    async def _initialize_scanner(self) -> BleakScanner:
        """
        Initialize BLE scanner with retry logic.

        Returns:
            BleakScanner: Initialized scanner

        Raises:
            ScannerInitError: If scanner initialization fails
        """
        for attempt in range(self.retry_attempts):
            try:
                scanner = BleakScanner(
                    detection_callback=self._detection_callback,
                    adapter=self.adapter if self.adapter != "auto" else None
                )

                # Test scanner availability
                await scanner.start()
                await asyncio.sleep(0.1)
                await scanner.stop()

                self.logger.debug(f"BLE scanner initialized successfully (attempt {attempt + 1})")
                return scanner

            except Exception as e:
                self.logger.warning(f"Scanner init attempt {attempt + 1} failed: {e}")
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay)
                else:
                    raise ScannerInitError(
                        f"Failed to initialize scanner after {self.retry_attempts} attempts: {e}"
                    ) from e

    async def check_adapter(self) -> bool:
        """
        Verify a BLE adapter is available and usable.

        Raises:
            ScannerInitError: If no scanner could be started
        """
        if self._scanner is None:
            self._scanner = await self._initialize_scanner()
        return True

    async def scan_once(self, duration: Optional[float] = None) -> List[DiscoveredDevice]:
        """
        Perform a single fixed-duration scan for sensors.

        Args:
            duration: Scan duration in seconds (uses config default if None)

        Returns:
            List[DiscoveredDevice]: Devices listed during this scan, in discovery order

        Raises:
            ScannerOperationError: If scan operation fails
        """
        scan_duration = duration or self.scan_duration
        start_time = time.time()

        with self.performance_monitor.measure_time("ble_scan"):
            try:
                self._discovered_devices.clear()

                if self._scanner is None:
                    self._scanner = await self._initialize_scanner()

                self.logger.info(f"Starting BLE scan for {scan_duration} seconds...")

                await self._scanner.start()
                self._is_scanning = True
                self._last_scan_time = datetime.now()

                await asyncio.sleep(scan_duration)

                await self._scanner.stop()
                self._is_scanning = False

                self._scan_count += 1
                self.logger.info(f"BLE scan completed. Found {len(self._discovered_devices)} sensors")
                self.performance_monitor.log_ble_scan(
                    time.time() - start_time, len(self._discovered_devices), True
                )

                return list(self._discovered_devices.values())

            except ScannerInitError:
                self._error_count += 1
                raise
            except Exception as e:
                self._error_count += 1
                self.performance_monitor.log_ble_scan(time.time() - start_time, 0, False)
                self.logger.error(f"BLE scan failed: {e}")

                if self._is_scanning and self._scanner:
                    try:
                        await self._scanner.stop()
                    except Exception as stop_error:
                        self.logger.warning(f"Error stopping scanner: {stop_error}")
                    self._is_scanning = False

                raise ScannerOperationError(f"BLE scan failed: {e}") from e

    def is_scanning(self) -> bool:
        return self._is_scanning

    def get_discovered_devices(self) -> List[DiscoveredDevice]:
        """
        Get devices listed by the latest scan.

        Returns:
            List[DiscoveredDevice]: Discovered devices in discovery order
        """
        return list(self._discovered_devices.values())

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get scanner statistics.

        Returns:
            Dict[str, Any]: Scanner statistics
        """
        return {
            "scan_count": self._scan_count,
            "device_count": self._device_count,
            "error_count": self._error_count,
            "last_scan_time": self._last_scan_time,
            "is_scanning": self._is_scanning,
            "discovered_devices": len(self._discovered_devices),
            "callbacks_registered": len(self._callbacks)
        }

    def reset_statistics(self):
        self._scan_count = 0
        self._device_count = 0
        self._error_count = 0
        self._last_scan_time = None

    async def cleanup(self):
        """Cleanup scanner resources."""
        if self._scanner:
            if self._is_scanning:
                try:
                    await self._scanner.stop()
                except Exception as e:
                    self.logger.warning(f"Error stopping scanner: {e}")
            self._is_scanning = False
            self._scanner = None

        self._callbacks.clear()
        self._discovered_devices.clear()

        self.logger.info("BLE scanner cleanup completed")
