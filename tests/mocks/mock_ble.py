"""
Mock bleak scanner and client for testing without Bluetooth hardware.
Scenarios are deterministic so connection lifecycle timing can be asserted.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from bleak.exc import BleakError

SENSOR_SERVICE_UUID = "12345678-1234-5678-9abc-def123456789"
SENSOR_TX_CHAR_UUID = "87654321-4321-1234-5678-abc123456789"


class MockBLEDevice:
    """Mock BLE device that mimics bleak's BLEDevice."""

    def __init__(self, address: str, name: Optional[str] = None):
        self.address = address
        self.name = name

    def __repr__(self):
        return f"MockBLEDevice(address='{self.address}', name='{self.name}')"


class MockAdvertisementData:
    """Mock advertisement data that mimics bleak's AdvertisementData."""

    def __init__(self, rssi: int = -60, local_name: Optional[str] = None,
                 service_uuids: Optional[List[str]] = None):
        self.rssi = rssi
        self.local_name = local_name
        self.service_uuids = service_uuids or []
        self.manufacturer_data = {}
        self.service_data = {}


class MockBleakScanner:
    """
    Mock BLE scanner replaying a fixed list of advertisements on start().

    Each advertisement is a (device, advertisement_data) pair; repeating a
    pair simulates the same peripheral advertising several times.
    """

    advertisements: List[tuple] = []
    fail_start = False

    def __init__(self, detection_callback=None, adapter=None):
        self.detection_callback = detection_callback
        self.adapter = adapter
        self._is_scanning = False
        self.start_count = 0

    async def start(self):
        if self.fail_start:
            raise BleakError("Bluetooth adapter not found")
        self._is_scanning = True
        self.start_count += 1
        if self.detection_callback:
            for device, advertisement_data in self.advertisements:
                self.detection_callback(device, advertisement_data)

    async def stop(self):
        self._is_scanning = False


def scanner_with(advertisements: List[tuple], fail_start: bool = False):
    """Build a MockBleakScanner subclass replaying the given advertisements."""
    return type("ConfiguredMockBleakScanner", (MockBleakScanner,), {
        "advertisements": list(advertisements),
        "fail_start": fail_start,
    })


def advertisement(address: str, name: Optional[str], rssi: int = -60,
                  service_uuids: Optional[List[str]] = None, local_name: Optional[str] = None):
    return (
        MockBLEDevice(address, name),
        MockAdvertisementData(rssi=rssi, local_name=local_name, service_uuids=service_uuids),
    )


class MockCharacteristic:
    def __init__(self, uuid: str):
        self.uuid = uuid


class MockService:
    def __init__(self, uuid: str, characteristics: Optional[List[MockCharacteristic]] = None):
        self.uuid = uuid
        self.characteristics = characteristics or []


class MockBleakClient:
    """Mock BLE client driven by the owning MockClientFactory."""

    def __init__(self, factory: 'MockClientFactory', address_or_device: Any,
                 disconnected_callback: Optional[Callable] = None, **kwargs):
        self.factory = factory
        self.address_or_device = address_or_device
        self.disconnected_callback = disconnected_callback
        self.kwargs = kwargs
        self.is_connected = False
        self.services: List[MockService] = []
        self.notify_callback: Optional[Callable] = None
        self.notify_characteristic: Any = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.stop_notify_calls = 0

    async def connect(self, timeout: float = 10.0):
        self.connect_calls += 1
        self.factory.connect_attempts += 1
        if self.factory.connect_delay:
            await asyncio.sleep(self.factory.connect_delay)
        if self.factory.connect_attempts <= self.factory.fail_connects:
            raise BleakError("Device not found")
        self.is_connected = True
        self.services = self.factory.build_services()
        return True

    async def start_notify(self, characteristic: Any, callback: Callable):
        if self.factory.fail_start_notify:
            raise BleakError("Notify not permitted")
        self.notify_characteristic = characteristic
        self.notify_callback = callback

    async def stop_notify(self, characteristic: Any):
        self.stop_notify_calls += 1
        self.notify_callback = None

    async def disconnect(self):
        self.disconnect_calls += 1
        if self.factory.fail_disconnect:
            raise BleakError("Disconnect failed")
        was_connected = self.is_connected
        self.is_connected = False
        if was_connected and self.disconnected_callback:
            self.disconnected_callback(self)
        return True

    def trigger_notification(self, text: str):
        """Deliver one notification as the peripheral would."""
        self.notify_callback(self.notify_characteristic, bytearray(text.encode("utf-8")))

    def trigger_disconnect(self):
        """Simulate the peripheral dropping the link."""
        self.is_connected = False
        if self.disconnected_callback:
            self.disconnected_callback(self)


class MockClientFactory:
    """
    Stand-in for the BleakClient class with a configurable scenario.

    Args:
        fail_connects: Number of initial connect calls that fail
        connect_delay: Seconds each connect call takes
        include_service: Whether the sensor service is exposed
        include_tx_char: Whether the TX characteristic is exposed
    """

    def __init__(self, fail_connects: int = 0, connect_delay: float = 0.0,
                 include_service: bool = True, include_tx_char: bool = True,
                 fail_start_notify: bool = False, fail_disconnect: bool = False):
        self.fail_connects = fail_connects
        self.connect_delay = connect_delay
        self.include_service = include_service
        self.include_tx_char = include_tx_char
        self.fail_start_notify = fail_start_notify
        self.fail_disconnect = fail_disconnect
        self.connect_attempts = 0
        self.clients: List[MockBleakClient] = []

    def __call__(self, address_or_device: Any, disconnected_callback: Optional[Callable] = None, **kwargs):
        client = MockBleakClient(self, address_or_device, disconnected_callback, **kwargs)
        self.clients.append(client)
        return client

    @property
    def last_client(self) -> MockBleakClient:
        return self.clients[-1]

    def build_services(self) -> List[MockService]:
        services = [MockService("00001800-0000-1000-8000-00805f9b34fb")]
        if self.include_service:
            characteristics = [MockCharacteristic("0000aaaa-0000-1000-8000-00805f9b34fb")]
            if self.include_tx_char:
                characteristics.append(MockCharacteristic(SENSOR_TX_CHAR_UUID.upper()))
            services.append(MockService(SENSOR_SERVICE_UUID.upper(), characteristics))
        return services


def patch_bleak_client(monkeypatch, factory: MockClientFactory) -> MockClientFactory:
    monkeypatch.setattr("gasmon.ble.connection.BleakClient", factory)
    return factory


def patch_bleak_scanner(monkeypatch, scanner_class) -> Any:
    monkeypatch.setattr("gasmon.ble.scanner.BleakScanner", scanner_class)
    return scanner_class


class RecordingCallbacks:
    """Collects notices and readings emitted by the connection manager."""

    def __init__(self):
        self.notices: List[Any] = []
        self.readings: List[Dict[str, Any]] = []

    def on_notice(self, notice):
        self.notices.append(notice)

    def on_reading(self, session, reading):
        self.readings.append({"address": session.address, "reading": reading})

    @property
    def error_messages(self) -> List[str]:
        return [notice.message for notice in self.notices if notice.is_error]
