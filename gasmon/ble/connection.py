"""
Connection lifecycle for spoilage gas sensors.

Drives each peripheral through disconnected -> connecting -> connected ->
ready, with a bounded timeout over the whole sequence, capped automatic
retries and removal of sessions that keep failing. Notification payloads are
ingested into the owning DeviceSession.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from bleak import BleakClient
from bleak.backends.device import BLEDevice

from .payload import PayloadError, decode_notification, parse_payload
from .scanner import DiscoveredDevice, extract_device_id
from ..devices.reading import SensorReading
from ..devices.registry import DeviceRegistry
from ..devices.session import ConnectionState, DeviceSession
from ..utils.config import Config
from ..utils.logging import ProductionLogger, PerformanceMonitor


class ConnectionManagerError(Exception):
    """Base exception for connection lifecycle operations."""
    pass


class TransportError(ConnectionManagerError):
    """Raised when the peripheral does not expose what the sequence needs."""
    pass


@dataclass
class Notice:
    """Transient user-facing message about a device."""
    message: str
    is_error: bool = False
    address: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class SensorConnectionManager:
    """
    Owns the connection state machine for every sensor session.

    Every transport call is wrapped; a failure moves the session to error and
    schedules a retry until the attempt cap is reached, after which the
    session is dropped from the registry once the grace delay has passed.
    """

    def __init__(self, config: Config, logger: ProductionLogger, performance_monitor: PerformanceMonitor,
                 registry: Optional[DeviceRegistry] = None):
        self.config = config
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.registry = registry if registry is not None else DeviceRegistry()

        self.adapter = config.ble_adapter
        self.service_uuid = config.ble_service_uuid.lower()
        self.tx_char_uuid = config.ble_tx_char_uuid.lower()
        self.connect_timeout = config.ble_connect_timeout
        self.connection_timeout = config.ble_connection_timeout
        self.service_discovery_delay = config.ble_service_discovery_delay
        self.characteristic_access_delay = config.ble_characteristic_access_delay
        self.notify_settle_delay = config.ble_notify_settle_delay
        self.disconnect_settle_delay = config.ble_disconnect_settle_delay
        self.max_connection_attempts = config.ble_max_connection_attempts
        self.reconnect_delay = config.ble_reconnect_delay
        self.removal_grace_delay = config.ble_removal_grace_delay
        self.history_capacity = config.history_capacity

        self._notice_callbacks: List[Callable[[Notice], None]] = []
        self._data_callbacks: List[Callable[[DeviceSession, SensorReading], None]] = []
        self.recent_notices: Deque[Notice] = deque(maxlen=20)

        # Statistics
        self._readings_received = 0
        self._payload_errors = 0
        self._connection_failures = 0

    # Callbacks

    def add_notice_callback(self, callback: Callable[[Notice], None]):
        self._notice_callbacks.append(callback)

    def remove_notice_callback(self, callback: Callable[[Notice], None]):
        if callback in self._notice_callbacks:
            self._notice_callbacks.remove(callback)

    def add_data_callback(self, callback: Callable[[DeviceSession, SensorReading], None]):
        self._data_callbacks.append(callback)

    def remove_data_callback(self, callback: Callable[[DeviceSession, SensorReading], None]):
        if callback in self._data_callbacks:
            self._data_callbacks.remove(callback)

    def _notify(self, message: str, is_error: bool = False, session: Optional[DeviceSession] = None):
        notice = Notice(message=message, is_error=is_error, address=session.address if session else None)
        self.recent_notices.append(notice)
        for callback in self._notice_callbacks:
            try:
                callback(notice)
            except Exception as e:
                self.logger.error(f"Error in notice callback: {e}")

    def _emit_reading(self, session: DeviceSession, reading: SensorReading):
        for callback in self._data_callbacks:
            try:
                callback(session, reading)
            except Exception as e:
                self.logger.error(f"Error in data callback: {e}")

    def _transition(self, session: DeviceSession, new_state: ConnectionState):
        previous = session.state
        session.transition(new_state)
        self.logger.debug(
            f"Device {session.device_id} state: {previous.display_text} -> {new_state.display_text}"
        )

    # Connect

    async def connect(self, device: Union[DiscoveredDevice, BLEDevice, str],
                      name: Optional[str] = None) -> DeviceSession:
        """
        Connect to a sensor and wait for the first attempt to settle.

        Args:
            device: Discovery result, bleak device, or bare address
            name: Advertised name, used when only an address is given

        Returns:
            DeviceSession: The registered session (ready, or in error with a retry pending)
        """
        if isinstance(device, str):
            # Without an advertised name the address alone says nothing about the device id
            address, handle = device, device
            device_name = name or device
            id_source = name
        elif isinstance(device, DiscoveredDevice):
            address = device.address
            handle = device.device if device.device is not None else device.address
            device_name = name or device.name
            id_source = device_name
        else:
            address, handle = device.address, device
            device_name = name or device.name or "Unknown"
            id_source = name or device.name

        session = self.registry.get(address)
        if session is not None and session.is_active:
            self.logger.warning(f"Device {session.device_id} ({address}) already connected")
            self._notify(f"Device {session.device_id} already connected", session=session)
            return session

        if session is None:
            session = DeviceSession(
                device_id=extract_device_id(id_source),
                name=device_name,
                address=address,
                handle=handle,
                history_capacity=self.history_capacity,
            )
            self.registry.add(session)
        else:
            # Reconnect of a disconnected or failed session keeps its retry count
            session.cancel_timers()
            session.handle = handle

        self._start_attempt(session)
        await self.wait_for_attempt(session)
        return session

    def _start_attempt(self, session: DeviceSession) -> asyncio.Task:
        session.closing = False
        self._transition(session, ConnectionState.CONNECTING)
        session.connect_task = asyncio.create_task(self._connection_attempt(session))
        return session.connect_task

    async def wait_for_attempt(self, session: DeviceSession):
        """Wait until the in-flight connect attempt of a session has finished."""
        task = session.connect_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _connection_attempt(self, session: DeviceSession):
        self.logger.info(f"Connecting to Device {session.device_id} ({session.address})...")
        start_time = time.time()
        try:
            await asyncio.wait_for(self._establish(session), timeout=self.connection_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"Connection timeout for Device {session.device_id}")
            await self._fail_attempt(session, "Connection timeout", start_time)
        except Exception as e:
            self.logger.error(f"Connection error for Device {session.device_id}: {e}")
            await self._fail_attempt(session, str(e) or type(e).__name__, start_time)
        else:
            self.performance_monitor.log_connection_attempt(session.address, time.time() - start_time, True)

    async def _establish(self, session: DeviceSession):
        """Run the connect sequence up to the ready state."""
        kwargs: Dict[str, Any] = {}
        if self.adapter != "auto":
            kwargs["adapter"] = self.adapter

        client = BleakClient(
            session.handle,
            disconnected_callback=partial(self._on_transport_disconnected, session),
            **kwargs
        )
        session.client = client

        await client.connect(timeout=self.connect_timeout)
        self._transition(session, ConnectionState.CONNECTED)

        # The peripheral stack needs a moment before discovery is reliable
        await asyncio.sleep(self.service_discovery_delay)

        services = list(client.services or [])
        if not services:
            raise TransportError("No services discovered")
        self.logger.debug(f"Found {len(services)} services on Device {session.device_id}")

        target_service = next(
            (service for service in services if str(service.uuid).lower() == self.service_uuid), None
        )
        if target_service is None:
            raise TransportError(f"Target service {self.service_uuid} not found")

        await asyncio.sleep(self.characteristic_access_delay)

        tx_characteristic = next(
            (char for char in target_service.characteristics if str(char.uuid).lower() == self.tx_char_uuid),
            None
        )
        if tx_characteristic is None:
            raise TransportError("TX characteristic not found")

        await client.start_notify(tx_characteristic, partial(self._handle_notification, session))
        session.notifications_active = True
        await asyncio.sleep(self.notify_settle_delay)

        self._transition(session, ConnectionState.READY)
        session.retry_count = 0
        self.logger.info(f"Device {session.device_id} ready to receive data")
        self._notify(f"Connected to Device {session.device_id} - Ready for data!", session=session)

    async def _fail_attempt(self, session: DeviceSession, message: str, start_time: float):
        self.performance_monitor.log_connection_attempt(session.address, time.time() - start_time, False)
        self._connection_failures += 1

        if self.registry.get(session.address) is not session or session.closing:
            return

        client = session.client
        session.client = None
        session.notifications_active = False

        self._handle_connection_error(session, message)

        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:
                self.logger.warning(f"Error releasing link to Device {session.device_id}: {e}")

    def _handle_connection_error(self, session: DeviceSession, message: str):
        session.cancel_timers(include_connect=False)
        self._transition(session, ConnectionState.ERROR)
        session.last_error = message
        session.retry_count += 1

        self._notify(f"Error connecting to Device {session.device_id}: {message}", is_error=True, session=session)

        if session.retry_count < self.max_connection_attempts:
            self.logger.info(
                f"Will retry connection for Device {session.device_id} "
                f"(attempt {session.retry_count + 1}/{self.max_connection_attempts})"
            )
            session.retry_task = asyncio.create_task(self._retry_later(session))
        else:
            self.logger.warning(f"Max connection attempts reached for Device {session.device_id}")
            session.removal_task = asyncio.create_task(self._remove_later(session))

    async def _retry_later(self, session: DeviceSession):
        await asyncio.sleep(self.reconnect_delay)
        session.retry_task = None
        if self.registry.get(session.address) is not session or session.state != ConnectionState.ERROR:
            return
        self._start_attempt(session)

    async def _remove_later(self, session: DeviceSession):
        await asyncio.sleep(self.removal_grace_delay)
        session.removal_task = None
        if self.registry.get(session.address) is session:
            self.registry.remove(session.address)
            self.logger.info(
                f"Removed Device {session.device_id} after {session.retry_count} failed connection attempts"
            )

    # Data ingestion

    def _handle_notification(self, session: DeviceSession, sender: Any, data: bytearray):
        text = decode_notification(data)
        self.logger.debug(f"Received from Device {session.device_id}: {text}")
        self.ingest(session, text)

    def ingest(self, session: DeviceSession, text: str) -> Optional[SensorReading]:
        """
        Apply one notification payload to a session.

        Malformed payloads leave the current reading untouched and are
        reported through the session's error text.

        Returns:
            Optional[SensorReading]: The new reading, or None if nothing was recorded
        """
        try:
            reading = parse_payload(text)
        except PayloadError as e:
            self._payload_errors += 1
            session.last_error = f"Parse error: {e}"
            self.logger.warning(f"Parse error for Device {session.device_id}: {e}")
            self.performance_monitor.record_metric("payload_errors", 1)
            return None

        if reading is None:
            self.logger.debug(f"Ignoring non-JSON payload from Device {session.device_id}")
            return None

        session.record_reading(reading)
        self._readings_received += 1
        self.logger.debug(f"Sensor data updated for Device {session.device_id}")
        self._emit_reading(session, reading)
        return reading

    # Disconnects

    def _on_transport_disconnected(self, session: DeviceSession, client: BleakClient):
        if session.client is not client or session.closing:
            return
        # A drop while still connecting surfaces as a failure of the attempt itself
        if session.state not in (ConnectionState.CONNECTED, ConnectionState.READY):
            return

        self.logger.warning(f"Device {session.device_id} disconnected unexpectedly")
        session.cancel_timers()
        session.notifications_active = False
        self._transition(session, ConnectionState.DISCONNECTED)
        session.last_error = "Disconnected unexpectedly"
        self._notify(f"Device {session.device_id} disconnected", session=session)

    async def disconnect(self, address: str) -> bool:
        """
        Disconnect a sensor on user request and drop its session.

        Cancels an in-flight connect attempt and any pending retry or removal.

        Returns:
            bool: False if no session exists for the address
        """
        session = self.registry.get(address)
        if session is None:
            self.logger.warning(f"No session for {address}")
            return False

        self.logger.info(f"Manually disconnecting Device {session.device_id}")
        session.closing = True
        session.cancel_timers()

        client = session.client
        if client is not None and session.notifications_active:
            try:
                await client.stop_notify(self.tx_char_uuid)
                self.logger.debug(f"Notifications disabled for Device {session.device_id}")
            except Exception as e:
                self.logger.warning(f"Error disabling notifications: {e}")
            session.notifications_active = False

        await asyncio.sleep(self.disconnect_settle_delay)

        if session.state != ConnectionState.DISCONNECTED:
            self._transition(session, ConnectionState.DISCONNECTED)

        error: Optional[Exception] = None
        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:
                error = e
                self.logger.error(f"Error disconnecting Device {session.device_id}: {e}")
        session.client = None

        if self.registry.get(address) is session:
            self.registry.remove(address)

        if error is not None:
            self._notify(f"Error disconnecting: {error}", is_error=True, session=session)
        else:
            self._notify(f"Disconnected from Device {session.device_id}", session=session)
        return True

    async def shutdown(self):
        """Disconnect every session."""
        for address in self.registry.addresses():
            await self.disconnect(address)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "sessions": self.registry.get_statistics(),
            "readings_received": self._readings_received,
            "payload_errors": self._payload_errors,
            "connection_failures": self._connection_failures,
        }
