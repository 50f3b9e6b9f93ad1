"""
Background monitor service for spoilage gas sensors.
Discovers sensors, keeps them connected and reports health while running.
"""

import asyncio
import signal
import sys
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import psutil

from ..ble.connection import Notice, SensorConnectionManager
from ..ble.scanner import DiscoveredDevice, ScannerError, ScannerInitError, SensorScanner
from ..devices.reading import SensorReading
from ..devices.registry import DeviceRegistry
from ..devices.session import ConnectionState, DeviceSession
from ..exceptions.edge_cases import EdgeCaseHandler
from ..utils.config import Config
from ..utils.logging import ProductionLogger, PerformanceMonitor, setup_logging


@dataclass
class MonitorStats:
    """Monitor statistics container."""
    start_time: datetime
    uptime_seconds: int
    scan_cycles: int
    sensors_discovered: int
    readings_received: int
    errors_count: int
    last_scan_time: Optional[datetime] = None
    last_reading_time: Optional[datetime] = None
    memory_usage_mb: Optional[float] = None
    cpu_usage_percent: Optional[float] = None


class MonitorServiceError(Exception):
    """Base exception for monitor service operations."""
    pass


class MonitorService:
    """
    Long-running monitor for spoilage gas sensors.

    Features:
    - Periodic discovery with automatic connection of new sensors
    - Reconnection of sensors that dropped their link
    - Resource and statistics reporting
    - Graceful shutdown on SIGINT/SIGTERM
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config
        self.logger: Optional[ProductionLogger] = None
        self.performance_monitor: Optional[PerformanceMonitor] = None
        self.registry = DeviceRegistry()
        self.scanner: Optional[SensorScanner] = None
        self.connection_manager: Optional[SensorConnectionManager] = None
        self.edge_case_handler: Optional[EdgeCaseHandler] = None

        # Service state
        self._running = False
        self._shutdown_requested = False
        self._discovery_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None

        self._stats = MonitorStats(
            start_time=datetime.now(),
            uptime_seconds=0,
            scan_cycles=0,
            sensors_discovered=0,
            readings_received=0,
            errors_count=0
        )

        # Error recovery
        self._consecutive_errors = 0
        self._max_consecutive_errors = 10

        self._data_callbacks: Set[Callable[[DeviceSession, SensorReading], None]] = set()
        self._status_callbacks: Set[Callable[[Dict[str, Any]], None]] = set()

    def add_data_callback(self, callback: Callable[[DeviceSession, SensorReading], None]):
        self._data_callbacks.add(callback)

    def remove_data_callback(self, callback: Callable[[DeviceSession, SensorReading], None]):
        self._data_callbacks.discard(callback)

    def add_status_callback(self, callback: Callable[[Dict[str, Any]], None]):
        self._status_callbacks.add(callback)

    def remove_status_callback(self, callback: Callable[[Dict[str, Any]], None]):
        self._status_callbacks.discard(callback)

    def _initialize_components(self):
        """Initialize all service components."""
        try:
            if self.config is None:
                self.config = Config()
            self.config.validate_environment()

            self.logger = setup_logging(self.config)
            self.performance_monitor = PerformanceMonitor(self.logger.get_logger('gasmon.performance'))

            self.scanner = SensorScanner(
                self.config,
                self.logger.get_logger('gasmon.ble'),
                self.performance_monitor,
                self.registry
            )
            self.connection_manager = SensorConnectionManager(
                self.config,
                self.logger.get_logger('gasmon.connection'),
                self.performance_monitor,
                self.registry
            )
            self.edge_case_handler = EdgeCaseHandler(self.config, self.logger)

            self.scanner.add_callback(self._handle_discovery)
            self.connection_manager.add_data_callback(self._handle_reading)
            self.connection_manager.add_notice_callback(self._handle_notice)

            self.logger.info("Monitor components initialized successfully")

        except Exception as e:
            if self.logger:
                self.logger.error(f"Component initialization failed: {e}")
            raise MonitorServiceError(f"Initialization failed: {e}") from e

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            if self.logger:
                self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
            self._shutdown_requested = True

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def _handle_discovery(self, device: DiscoveredDevice):
        self._stats.sensors_discovered += 1

    def _handle_reading(self, session: DeviceSession, reading: SensorReading):
        self._stats.readings_received += 1
        self._stats.last_reading_time = reading.timestamp

        for callback in self._data_callbacks:
            try:
                callback(session, reading)
            except Exception as e:
                self.logger.warning(f"Data callback failed: {e}")

    def _handle_notice(self, notice: Notice):
        if notice.is_error:
            self.logger.warning(notice.message)
        else:
            self.logger.info(notice.message)

    async def scan_and_connect(self) -> List[DiscoveredDevice]:
        """
        Run one discovery cycle.

        Scans once, connects newly found sensors when auto-connect is on and
        reconnects sessions whose link dropped.

        Returns:
            List[DiscoveredDevice]: Sensors found by the scan
        """
        try:
            discovered = await self.scanner.scan_once()
        except ScannerInitError as e:
            self._record_error()
            _, guidance = self.edge_case_handler.handle_ble_adapter_error(e)
            self.logger.error(f"BLE adapter unavailable: {e}\n{guidance}")
            return []
        except ScannerError as e:
            self._record_error()
            self.logger.error(f"Discovery cycle failed: {e}")
            return []

        self._stats.scan_cycles += 1
        self._stats.last_scan_time = datetime.now()
        self._consecutive_errors = 0

        if not self.config.monitor_auto_connect:
            return discovered

        targets: List[Any] = list(discovered)
        targets.extend(
            session.handle if session.handle is not None else session.address
            for session in self.registry.sessions()
            if session.state == ConnectionState.DISCONNECTED
        )
        if targets:
            results = await asyncio.gather(
                *(self.connection_manager.connect(target) for target in targets),
                return_exceptions=True
            )
            for target, result in zip(targets, results):
                if isinstance(result, Exception):
                    self._record_error()
                    self.logger.error(f"Connecting {getattr(target, 'address', target)} failed: {result}")

        return discovered

    def _record_error(self):
        self._consecutive_errors += 1
        self._stats.errors_count += 1
        if self._consecutive_errors >= self._max_consecutive_errors:
            self.logger.critical("Too many consecutive errors, shutting down...")
            self._shutdown_requested = True

    async def _discovery_loop(self):
        self.logger.info("Starting discovery loop...")
        interval = self.config.monitor_rescan_interval

        while self._running and not self._shutdown_requested:
            await self.scan_and_connect()
            if interval <= 0:
                break
            await asyncio.sleep(interval)

        self.logger.info("Discovery loop stopped")

    async def _statistics_loop(self):
        self.logger.info("Starting statistics loop...")
        interval = self.config.performance_log_interval

        while self._running and not self._shutdown_requested:
            await asyncio.sleep(interval)
            self._update_resource_usage()

            if self.config.enable_performance_monitoring:
                self.performance_monitor.log_system_resources()

            sessions = self.registry.get_statistics()
            self.logger.info(
                f"Sessions: {sessions['total']} total, {sessions[ConnectionState.READY.value]} ready, "
                f"{sessions[ConnectionState.ERROR.value]} in error; "
                f"readings received: {self._stats.readings_received}"
            )

            status = self.get_status()
            for callback in self._status_callbacks:
                try:
                    callback(status)
                except Exception as e:
                    self.logger.warning(f"Status callback failed: {e}")

        self.logger.info("Statistics loop stopped")

    def _update_resource_usage(self):
        self._stats.uptime_seconds = int((datetime.now() - self._stats.start_time).total_seconds())
        try:
            process = psutil.Process()
            self._stats.memory_usage_mb = process.memory_info().rss / 1024 / 1024
            self._stats.cpu_usage_percent = process.cpu_percent()
        except psutil.Error as e:
            self.logger.warning(f"Unable to read process resources: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Get current service status."""
        return {
            "running": self._running,
            "shutdown_requested": self._shutdown_requested,
            "stats": asdict(self._stats),
            "consecutive_errors": self._consecutive_errors,
            "sessions": [session.summary() for session in self.registry.sessions()],
            "components": {
                "config": self.config is not None,
                "logger": self.logger is not None,
                "scanner": self.scanner is not None,
                "connection_manager": self.connection_manager is not None,
            }
        }

    def get_statistics(self) -> MonitorStats:
        return self._stats

    def request_shutdown(self):
        self._shutdown_requested = True

    async def start(self, install_signal_handlers: bool = True):
        """Start the service and run until shutdown is requested."""
        if self._running:
            raise MonitorServiceError("Monitor service is already running")

        self._initialize_components()

        try:
            self.logger.info("Starting Spoilage Gas Monitor service...")

            if install_signal_handlers:
                self._setup_signal_handlers()

            self._running = True
            self._discovery_task = asyncio.create_task(self._discovery_loop())
            self._stats_task = asyncio.create_task(self._statistics_loop())

            self.logger.info("Spoilage Gas Monitor service started successfully")

            while self._running and not self._shutdown_requested:
                await asyncio.sleep(1)

        except Exception as e:
            self.logger.error(f"Monitor service failed: {e}")
            raise MonitorServiceError(f"Service failed: {e}") from e
        finally:
            await self.stop()

    async def stop(self):
        """Stop the service gracefully."""
        if not self._running:
            return

        self.logger.info("Stopping Spoilage Gas Monitor service...")
        self._running = False

        for task in (self._discovery_task, self._stats_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self.connection_manager:
            await self.connection_manager.shutdown()

        if self.scanner:
            await self.scanner.cleanup()

        self.logger.info("Spoilage Gas Monitor service stopped")


async def run_monitor_service():
    """Run the monitor service from the command line."""
    service = MonitorService()

    try:
        await service.start()
    except KeyboardInterrupt:
        print("\nMonitor interrupted by user")
    except MonitorServiceError as e:
        print(f"Monitor service failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(run_monitor_service())
