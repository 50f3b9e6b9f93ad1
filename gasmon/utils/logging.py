"""
Logging configuration for the Spoilage Gas Monitor.
Provides logging setup with multiple handlers and lightweight performance metrics.
"""

import logging
import logging.handlers
import sys
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime

import colorlog
import psutil


class ProductionLogger:
    """
    Logging setup for deployment with console, rotating file and optional
    syslog handlers, plus dedicated files for the BLE components.
    """

    def __init__(self,
                 app_name: str = "gasmon",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True,
                 enable_syslog: bool = False):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_syslog = enable_syslog

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        self._setup_component_loggers()

    def _setup_root_logger(self):
        """Configure root logger with multiple handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        # Clear existing handlers
        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}.log",
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

        # Syslog handler for systemd integration
        if self.enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_handler.setLevel(logging.WARNING)
                syslog_handler.setFormatter(logging.Formatter(
                    f'{self.app_name}[%(process)d]: %(levelname)s - %(message)s'
                ))
                root_logger.addHandler(syslog_handler)
            except OSError as e:
                root_logger.warning(f"Could not set up syslog handler: {e}")

    def _component_handler(self, file_name: str, fmt: str) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / file_name,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        handler.setFormatter(logging.Formatter(fmt))
        return handler

    def _setup_component_loggers(self):
        """Configure specific loggers for different components."""
        components = [
            ('gasmon.ble', "ble_scanner.log", '%(asctime)s [%(levelname)s] BLE: %(message)s'),
            ('gasmon.connection', "connections.log", '%(asctime)s [%(levelname)s] CONN: %(message)s'),
            ('gasmon.performance', "performance.log", '%(asctime)s PERF: %(message)s'),
        ]
        for name, file_name, fmt in components:
            component_logger = logging.getLogger(name)
            component_logger.handlers.clear()
            component_logger.addHandler(self._component_handler(file_name, fmt))

    def get_logger(self, name: str = None) -> logging.Logger:
        """Get a logger instance."""
        if name:
            return logging.getLogger(name)
        return logging.getLogger()

    def debug(self, message: str, *args, **kwargs):
        logging.getLogger().debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        logging.getLogger().info(message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        logging.getLogger().warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        logging.getLogger().error(message, *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        logging.getLogger().critical(message, *args, **kwargs)


class PerformanceMonitor:
    """
    Performance monitoring and metrics collection for production debugging.

    Each metric keeps only its most recent entries so a long-running monitor
    does not grow without bound; scan and connection totals are counted
    separately.
    """

    def __init__(self, logger=None, max_entries: int = 1000):
        self.logger = logger or logging.getLogger('gasmon.performance')
        self.max_entries = max_entries
        self.metrics = {
            name: deque(maxlen=max_entries)
            for name in ('ble_scan_times', 'connection_times', 'memory_usage', 'cpu_usage')
        }
        self.totals = {'ble_scans': 0, 'ble_scans_successful': 0, 'connections': 0, 'connections_successful': 0}
        self.start_time = datetime.now()

    def log_ble_scan(self, duration: float, devices_found: int, success: bool):
        """Log BLE scan performance metrics."""
        self.metrics['ble_scan_times'].append({
            'duration': duration,
            'devices_found': devices_found,
            'success': success,
            'timestamp': datetime.now()
        })
        self.totals['ble_scans'] += 1
        if success:
            self.totals['ble_scans_successful'] += 1

        self.logger.info(
            f"BLE_SCAN duration={duration:.2f}s devices={devices_found} success={success}"
        )

    def log_connection_attempt(self, address: str, duration: float, success: bool):
        """Log the outcome of one connect sequence."""
        self.metrics['connection_times'].append({
            'address': address,
            'duration': duration,
            'success': success,
            'timestamp': datetime.now()
        })
        self.totals['connections'] += 1
        if success:
            self.totals['connections_successful'] += 1

        self.logger.info(
            f"BLE_CONNECT address={address} duration={duration:.2f}s success={success}"
        )

    def log_system_resources(self):
        """Log current system resource usage."""
        try:
            process = psutil.Process()
            memory_info = process.memory_info()
            cpu_percent = process.cpu_percent()
        except psutil.Error as e:
            self.logger.error(f"Failed to log system resources: {e}")
            return

        self.metrics['memory_usage'].append({
            'rss': memory_info.rss,
            'vms': memory_info.vms,
            'timestamp': datetime.now()
        })
        self.metrics['cpu_usage'].append({
            'cpu_percent': cpu_percent,
            'timestamp': datetime.now()
        })

        self.logger.info(
            f"RESOURCES memory_rss={memory_info.rss/1024/1024:.1f}MB "
            f"memory_vms={memory_info.vms/1024/1024:.1f}MB cpu={cpu_percent:.1f}%"
        )

    def get_performance_summary(self) -> dict:
        """Generate performance summary for the status views. Averages cover the retained entries."""
        scans = self.metrics['ble_scan_times']
        connections = self.metrics['connection_times']
        summary = {
            'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
            'ble_scans': {
                'total': self.totals['ble_scans'],
                'successful': self.totals['ble_scans_successful'],
                'avg_duration': 0,
                'avg_devices_found': 0
            },
            'connections': {
                'total': self.totals['connections'],
                'successful': self.totals['connections_successful'],
                'avg_duration': 0
            }
        }

        successful_scans = [scan for scan in scans if scan['success']]
        if successful_scans:
            summary['ble_scans']['avg_duration'] = sum(scan['duration'] for scan in successful_scans) / len(successful_scans)
            summary['ble_scans']['avg_devices_found'] = sum(scan['devices_found'] for scan in successful_scans) / len(successful_scans)

        successful_connections = [attempt for attempt in connections if attempt['success']]
        if successful_connections:
            summary['connections']['avg_duration'] = sum(a['duration'] for a in successful_connections) / len(successful_connections)

        return summary

    def record_metric(self, metric_name: str, value: float):
        """Record a metric value."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = deque(maxlen=self.max_entries)

        self.metrics[metric_name].append({
            'value': value,
            'timestamp': datetime.now()
        })

        self.logger.debug(f"METRIC {metric_name}={value}")

    def measure_time(self, operation_name: str):
        """Context manager for measuring operation time."""
        @contextmanager
        def timer():
            start_time = time.time()
            try:
                yield
            finally:
                duration = time.time() - start_time
                self.record_metric(f"{operation_name}_duration", duration)
                self.logger.info(f"TIMING {operation_name}={duration:.3f}s")

        return timer()

    def get_metrics(self) -> dict:
        """Get all recorded metrics."""
        return {name: list(entries) for name, entries in self.metrics.items()}


def setup_logging(config=None) -> ProductionLogger:
    """
    Setup logging for the Spoilage Gas Monitor using configuration.

    Args:
        config: Configuration instance (a default Config is loaded if None)

    Returns:
        ProductionLogger instance
    """
    if config is None:
        from .config import Config
        config = Config()

    return ProductionLogger(
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console,
        enable_syslog=config.log_enable_syslog
    )
