"""
Main CLI menu system for the Spoilage Gas Monitor.
Provides interactive command-line interface using click and rich.
"""

import asyncio
import sys
from typing import List, Optional, Sequence

import click
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from ..ble.connection import Notice, SensorConnectionManager
from ..ble.scanner import DiscoveredDevice, ScannerError, ScannerInitError, SensorScanner
from ..devices.registry import DeviceRegistry
from ..exceptions.edge_cases import EdgeCaseHandler
from ..service.monitor import MonitorServiceError, run_monitor_service
from ..utils.config import Config, ConfigurationError
from ..utils.logging import ProductionLogger, PerformanceMonitor, setup_logging
from . import dashboard


class CLIError(Exception):
    """Base exception for CLI operations."""
    pass


class GasMonitorCLI:
    """
    Main CLI application for the Spoilage Gas Monitor.

    Features:
    - Interactive menu system
    - Sensor discovery and connection
    - Live gas level dashboard
    - Configuration and statistics views
    """

    def __init__(self, config: Optional[Config] = None):
        self.console = Console()
        self.config = config
        self.logger: Optional[ProductionLogger] = None
        self.performance_monitor: Optional[PerformanceMonitor] = None
        self.registry = DeviceRegistry()
        self.scanner: Optional[SensorScanner] = None
        self.connection_manager: Optional[SensorConnectionManager] = None
        self.edge_handler: Optional[EdgeCaseHandler] = None

        # CLI state
        self._running = False
        self._monitoring = False
        self._last_discovery: List[DiscoveredDevice] = []

    def _initialize_components(self):
        """Initialize all components with error handling."""
        try:
            if self.config is None:
                self.config = Config()
            self.config.validate_environment()

            self.logger = setup_logging(self.config)
            self.performance_monitor = PerformanceMonitor(self.logger.get_logger('gasmon.performance'))
            self.scanner = SensorScanner(
                self.config, self.logger.get_logger('gasmon.ble'), self.performance_monitor, self.registry
            )
            self.connection_manager = SensorConnectionManager(
                self.config, self.logger.get_logger('gasmon.connection'), self.performance_monitor, self.registry
            )
            self.edge_handler = EdgeCaseHandler(self.config, self.logger)

            self.logger.info("CLI components initialized successfully")

        except ConfigurationError as e:
            self.console.print(f"[red]Configuration Error: {e}[/red]")
            raise CLIError(f"Configuration error: {e}") from e

    def _print_header(self):
        header = Panel.fit(
            "[bold blue]Spoilage Gas Monitor[/bold blue]\n"
            "[dim]BLE gas sensor monitoring[/dim]",
            border_style="blue"
        )
        self.console.print(header)
        self.console.print()

    def _print_notice(self, notice: Notice):
        style = "red" if notice.is_error else "green"
        self.console.print(f"[{style}]{notice.message}[/{style}]")

    def _print_system_status(self):
        """Print system status information."""
        if not all([self.config, self.scanner, self.connection_manager]):
            self.console.print("[red]System not initialized[/red]")
            return

        table = Table(title="System Status", show_header=True, header_style="bold magenta")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details", style="dim")

        try:
            self.config.validate_environment()
            table.add_row("Configuration", "✓ Valid", f"Environment: {self.config.environment}")
        except ConfigurationError as e:
            table.add_row("Configuration", "✗ Invalid", str(e))

        if self.config.is_virtual_environment():
            table.add_row("Virtual Environment", "✓ Active", f"Python: {sys.version.split()[0]}")
        else:
            table.add_row("Virtual Environment", "⚠ Not Active", "Consider using virtual environment")

        stats = self.scanner.get_statistics()
        filter_mode = "all named devices" if self.scanner.show_all_devices else "sensors only"
        table.add_row(
            "BLE Scanner", "✓ Ready",
            f"Scans: {stats['scan_count']}, Devices: {stats['device_count']}, Filter: {filter_mode}"
        )

        sessions = self.registry.get_statistics()
        table.add_row(
            "Sessions", f"{sessions['ready']} ready",
            f"{sessions['total']} total, {sessions['error']} in error"
        )

        self.console.print(table)
        self.console.print()

    async def _discover_sensors(self, duration: Optional[float] = None) -> List[DiscoveredDevice]:
        """Scan for sensors and print what was found."""
        scan_duration = duration or self.config.ble_scan_duration
        self.console.print(f"[blue]Scanning for gas sensors for {scan_duration:g} seconds...[/blue]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console
        ) as progress:
            progress.add_task("Scanning...", total=None)
            try:
                discovered = await self.scanner.scan_once(scan_duration)
            except ScannerInitError as e:
                _, guidance = self.edge_handler.handle_ble_adapter_error(e)
                self.console.print(f"[red]Bluetooth unavailable: {e}[/red]")
                self.console.print(guidance)
                return []
            except ScannerError as e:
                self.console.print(f"[red]Scan failed: {e}[/red]")
                return []

        self._last_discovery = discovered
        if not discovered:
            self.console.print("[yellow]No gas sensors found[/yellow]")
        else:
            self.console.print(dashboard.discovery_table(discovered))
        self.console.print()
        return discovered

    async def _connect_devices(self, targets: Sequence):
        if not targets:
            return
        await asyncio.gather(*(self.connection_manager.connect(target) for target in targets))

    async def _start_monitoring(self, targets: Sequence = (), duration: Optional[float] = None):
        """
        Connect sensors and show the live dashboard.

        Args:
            targets: Discovered devices or bare addresses to connect; scans and connects every sensor found if empty
            duration: Seconds to monitor, until Ctrl+C if None
        """
        self.connection_manager.add_notice_callback(self._print_notice)
        try:
            if targets:
                await self._connect_devices(list(targets))
            else:
                await self._connect_devices(await self._discover_sensors())
        finally:
            self.connection_manager.remove_notice_callback(self._print_notice)

        if len(self.registry) == 0:
            self.console.print("[yellow]Nothing to monitor[/yellow]")
            return

        self._monitoring = True
        self.console.print("[green]Monitoring started. Press Ctrl+C to stop.[/green]")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration else None
        try:
            with Live(self._render(), refresh_per_second=2, console=self.console) as live:
                while self._monitoring and len(self.registry) > 0:
                    if deadline is not None and loop.time() >= deadline:
                        break
                    live.update(self._render())
                    await asyncio.sleep(0.5)
        except KeyboardInterrupt:
            pass
        finally:
            await self._stop_monitoring()

    def _render(self):
        return dashboard.render_dashboard(
            self.registry.sessions(),
            self.connection_manager.recent_notices,
            self.config.ble_max_connection_attempts,
        )

    async def _stop_monitoring(self):
        self._monitoring = False
        if self.connection_manager:
            await self.connection_manager.shutdown()
        self.console.print("[yellow]Monitoring stopped[/yellow]")

    async def _disconnect_menu(self):
        sessions = self.registry.sessions()
        if not sessions:
            self.console.print("[yellow]No connected sensors[/yellow]")
            return

        self.console.print(dashboard.devices_table(sessions, self.config.ble_max_connection_attempts))
        choices = [str(index) for index in range(1, len(sessions) + 1)]
        choice = Prompt.ask("Disconnect which sensor (row number)", choices=choices)
        session = sessions[int(choice) - 1]
        await self.connection_manager.disconnect(session.address)
        self.console.print(f"[green]Disconnected Device {session.device_id}[/green]")

    def _toggle_show_all(self):
        self.scanner.show_all_devices = not self.scanner.show_all_devices
        mode = "all named devices" if self.scanner.show_all_devices else "gas sensors only"
        self.console.print(f"[blue]Discovery now lists {mode}[/blue]")

    def _show_configuration(self):
        """Show current configuration."""
        table = Table(title="Configuration", show_header=True, header_style="bold cyan")
        table.add_column("Setting", style="blue")
        table.add_column("Value", style="green")
        table.add_column("Description", style="dim")

        config_items = [
            ("Environment", self.config.environment, "Current environment"),
            ("Log Level", self.config.log_level, "Logging level"),
            ("BLE Adapter", self.config.ble_adapter, "Bluetooth adapter"),
            ("Scan Duration", f"{self.config.ble_scan_duration:g}s", "Discovery scan duration"),
            ("Show All Devices", str(self.config.show_all_devices), "List non-sensor devices"),
            ("Service UUID", self.config.ble_service_uuid, "Sensor GATT service"),
            ("TX Characteristic", self.config.ble_tx_char_uuid, "Notification characteristic"),
            ("Connection Timeout", f"{self.config.ble_connection_timeout:g}s", "Whole connect sequence"),
            ("Max Attempts", str(self.config.ble_max_connection_attempts), "Attempts before removal"),
            ("Reconnect Delay", f"{self.config.ble_reconnect_delay:g}s", "Delay before a retry"),
            ("History Capacity", str(self.config.history_capacity), "Readings kept per sensor"),
        ]
        for setting, value, description in config_items:
            table.add_row(setting, str(value), description)

        self.console.print(table)
        self.console.print()

    def _show_statistics(self):
        table = Table(title="System Statistics", show_header=True, header_style="bold green")
        table.add_column("Component", style="cyan")
        table.add_column("Metric", style="blue")
        table.add_column("Value", style="green")

        for metric, value in self.scanner.get_statistics().items():
            table.add_row("BLE Scanner", metric.replace("_", " ").title(), str(value))

        stats = self.connection_manager.get_statistics()
        for metric, value in stats.items():
            if metric != "sessions":
                table.add_row("Connections", metric.replace("_", " ").title(), str(value))
        for state, count in stats["sessions"].items():
            table.add_row("Sessions", state.title(), str(count))

        summary = self.performance_monitor.get_performance_summary()
        table.add_row("Performance", "Uptime", f"{summary['uptime_seconds']:.0f}s")
        table.add_row("Performance", "Connect Attempts", str(summary['connections']['total']))
        table.add_row("Performance", "Avg Connect Time", f"{summary['connections']['avg_duration']:.2f}s")

        self.console.print(table)
        self.console.print()

    async def _main_menu(self):
        """Display main menu and handle user input."""
        while self._running:
            self.console.clear()
            self._print_header()
            self._print_system_status()

            menu_options = [
                "1. Discover Sensors",
                "2. Connect & Monitor",
                "3. Disconnect Sensor",
                "4. Toggle Show All Devices",
                "5. Show Configuration",
                "6. System Statistics",
                "7. Exit"
            ]

            self.console.print("[bold yellow]Main Menu[/bold yellow]")
            for option in menu_options:
                self.console.print(f"  {option}")
            self.console.print()

            choice = Prompt.ask("Select option", choices=["1", "2", "3", "4", "5", "6", "7"])

            try:
                if choice == "1":
                    duration = float(Prompt.ask("Scan duration (seconds)", default=f"{self.config.ble_scan_duration:g}"))
                    await self._discover_sensors(duration)
                    Prompt.ask("Press Enter to continue")

                elif choice == "2":
                    if self._last_discovery and Confirm.ask("Connect the sensors from the last scan?"):
                        await self._start_monitoring(self._last_discovery)
                    else:
                        await self._start_monitoring()
                    Prompt.ask("Press Enter to continue")

                elif choice == "3":
                    await self._disconnect_menu()
                    Prompt.ask("Press Enter to continue")

                elif choice == "4":
                    self._toggle_show_all()
                    Prompt.ask("Press Enter to continue")

                elif choice == "5":
                    self._show_configuration()
                    Prompt.ask("Press Enter to continue")

                elif choice == "6":
                    self._show_statistics()
                    Prompt.ask("Press Enter to continue")

                elif choice == "7":
                    if Confirm.ask("Are you sure you want to exit?"):
                        self._running = False

            except KeyboardInterrupt:
                if Confirm.ask("\nExit application?"):
                    self._running = False
            except Exception as e:
                self.console.print(f"[red]Error: {e}[/red]")
                Prompt.ask("Press Enter to continue")

    async def run(self):
        """Run the interactive CLI application."""
        try:
            self._initialize_components()
            self._running = True
            await self._main_menu()

        except CLIError:
            sys.exit(1)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]Application interrupted[/yellow]")
        finally:
            if self.connection_manager:
                await self.connection_manager.shutdown()
            if self.scanner:
                await self.scanner.cleanup()
            self.console.print("[blue]Goodbye![/blue]")


def _create_app(show_all: bool = False) -> GasMonitorCLI:
    app = GasMonitorCLI()
    try:
        app._initialize_components()
    except CLIError:
        sys.exit(1)
    if show_all:
        app.scanner.show_all_devices = True
    return app


# Click commands for CLI entry points
@click.group()
@click.version_option(version="1.0.0", prog_name="gasmon")
def cli():
    """Spoilage Gas Monitor - BLE gas sensor monitoring."""
    pass


@cli.command()
def menu():
    """Launch interactive menu."""
    app = GasMonitorCLI()
    asyncio.run(app.run())


@cli.command()
@click.option("--duration", "-d", type=float, default=None, help="Scan duration in seconds")
@click.option("--all", "show_all", is_flag=True, help="List every named device, not only gas sensors")
def discover(duration, show_all):
    """Discover gas sensors."""
    async def run_discovery():
        app = _create_app(show_all)
        try:
            await app._discover_sensors(duration)
        finally:
            await app.scanner.cleanup()

    asyncio.run(run_discovery())


@cli.command()
@click.option("--address", "-a", "addresses", multiple=True, help="Sensor address to connect (repeatable, device id 1 unless rediscovered)")
@click.option("--duration", "-d", type=float, default=None, help="Stop monitoring after this many seconds")
@click.option("--all", "show_all", is_flag=True, help="List every named device, not only gas sensors")
def monitor(addresses, duration, show_all):
    """Connect sensors and show live gas levels."""
    async def run_monitoring():
        app = _create_app(show_all)
        try:
            await app._start_monitoring(addresses, duration)
        finally:
            await app.scanner.cleanup()

    try:
        asyncio.run(run_monitoring())
    except KeyboardInterrupt:
        click.echo("\nMonitoring interrupted by user")


@cli.command()
def daemon():
    """Run the background monitor service."""
    try:
        asyncio.run(run_monitor_service())
    except MonitorServiceError as e:
        click.echo(f"Monitor service error: {e}", err=True)
        sys.exit(1)


@cli.command()
def status():
    """Show system status."""
    app = _create_app()
    app._print_system_status()


@cli.command()
def config():
    """Show current configuration."""
    app = _create_app()
    app._show_configuration()


if __name__ == "__main__":
    cli()
