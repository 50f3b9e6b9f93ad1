"""
Rich renderables for the monitoring dashboard.
"""

from typing import Iterable, List, Optional

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..ble.connection import Notice
from ..ble.scanner import DiscoveredDevice
from ..devices.reading import GasChannel
from ..devices.session import ConnectionState, DeviceSession


STAGE_STYLES = {
    0: "bold green",
    1: "bold yellow",
    2: "bold dark_orange",
    3: "bold red",
}

STATE_STYLES = {
    ConnectionState.DISCONNECTED: "dim",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.CONNECTED: "blue",
    ConnectionState.READY: "green",
    ConnectionState.ERROR: "red",
}

BAR_WIDTH = 20


def format_time(session: DeviceSession) -> str:
    return session.last_update.strftime("%H:%M:%S")


def gas_bar(fraction: float, width: int = BAR_WIDTH) -> Text:
    filled = round(fraction * width)
    style = "green" if fraction < 0.5 else "yellow" if fraction < 0.8 else "red"
    bar = Text("█" * filled, style=style)
    bar.append("░" * (width - filled), style="dim")
    return bar


def overview_table(sessions: Iterable[DeviceSession]) -> Table:
    """One row per sensor with stage, confidence and environment."""
    table = Table(title="Sensor Overview", show_header=True, header_style="bold magenta")
    table.add_column("Sensor", style="cyan")
    table.add_column("Stage")
    table.add_column("Confidence", justify="right")
    table.add_column("Temperature", style="red", justify="right")
    table.add_column("Humidity", style="blue", justify="right")
    table.add_column("Updated", style="dim")

    for session in sessions:
        reading = session.reading
        if reading is None:
            table.add_row(f"Device {session.device_id}", "Waiting for data...", "-", "-", "-", format_time(session))
            continue
        table.add_row(
            f"Device {session.device_id}",
            Text(reading.stage_text, style=STAGE_STYLES.get(reading.stage, "white")),
            f"{reading.confidence * 100:.0f}%",
            f"{reading.temperature:.1f}°C",
            f"{reading.humidity:.1f}%",
            format_time(session),
        )
    return table


def gas_levels_table(session: DeviceSession) -> Table:
    """Per-channel gas levels of one sensor, scaled to the display maximum."""
    table = Table(title=f"Device {session.device_id} Gas Levels", show_header=True, header_style="bold blue")
    table.add_column("Gas", style="cyan")
    table.add_column("Level")
    table.add_column("ppm", justify="right")
    table.add_column("Trend", style="dim", justify="right")

    for channel in GasChannel:
        if session.reading is None:
            table.add_row(channel.label, gas_bar(0.0), "-", "-")
            continue
        series = session.history_series(channel)
        trend = "-"
        if len(series) >= 2:
            delta = series[-1] - series[0]
            trend = f"{delta:+.1f}"
        table.add_row(
            channel.label,
            gas_bar(session.reading.channel_fraction(channel)),
            f"{session.reading.channel_value(channel):.1f}",
            trend,
        )
    return table


def devices_table(sessions: Iterable[DeviceSession], max_attempts: Optional[int] = None) -> Table:
    """Connection state of every session."""
    table = Table(title="Connected Devices", show_header=True, header_style="bold green")
    table.add_column("Device", style="cyan")
    table.add_column("Name")
    table.add_column("Address", style="dim")
    table.add_column("State")
    table.add_column("Retries", justify="right")
    table.add_column("Error", style="red")

    for session in sessions:
        retries = str(session.retry_count)
        if max_attempts:
            retries = f"{session.retry_count}/{max_attempts}"
        table.add_row(
            f"Device {session.device_id}",
            session.name,
            session.address,
            Text(session.state.display_text, style=STATE_STYLES[session.state]),
            retries,
            session.last_error or "",
        )
    return table


def discovery_table(devices: Iterable[DiscoveredDevice]) -> Table:
    table = Table(title="Discovered Sensors", show_header=True, header_style="bold green")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Device ID", justify="right")
    table.add_column("Address")
    table.add_column("RSSI", style="yellow", justify="right")

    for index, device in enumerate(devices, start=1):
        table.add_row(
            str(index),
            device.name,
            str(device.device_id),
            device.address,
            f"{device.rssi} dBm" if device.rssi is not None else "N/A",
        )
    return table


def notices_panel(notices: Iterable[Notice], limit: int = 5) -> Panel:
    lines: List[Text] = []
    for notice in list(notices)[-limit:]:
        style = "red" if notice.is_error else "green"
        lines.append(Text(f"{notice.timestamp.strftime('%H:%M:%S')} {notice.message}", style=style))
    if not lines:
        lines.append(Text("No recent events", style="dim"))
    return Panel(Group(*lines), title="Events", border_style="blue")


def render_dashboard(sessions: List[DeviceSession], notices: Iterable[Notice],
                     max_attempts: Optional[int] = None) -> Group:
    """Full dashboard: overview, gas levels of ready sensors, devices and events."""
    if not sessions:
        return Group(
            Panel("[yellow]No sensors connected. Waiting for discovery...[/yellow]", border_style="yellow"),
            notices_panel(notices),
        )

    parts = [overview_table(sessions)]
    parts.extend(gas_levels_table(session) for session in sessions if session.is_ready)
    parts.append(devices_table(sessions, max_attempts))
    parts.append(notices_panel(notices))
    return Group(*parts)
