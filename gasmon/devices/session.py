"""
Per-device connection session and its state machine.

A DeviceSession is the in-memory record of one peripheral: its identity,
where it is in the connection lifecycle, the latest reading with a bounded
history, and the asyncio tasks (connect attempt, retry, removal) that are
pending for it.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, FrozenSet, List, Optional

from .reading import GasChannel, SensorReading


DEFAULT_HISTORY_CAPACITY = 50


class ConnectionState(Enum):
    """Connection lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"
    ERROR = "error"

    @property
    def display_text(self) -> str:
        return _STATE_TEXT[self]


_STATE_TEXT = {
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.CONNECTED: "Connected",
    ConnectionState.READY: "Receiving Data",
    ConnectionState.ERROR: "Error",
}

ALLOWED_TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.CONNECTED: frozenset({
        ConnectionState.READY, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.READY: frozenset({ConnectionState.ERROR, ConnectionState.DISCONNECTED}),
    ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
}


class InvalidTransitionError(Exception):
    """Raised when a session is moved along an edge the state machine does not have."""
    pass


@dataclass
class DeviceSession:
    """Connection and data state of one peripheral."""
    device_id: int
    name: str
    address: str
    handle: Any = None  # BLEDevice or address handed to the transport
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    state: ConnectionState = ConnectionState.DISCONNECTED
    reading: Optional[SensorReading] = None
    last_update: datetime = field(default_factory=datetime.now)
    last_error: Optional[str] = None
    retry_count: int = 0

    # Runtime handles owned by the connection manager
    client: Any = None
    notifications_active: bool = False
    closing: bool = False
    connect_task: Optional[asyncio.Task] = None
    retry_task: Optional[asyncio.Task] = None
    removal_task: Optional[asyncio.Task] = None

    def __post_init__(self):
        if self.history_capacity < 1:
            raise ValueError("history_capacity must be at least 1")
        self.history: Deque[SensorReading] = deque(maxlen=self.history_capacity)

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def is_connected(self) -> bool:
        return self.state in (ConnectionState.CONNECTED, ConnectionState.READY)

    @property
    def is_connecting(self) -> bool:
        return self.state == ConnectionState.CONNECTING

    @property
    def is_active(self) -> bool:
        return self.state in (
            ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.READY
        )

    def can_transition(self, new_state: ConnectionState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self.state]

    def transition(self, new_state: ConnectionState):
        """
        Move to a new lifecycle state.

        Clears the error text and refreshes last_update, as every state event
        does. Raises InvalidTransitionError for edges outside the state machine.
        """
        if not self.can_transition(new_state):
            raise InvalidTransitionError(
                f"Device {self.device_id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state
        self.last_error = None
        self.last_update = datetime.now()

    def record_reading(self, reading: SensorReading):
        """Store a new reading; the history evicts its oldest entry when full."""
        self.reading = reading
        self.history.append(reading)
        self.last_update = datetime.now()
        self.last_error = None

    def history_series(self, channel: GasChannel) -> List[float]:
        """Values of one gas channel across the history, oldest first."""
        return [reading.channel_value(channel) for reading in self.history]

    def cancel_timers(self, include_connect: bool = True):
        """Cancel pending retry/removal timers and, optionally, the connect attempt."""
        current = asyncio.current_task() if _loop_running() else None
        tasks = [self.retry_task, self.removal_task]
        if include_connect:
            tasks.append(self.connect_task)
        for task in tasks:
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.retry_task = None
        self.removal_task = None
        if include_connect:
            self.connect_task = None

    def summary(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "address": self.address,
            "state": self.state.value,
            "last_update": self.last_update.isoformat(),
            "last_error": self.last_error,
            "retry_count": self.retry_count,
            "history_length": len(self.history),
            "reading": self.reading.as_dict() if self.reading else None,
        }


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
