"""
Device data model: readings, per-device sessions and the session registry.
"""

from .reading import GasChannel, SensorReading, STAGE_TEXT
from .session import (
    ALLOWED_TRANSITIONS,
    ConnectionState,
    DeviceSession,
    InvalidTransitionError,
)
from .registry import DeviceRegistry, DuplicateSessionError

__all__ = [
    'GasChannel',
    'SensorReading',
    'STAGE_TEXT',
    'ALLOWED_TRANSITIONS',
    'ConnectionState',
    'DeviceSession',
    'InvalidTransitionError',
    'DeviceRegistry',
    'DuplicateSessionError',
]
