"""
Sensor reading model for spoilage gas sensors.
"""

import math
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class GasChannel(Enum):
    """Gas channels reported by the sensor, with their display maximum in ppm."""
    NH3 = ("nh3_ppm", "NH₃", 10.0)
    H2S = ("h2s_ppm", "H₂S", 5.0)
    CO2 = ("co2_ppm", "CO₂", 5000.0)
    CH4 = ("ch4_ppm", "CH₄", 2000.0)

    def __init__(self, field_name: str, label: str, display_max: float):
        self.field_name = field_name
        self.label = label
        self.display_max = display_max


STAGE_TEXT = {
    0: "Fresh",
    1: "Warning",
    2: "Spoiling",
    3: "Spoiled",
}


@dataclass(frozen=True)
class SensorReading:
    """One decoded reading. The spoilage stage is computed on the peripheral."""
    nh3_ppm: float
    h2s_ppm: float
    co2_ppm: float
    ch4_ppm: float
    stage: int
    confidence: float
    temperature: float  # Celsius
    humidity: float     # %RH
    timestamp: datetime

    @property
    def stage_text(self) -> str:
        return STAGE_TEXT.get(self.stage, "Unknown")

    def channel_value(self, channel: GasChannel) -> float:
        return getattr(self, channel.field_name)

    def channel_fraction(self, channel: GasChannel) -> float:
        """Value of a gas channel relative to its display maximum, clamped to [0, 1]."""
        fraction = self.channel_value(channel) / channel.display_max
        if not math.isfinite(fraction):
            return 0.0
        return min(max(fraction, 0.0), 1.0)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['stage_text'] = self.stage_text
        return data
