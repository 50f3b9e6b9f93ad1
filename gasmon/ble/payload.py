"""
Decoding of sensor notification payloads.

Each notification carries UTF-8 text with one JSON object, for example::

    {"gas": {"nh3": 1.2, "h2s": 0.3, "co2": 400, "ch4": 10},
     "stage": 1, "confidence": 0.8, "temp": 22.5, "humidity": 60}

Firmware revisions differ in key names (``gases``, ``methane``,
``temperature``) and may omit fields, so the schema accepts the synonyms and
falls back to defaults.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..devices.reading import SensorReading


DEFAULT_TEMPERATURE = 20.0
DEFAULT_HUMIDITY = 65.0


class PayloadError(Exception):
    """Raised when a notification payload cannot be decoded into a reading."""
    pass


class _LenientModel(BaseModel):
    """Base schema where explicit nulls count as missing keys and NaN/Infinity are rejected."""

    model_config = ConfigDict(allow_inf_nan=False)

    @model_validator(mode="before")
    @classmethod
    def drop_null_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class GasPayload(_LenientModel):
    """Gas concentrations in ppm."""
    nh3: float = 0.0
    h2s: float = 0.0
    co2: float = 0.0
    ch4: float = Field(0.0, validation_alias=AliasChoices("ch4", "methane"))


class ReadingPayload(_LenientModel):
    """Top-level notification object."""
    gas: GasPayload = Field(default_factory=GasPayload, validation_alias=AliasChoices("gas", "gases"))
    stage: int = 0
    confidence: float = 0.0
    temperature: float = Field(DEFAULT_TEMPERATURE, validation_alias=AliasChoices("temp", "temperature"))
    humidity: float = DEFAULT_HUMIDITY

    def to_reading(self, timestamp: Optional[datetime] = None) -> SensorReading:
        return SensorReading(
            nh3_ppm=self.gas.nh3,
            h2s_ppm=self.gas.h2s,
            co2_ppm=self.gas.co2,
            ch4_ppm=self.gas.ch4,
            stage=self.stage,
            confidence=self.confidence,
            temperature=self.temperature,
            humidity=self.humidity,
            timestamp=timestamp or datetime.now(),
        )


def extract_json_fragment(text: str) -> Optional[str]:
    """
    Return the span from the first '{' to the last '}' inclusive.

    Returns None when the text has no opening brace followed by a closing one.
    """
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end < start:
        return None
    return text[start:end + 1]


def parse_payload(text: str, timestamp: Optional[datetime] = None) -> Optional[SensorReading]:
    """
    Parse notification text into a SensorReading.

    Args:
        text: Decoded notification text
        timestamp: Capture time (defaults to now)

    Returns:
        Optional[SensorReading]: The reading, or None if the text carries no JSON object

    Raises:
        PayloadError: If the JSON fragment is malformed or has invalid field types
    """
    fragment = extract_json_fragment(text)
    if fragment is None:
        return None

    try:
        data: Dict[str, Any] = json.loads(fragment)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PayloadError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        payload = ReadingPayload.model_validate(data)
    except ValidationError as e:
        raise PayloadError(f"Invalid reading: {e.error_count()} field error(s): {e.errors()[0]['msg']}") from e

    return payload.to_reading(timestamp)


def decode_notification(data: bytes) -> str:
    """Decode raw notification bytes as UTF-8, replacing invalid sequences."""
    return bytes(data).decode('utf-8', errors='replace')
