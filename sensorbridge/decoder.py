# SPDX-License-Identifier: Apache-2.0
"""Payload decoding for greenhouse sensor messages."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

# moisture is stored as a 64-bit value downstream
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


class DecodeError(ValueError):
    """Payload is not valid JSON or lacks a required field."""


@dataclass(frozen=True, slots=True)
class Reading:
    sensor_id: str
    moisture: int
    temperature_celsius: float


def _reject_constant(name: str) -> Any:
    raise DecodeError(f"payload contains non-standard json constant {name}")


def decode(payload: bytes) -> Reading:
    """Parse a JSON payload such as ``{"moisture": 588, "temperature": 26.39, "sid": "sensor1"}``.

    Unknown keys are ignored. Values are type checked but not range checked,
    apart from rejecting numbers the store cannot represent.
    """
    try:
        obj = json.loads(payload.decode("utf-8"), parse_constant=_reject_constant)
    except DecodeError:
        raise
    except UnicodeDecodeError as exc:
        raise DecodeError(f"payload is not utf-8: {exc}") from exc
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError, or an integer literal beyond the digit limit
        raise DecodeError(f"payload is not valid json: {exc}") from exc
    if not isinstance(obj, dict):
        raise DecodeError(f"payload must be a json object, got {type(obj).__name__}")

    sid = _require(obj, "sid")
    if not isinstance(sid, str) or not sid:
        raise DecodeError("field 'sid' must be a non-empty string")
    moisture = _require(obj, "moisture")
    if isinstance(moisture, bool) or not isinstance(moisture, int):
        raise DecodeError(f"field 'moisture' must be an integer, got {moisture!r}")
    if not _INT64_MIN <= moisture <= _INT64_MAX:
        raise DecodeError("field 'moisture' does not fit in 64 bits")
    temperature = _require(obj, "temperature")
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise DecodeError(f"field 'temperature' must be a number, got {temperature!r}")
    try:
        temperature = float(temperature)
    except OverflowError as exc:
        raise DecodeError("field 'temperature' is too large") from exc
    if not math.isfinite(temperature):
        raise DecodeError(f"field 'temperature' must be finite, got {temperature!r}")

    return Reading(sensor_id=sid, moisture=moisture, temperature_celsius=temperature)


def _require(obj: dict[str, Any], key: str) -> Any:
    if key not in obj or obj[key] is None:
        raise DecodeError(f"missing required field '{key}'")
    return obj[key]
