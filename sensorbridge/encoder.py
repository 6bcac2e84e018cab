# SPDX-License-Identifier: Apache-2.0
"""Map decoded readings onto InfluxDB measurement records."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Tuple, Union

from influxdb_client import Point, WritePrecision

from .decoder import Reading

FieldValue = Union[int, float]

# (measurement, unit tag, Reading attribute). One record per entry.
MEASUREMENTS: Tuple[Tuple[str, str, str], ...] = (
    ("moisture", "capacitance", "moisture"),
    ("temperature", "celsius", "temperature_celsius"),
)


@dataclass(frozen=True, slots=True)
class WriteRecord:
    measurement: str
    tags: Mapping[str, str] = field(default_factory=dict)
    fields: Mapping[str, FieldValue] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.measurement:
            raise ValueError("record measurement must not be empty")
        if not self.fields:
            raise ValueError(f"record '{self.measurement}' needs at least one field")
        for key, value in self.fields.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"field '{key}' must be numeric, got {value!r}")
            try:
                finite = math.isfinite(value)
            except OverflowError:
                finite = False
            if not finite:
                raise ValueError(f"field '{key}' must be a finite float64, got {value!r}")

    def to_point(self) -> Point:
        # Fields go out as floats so whole numbers render as `avg=588`, keeping
        # the series float-typed.
        point = Point(self.measurement)
        for key, value in self.tags.items():
            point.tag(key, value)
        for key, value in self.fields.items():
            point.field(key, float(value))
        if self.timestamp is not None:
            point.time(self.timestamp, WritePrecision.NS)
        return point

    def to_line(self) -> str:
        return self.to_point().to_line_protocol()


def encode(reading: Reading, timestamp: Optional[datetime] = None) -> Tuple[WriteRecord, ...]:
    """Expand a reading into one record per entry in ``MEASUREMENTS``."""
    return tuple(
        WriteRecord(
            measurement=measurement,
            tags={"unit": unit, "sensor": reading.sensor_id},
            fields={"avg": getattr(reading, attribute)},
            timestamp=timestamp,
        )
        for measurement, unit, attribute in MEASUREMENTS
    )
