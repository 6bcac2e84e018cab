# SPDX-License-Identifier: Apache-2.0
"""Message envelope handed from the broker subscriber to the pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict


@dataclass(frozen=True, slots=True)
class RawMessage:
    """One broker delivery, consumed once by the ingest pipeline."""

    topic: str
    payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


def ensure_bytes(data: Any) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("utf-8")
    raise TypeError(f"cannot convert {type(data)} to bytes")
