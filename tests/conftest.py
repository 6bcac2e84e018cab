# SPDX-License-Identifier: Apache-2.0
"""Shared fakes and fixtures for bridge tests."""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import pytest

from sensorbridge.config import BridgeConfig, InfluxConfig, MQTTConfig, SinkConfig
from sensorbridge.encoder import WriteRecord


class FakeWriter:
    """Store writer used in tests to capture or fail writes."""

    def __init__(self, behaviour: Optional[Callable[[WriteRecord, int], None]] = None):
        self.behaviour = behaviour
        self.attempts: List[WriteRecord] = []
        self.written: List[WriteRecord] = []
        self.started = False
        self.closed = False
        self.gate: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self.started = True

    async def write(self, record: WriteRecord) -> None:
        self.attempts.append(record)
        if self.gate is not None:
            await self.gate.wait()
        if self.behaviour is not None:
            self.behaviour(record, len(self.attempts))
        self.written.append(record)

    async def close(self) -> None:
        self.closed = True

    @property
    def lines(self) -> List[str]:
        return [record.to_line() for record in self.written]


def fast_sink(**overrides) -> SinkConfig:
    options = dict(
        queue_size=8,
        workers=2,
        max_attempts=3,
        backoff_base_s=0.0,
        backoff_max_s=0.0,
        backoff_jitter=0.0,
        attempt_timeout_s=1.0,
        shutdown_grace_s=1.0,
    )
    options.update(overrides)
    return SinkConfig(**options)


def bridge_config(mqtt_port: int = 1883, **sink_overrides) -> BridgeConfig:
    return BridgeConfig(
        mqtt=MQTTConfig(host="127.0.0.1", topic="greenhouse/#", port=mqtt_port, qos=1, reconnect_interval_s=0.1),
        influx=InfluxConfig(url="http://127.0.0.1:8086", bucket="greenhouse"),
        sink=fast_sink(**sink_overrides),
        metrics_port=0,
    )


async def wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    end_time = loop.time() + timeout
    while loop.time() < end_time:
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met within timeout")


@pytest.fixture
def writer() -> FakeWriter:
    return FakeWriter()


@pytest.fixture
def example_payload() -> bytes:
    return b'{"moisture": 588, "temperature": 26.39, "sid": "sensor1"}'
