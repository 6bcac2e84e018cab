# SPDX-License-Identifier: Apache-2.0
"""Ingest pipeline isolation and backpressure."""
from __future__ import annotations

import asyncio

import pytest

from sensorbridge.messages import RawMessage
from sensorbridge.pipeline import IngestPipeline
from sensorbridge.sink import WriteSink

from tests.conftest import FakeWriter, fast_sink, wait_for


def _msg(payload: bytes, topic: str = "greenhouse/1") -> RawMessage:
    return RawMessage(topic=topic, payload=payload)


@pytest.mark.asyncio
async def test_example_message_written(writer, example_payload):
    sink = WriteSink(writer, fast_sink())
    pipeline = IngestPipeline(sink)
    await sink.start()
    raw = _msg(example_payload)
    acks = []
    assert await pipeline.on_message(raw, ack=lambda: acks.append(raw)) is True
    await asyncio.wait_for(sink.drain(), 2)

    stamp = raw.received_at
    lines = sorted(line.rsplit(" ", 1)[0] for line in writer.lines)
    assert lines == [
        "moisture,sensor=sensor1,unit=capacitance avg=588",
        "temperature,sensor=sensor1,unit=celsius avg=26.39",
    ]
    assert all(record.timestamp == stamp for record in writer.written)
    assert acks == [raw]
    await sink.close()


@pytest.mark.asyncio
async def test_bad_message_does_not_affect_next(writer, example_payload):
    sink = WriteSink(writer, fast_sink())
    pipeline = IngestPipeline(sink)
    await sink.start()
    acks = []
    for payload in (b"{broken", b'{"moisture": 1, "temperature": 2}', b'{"moisture": "x", "temperature": 2, "sid": "a"}'):
        assert await pipeline.on_message(_msg(payload), ack=lambda: acks.append("bad")) is False
    assert sink.stats.accepted == 0
    assert await pipeline.on_message(_msg(example_payload)) is True
    await asyncio.wait_for(sink.drain(), 2)
    assert len(writer.written) == 2
    assert acks == ["bad", "bad", "bad"]
    await sink.close()


@pytest.mark.asyncio
async def test_backpressure_suspends_intake(example_payload):
    writer = FakeWriter()
    writer.gate = asyncio.Event()
    sink = WriteSink(writer, fast_sink(queue_size=2, workers=1))
    pipeline = IngestPipeline(sink)
    await sink.start()

    assert await pipeline.on_message(_msg(example_payload)) is True
    await wait_for(lambda: writer.attempts)
    # one record is attempting, one is queued: no room for the next pair
    second = asyncio.create_task(pipeline.on_message(_msg(example_payload)))
    await asyncio.sleep(0.05)
    assert not second.done()
    assert sink.stats.rejected >= 1

    writer.gate.set()
    assert await asyncio.wait_for(second, 2) is True
    await asyncio.wait_for(sink.drain(), 2)
    assert len(writer.written) == 4
    await sink.close()


@pytest.mark.asyncio
async def test_encoder_is_pluggable(writer, example_payload):
    from sensorbridge.encoder import WriteRecord

    def encode_one(reading, timestamp):
        return [WriteRecord("soil", tags={"sensor": reading.sensor_id}, fields={"moisture": reading.moisture})]

    sink = WriteSink(writer, fast_sink())
    pipeline = IngestPipeline(sink, encode_fn=encode_one)
    await sink.start()
    await pipeline.on_message(_msg(example_payload))
    await asyncio.wait_for(sink.drain(), 2)
    assert writer.lines == ["soil,sensor=sensor1 moisture=588"]
    await sink.close()


@pytest.mark.asyncio
async def test_batch_larger_than_queue_is_discarded(writer, example_payload):
    sink = WriteSink(writer, fast_sink(queue_size=1))
    pipeline = IngestPipeline(sink)
    await sink.start()
    acks = []
    assert await pipeline.on_message(_msg(example_payload), ack=lambda: acks.append(1)) is False
    assert acks == [1]
    await sink.close()
