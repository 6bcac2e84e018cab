# SPDX-License-Identifier: Apache-2.0
"""Error classification and the InfluxDB writer."""
from __future__ import annotations

import asyncio

import aiohttp
import pytest
from influxdb_client.rest import ApiException

from sensorbridge.config import InfluxConfig
from sensorbridge.encoder import WriteRecord
from sensorbridge.store import (
    FatalWriteError,
    InfluxRecordWriter,
    RetryableWriteError,
    WriteError,
    classify_error,
)


@pytest.mark.parametrize("status", [0, 408, 429, 500, 502, 503, 504])
def test_transient_http_status_is_retryable(status):
    assert isinstance(classify_error(ApiException(status=status, reason="x")), RetryableWriteError)


@pytest.mark.parametrize("status", [400, 401, 403, 404, 413, 422])
def test_client_http_status_is_fatal(status):
    assert isinstance(classify_error(ApiException(status=status, reason="x")), FatalWriteError)


@pytest.mark.parametrize(
    "exc",
    [asyncio.TimeoutError(), ConnectionRefusedError(111, "refused"), aiohttp.ClientConnectionError("reset")],
)
def test_network_errors_are_retryable(exc):
    assert isinstance(classify_error(exc), RetryableWriteError)


@pytest.mark.parametrize("exc", [ValueError("bad line"), TypeError("bad record"), RuntimeError("odd")])
def test_other_errors_are_fatal(exc):
    assert isinstance(classify_error(exc), FatalWriteError)


def test_write_errors_pass_through():
    err = RetryableWriteError("already classified")
    assert classify_error(err) is err
    assert issubclass(RetryableWriteError, WriteError)
    assert issubclass(FatalWriteError, WriteError)


class _StubWriteApi:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def write(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return True


def _writer(api) -> InfluxRecordWriter:
    writer = InfluxRecordWriter(InfluxConfig(url="http://influx:8086", bucket="greenhouse", org="farm"))
    writer._write_api = api
    return writer


@pytest.mark.asyncio
async def test_write_sends_line_protocol():
    api = _StubWriteApi()
    record = WriteRecord("moisture", tags={"unit": "capacitance", "sensor": "sensor1"}, fields={"avg": 588})
    await _writer(api).write(record)
    assert api.calls[0]["bucket"] == "greenhouse"
    assert api.calls[0]["org"] == "farm"
    assert api.calls[0]["record"].to_line_protocol() == "moisture,sensor=sensor1,unit=capacitance avg=588"


@pytest.mark.asyncio
async def test_write_classifies_client_errors():
    record = WriteRecord("moisture", fields={"avg": 1})
    with pytest.raises(FatalWriteError):
        await _writer(_StubWriteApi(ApiException(status=400, reason="partial write"))).write(record)
    with pytest.raises(RetryableWriteError):
        await _writer(_StubWriteApi(aiohttp.ServerDisconnectedError())).write(record)


@pytest.mark.asyncio
async def test_write_before_start_is_retryable():
    writer = InfluxRecordWriter(InfluxConfig(url="http://influx:8086", bucket="greenhouse"))
    with pytest.raises(RetryableWriteError):
        await writer.write(WriteRecord("moisture", fields={"avg": 1}))
