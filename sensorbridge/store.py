# SPDX-License-Identifier: Apache-2.0
"""InfluxDB writer used by the write sink."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp
from influxdb_client import WritePrecision
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync
from influxdb_client.client.write_api_async import WriteApiAsync
from influxdb_client.rest import ApiException

from .config import InfluxConfig
from .encoder import WriteRecord

log = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 429})


class WriteError(Exception):
    """Base class for store write failures."""


class RetryableWriteError(WriteError):
    """Transient failure; the same write may succeed later."""


class FatalWriteError(WriteError):
    """Permanent failure; retrying the write cannot succeed."""


def classify_error(exc: BaseException) -> WriteError:
    """Sort a client library exception into retryable or fatal."""
    if isinstance(exc, WriteError):
        return exc
    if isinstance(exc, ApiException):
        status = exc.status or 0
        reason = f"influx responded {status}: {exc.reason}"
        if status == 0 or status >= 500 or status in RETRYABLE_STATUS:
            return RetryableWriteError(reason)
        return FatalWriteError(reason)
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientError, OSError)):
        return RetryableWriteError(f"{type(exc).__name__}: {exc}")
    return FatalWriteError(f"{type(exc).__name__}: {exc}")


class InfluxRecordWriter:
    """Writes single records through the async InfluxDB client.

    The client owns one aiohttp session, shared by every sink worker.
    """

    def __init__(self, cfg: InfluxConfig):
        self.cfg = cfg
        self._client: Optional[InfluxDBClientAsync] = None
        self._write_api: Optional[WriteApiAsync] = None

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = InfluxDBClientAsync(
            url=self.cfg.url,
            token=self.cfg.token,
            org=self.cfg.org or None,
            timeout=self.cfg.timeout_ms,
        )
        self._write_api = self._client.write_api()
        if await self._client.ping():
            log.info("connected to influx at %s (bucket %s)", self.cfg.url, self.cfg.bucket)
        else:
            log.warning("influx at %s did not answer ping; writes will be retried", self.cfg.url)

    async def write(self, record: WriteRecord) -> None:
        if self._write_api is None:
            raise RetryableWriteError("influx writer not started")
        point = record.to_point()
        log.debug("writing line: %s", point.to_line_protocol())
        try:
            await self._write_api.write(
                bucket=self.cfg.bucket,
                org=self.cfg.org or None,
                record=point,
                write_precision=WritePrecision.NS,
            )
        except Exception as exc:
            raise classify_error(exc) from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._write_api = None
