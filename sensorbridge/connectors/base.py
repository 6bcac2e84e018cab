# SPDX-License-Identifier: Apache-2.0
"""Subscriber primitives feeding the ingest pipeline."""
from __future__ import annotations

import abc
import asyncio
import functools
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from sensorbridge.messages import RawMessage
from sensorbridge.metrics import MESSAGES_COMPLETED, MESSAGES_REJECTED
from sensorbridge.sink import SinkClosedError

log = logging.getLogger(__name__)

MessageHandler = Callable[[RawMessage, Optional[Callable[[], None]]], Awaitable[object]]


class BaseSubscriber(abc.ABC):
    def __init__(self, subscriber_id: str, *, on_message: MessageHandler):
        self.subscriber_id = subscriber_id
        self._on_message = on_message
        self._intake: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._intake is not None and not self._intake.done()

    async def start(self) -> None:
        if self._intake is None:
            self._intake = asyncio.create_task(self._run(), name=f"intake-{self.subscriber_id}")

    async def stop(self) -> None:
        intake, self._intake = self._intake, None
        if intake is None:
            return
        intake.cancel()
        try:
            await intake
        except asyncio.CancelledError:
            pass
        except SinkClosedError:
            log.info("subscriber %s stopped after the write sink closed", self.subscriber_id)

    async def _run(self) -> None:
        # One message at a time: a handler waiting on backpressure holds intake.
        async for msg in self.iter_messages():
            try:
                await self._on_message(msg, functools.partial(self.acknowledge, msg))
            except SinkClosedError:
                raise
            except Exception:
                MESSAGES_REJECTED.labels("error").inc()
                log.exception("subscriber %s failed on message from %s; continuing", self.subscriber_id, msg.topic)

    def acknowledge(self, message: RawMessage) -> None:
        """Called once every record derived from ``message`` is terminal."""
        MESSAGES_COMPLETED.inc()
        log.debug("message from %s received at %s completed", message.topic, message.received_at.isoformat())

    @abc.abstractmethod
    def iter_messages(self) -> AsyncIterator[RawMessage]:  # pragma: no cover - interface
        raise NotImplementedError
