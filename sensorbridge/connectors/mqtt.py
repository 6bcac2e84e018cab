# SPDX-License-Identifier: Apache-2.0
"""MQTT subscriber for greenhouse sensor nodes."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from asyncio_mqtt import Client, MqttError

from sensorbridge.config import MQTTConfig
from sensorbridge.messages import RawMessage, ensure_bytes

from .base import BaseSubscriber, MessageHandler

log = logging.getLogger(__name__)


class MQTTSubscriber(BaseSubscriber):
    """Subscribes to a single topic and reconnects with backoff on broker errors."""

    def __init__(self, cfg: MQTTConfig, *, on_message: MessageHandler):
        super().__init__(f"mqtt:{cfg.host}:{cfg.port}", on_message=on_message)
        self.cfg = cfg

    def _client(self) -> Client:
        return Client(
            hostname=self.cfg.host,
            port=self.cfg.port,
            username=self.cfg.username,
            password=self.cfg.password,
            client_id=self.cfg.client_id,
        )

    async def iter_messages(self) -> AsyncIterator[RawMessage]:
        delay = self.cfg.reconnect_interval_s
        while True:
            try:
                async with self._client() as client:
                    log.info("connected to MQTT broker %s:%s", self.cfg.host, self.cfg.port)
                    delay = self.cfg.reconnect_interval_s
                    async with client.unfiltered_messages() as messages:
                        await client.subscribe(self.cfg.topic, qos=self.cfg.qos)
                        log.info("subscribed to %s (qos %d); waiting for messages", self.cfg.topic, self.cfg.qos)
                        async for message in messages:
                            yield RawMessage(
                                topic=message.topic,
                                payload=ensure_bytes(message.payload),
                                metadata={"qos": message.qos, "retain": bool(message.retain), "mid": message.mid},
                            )
            except MqttError as exc:
                log.error("lost connection to MQTT broker %s:%s: %s; retrying in %.1fs", self.cfg.host, self.cfg.port, exc, delay)
                await asyncio.sleep(delay)
                delay = min(max(delay * 2, 0.1), self.cfg.max_reconnect_interval_s)
