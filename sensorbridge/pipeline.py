# SPDX-License-Identifier: Apache-2.0
"""Per-message ingest pipeline: decode, encode, hand off to the write sink."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from .decoder import DecodeError, Reading, decode
from .encoder import WriteRecord, encode
from .messages import RawMessage
from .metrics import BACKPRESSURE_WAITS, MESSAGES_RECEIVED, MESSAGES_REJECTED
from .sink import WriteSink

log = logging.getLogger(__name__)

DecodeFn = Callable[[bytes], Reading]
EncodeFn = Callable[[Reading, Optional[datetime]], Sequence[WriteRecord]]


@dataclass
class IngestPipeline:
    sink: WriteSink
    decode_fn: DecodeFn = decode
    encode_fn: EncodeFn = encode

    async def on_message(self, raw: RawMessage, ack: Optional[Callable[[], None]] = None) -> bool:
        """Process one delivery. Returns True once its records are queued.

        A full sink suspends this call until there is room, which in turn
        stops the subscriber from pulling the next message.
        """
        MESSAGES_RECEIVED.inc()
        log.debug("received message %r from topic %s", raw.payload, raw.topic)
        try:
            reading = self.decode_fn(raw.payload)
        except DecodeError as exc:
            MESSAGES_REJECTED.labels("decode").inc()
            log.warning("discarding message from %s: %s", raw.topic, exc)
            if ack is not None:
                ack()
            return False

        records = self.encode_fn(reading, raw.received_at)
        try:
            while not self.sink.submit(records, on_done=ack):
                BACKPRESSURE_WAITS.inc()
                log.debug("write queue full; pausing intake for %d records", len(records))
                await self.sink.wait_for_headroom(len(records))
        except ValueError:
            MESSAGES_REJECTED.labels("oversized").inc()
            log.exception("discarding message from %s: cannot be queued", raw.topic)
            if ack is not None:
                ack()
            return False
        return True
