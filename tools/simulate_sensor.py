#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
"""Publish synthetic greenhouse readings to MQTT for bridge testing."""
from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
from typing import Optional

from asyncio_mqtt import Client


def make_reading(sid: str, t: float) -> dict:
    moisture = 550 + 60 * math.sin(t)
    temp = 24 + 2.5 * math.sin(t / 5)
    return {
        "moisture": int(moisture + random.uniform(-10, 10)),
        "temperature": round(temp + random.uniform(-0.3, 0.3), 2),
        "sid": sid,
    }


async def publish_readings(
    client: Client,
    topic: str,
    sid: str,
    interval: float,
    count: Optional[int] = None,
    malformed_every: int = 0,
) -> None:
    t = 0.0
    sent = 0
    while count is None or sent < count:
        sent += 1
        if malformed_every and sent % malformed_every == 0:
            payload = b'{"moisture": "wet", "sid": ""}'
        else:
            payload = json.dumps(make_reading(sid, t)).encode("utf-8")
        await client.publish(topic, payload, qos=1)
        await asyncio.sleep(interval)
        t += 0.2


async def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("broker")
    ap.add_argument("topic")
    ap.add_argument("--port", type=int, default=1883)
    ap.add_argument("--username")
    ap.add_argument("--password")
    ap.add_argument("--sid", default="sensor1")
    ap.add_argument("--interval", type=float, default=1.0)
    ap.add_argument("--count", type=int, default=None)
    ap.add_argument("--malformed-every", type=int, default=0, help="send a broken payload every N messages")
    args = ap.parse_args()

    async with Client(hostname=args.broker, port=args.port, username=args.username, password=args.password) as client:
        await publish_readings(client, args.topic, args.sid, args.interval, args.count, args.malformed_every)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
