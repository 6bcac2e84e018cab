# SPDX-License-Identifier: Apache-2.0
"""Async bridge runner."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional

from prometheus_client import start_http_server

from sensorbridge.config import BridgeConfig, StartupConfigError, load_config, parse_log_level
from sensorbridge.connectors import MQTTSubscriber
from sensorbridge.pipeline import IngestPipeline
from sensorbridge.sink import RecordWriter, WriteSink
from sensorbridge.store import InfluxRecordWriter

log = logging.getLogger("sensorbridge")


class SensorBridge:
    def __init__(self, config: BridgeConfig, *, writer: Optional[RecordWriter] = None):
        self.config = config
        self.writer = writer if writer is not None else InfluxRecordWriter(config.influx)
        self.sink = WriteSink(self.writer, config.sink)
        self.pipeline = IngestPipeline(self.sink)
        self.subscriber = MQTTSubscriber(config.mqtt, on_message=self.pipeline.on_message)

    async def start(self) -> None:
        await self.writer.start()
        await self.sink.start()
        await self.subscriber.start()
        if self.config.metrics_port:
            start_http_server(self.config.metrics_port)
            log.info("metrics exported on port %d", self.config.metrics_port)
        log.info("bridging %s -> bucket %s", self.config.mqtt.topic, self.config.influx.bucket)

    async def stop(self) -> None:
        # Intake first so nothing new reaches the sink while it drains.
        await self.subscriber.stop()
        await self.sink.close(self.config.sink.shutdown_grace_s)
        await self.writer.close()
        log.info("bridge stopped")


async def main_async(config: BridgeConfig) -> None:
    bridge = SensorBridge(config)
    await bridge.start()
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # not supported by the Windows event loop; Ctrl+C still raises KeyboardInterrupt there
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop_requested.set)

    try:
        await stop_requested.wait()
        log.info("shutdown requested")
    finally:
        await bridge.stop()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Bridge MQTT sensor readings into InfluxDB")
    parser.add_argument("--config", default=None, help="optional YAML tuning file")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL, e.g. DEBUG")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        config = load_config(args.config)
        level = parse_log_level(args.log_level) if args.log_level else config.log_level
    except StartupConfigError as exc:
        log.error("invalid configuration: %s", exc)
        sys.exit(1)
    logging.getLogger().setLevel(level)
    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
