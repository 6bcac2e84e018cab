# SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the ingest bridge.

The four connection values come from the environment; an optional YAML file
tunes everything else. Environment values win over the file.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

REQUIRED_ENV = ("MQTT_HOST", "MQTT_TOPIC", "INFLUX_HOST", "INFLUX_BUCKET")


class StartupConfigError(Exception):
    """Configuration is missing or invalid; the bridge must not start."""


@dataclass(frozen=True, slots=True)
class MQTTConfig:
    host: str
    topic: str
    port: int = 1883
    qos: int = 1
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    reconnect_interval_s: float = 1.0
    max_reconnect_interval_s: float = 60.0


@dataclass(frozen=True, slots=True)
class InfluxConfig:
    url: str
    bucket: str
    org: str = ""
    token: str = ""
    timeout_ms: int = 10_000


@dataclass(frozen=True, slots=True)
class SinkConfig:
    queue_size: int = 256
    workers: int = 2
    max_attempts: int = 5
    backoff_base_s: float = 0.5
    backoff_max_s: float = 30.0
    backoff_jitter: float = 0.1
    attempt_timeout_s: float = 10.0
    shutdown_grace_s: float = 10.0


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    mqtt: MQTTConfig
    influx: InfluxConfig
    sink: SinkConfig = field(default_factory=SinkConfig)
    metrics_port: int = 9108
    log_level: str = "INFO"


def _number(data: Mapping[str, Any], key: str, default, cast, *, minimum=None):
    raw = data.get(key, default)
    try:
        value = cast(raw)
    except (TypeError, ValueError) as exc:
        raise StartupConfigError(f"'{key}' must be {cast.__name__}, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise StartupConfigError(f"'{key}' must be >= {minimum}, got {value!r}")
    return value


def split_broker_address(address: str, default_port: int = 1883) -> Tuple[str, int]:
    """Accept ``host``, ``host:port``, ``[v6addr]:port`` or ``tcp://host:port``.

    A bare IPv6 literal such as ``::1`` is taken whole, with the default port.
    """
    for scheme in ("tcp://", "mqtt://"):
        if address.startswith(scheme):
            address = address[len(scheme):]
            break
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not host:
            raise StartupConfigError(f"malformed broker address {address!r}")
        if not rest:
            return host, default_port
        if rest.startswith(":") and rest[1:].isdigit():
            return host, int(rest[1:])
        raise StartupConfigError(f"malformed broker address {address!r}")
    if address.count(":") > 1:
        return address, default_port
    host, sep, port = address.rpartition(":")
    if sep and host and port.isdigit():
        return host, int(port)
    return address, default_port


def parse_log_level(value: str) -> str:
    """Return the canonical level name, e.g. ``debug`` -> ``DEBUG``."""
    name = str(value).strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise StartupConfigError(f"unknown log level {value!r}")
    return name


def normalise_influx_url(address: str) -> str:
    if "://" in address:
        return address
    return f"http://{address}"


def _parse_mqtt(data: Dict[str, Any], env: Mapping[str, str]) -> MQTTConfig:
    port = _number(data, "port", 1883, int, minimum=1)
    if env.get("MQTT_PORT"):
        port = _number(env, "MQTT_PORT", port, int, minimum=1)
    host, port = split_broker_address(env.get("MQTT_HOST") or data.get("host", ""), port)
    qos = _number(data, "qos", 1, int, minimum=0)
    if qos > 2:
        raise StartupConfigError(f"'qos' must be 0, 1 or 2, got {qos}")
    return MQTTConfig(
        host=host,
        topic=env.get("MQTT_TOPIC") or data.get("topic", ""),
        port=port,
        qos=qos,
        username=env.get("MQTT_USERNAME") or data.get("username"),
        password=env.get("MQTT_PASSWORD") or data.get("password"),
        client_id=env.get("MQTT_CLIENT_ID") or data.get("client_id"),
        reconnect_interval_s=_number(data, "reconnect_interval_s", 1.0, float, minimum=0),
        max_reconnect_interval_s=_number(data, "max_reconnect_interval_s", 60.0, float, minimum=0),
    )


def _parse_influx(data: Dict[str, Any], env: Mapping[str, str]) -> InfluxConfig:
    url = env.get("INFLUX_HOST") or data.get("url", "")
    return InfluxConfig(
        url=normalise_influx_url(url) if url else "",
        bucket=env.get("INFLUX_BUCKET") or data.get("bucket", ""),
        org=env.get("INFLUX_ORG") or data.get("org", ""),
        token=env.get("INFLUX_TOKEN") or data.get("token", ""),
        timeout_ms=_number(data, "timeout_ms", 10_000, int, minimum=1),
    )


def _parse_sink(data: Dict[str, Any]) -> SinkConfig:
    return SinkConfig(
        queue_size=_number(data, "queue_size", 256, int, minimum=1),
        workers=_number(data, "workers", 2, int, minimum=1),
        max_attempts=_number(data, "max_attempts", 5, int, minimum=1),
        backoff_base_s=_number(data, "backoff_base_s", 0.5, float, minimum=0),
        backoff_max_s=_number(data, "backoff_max_s", 30.0, float, minimum=0),
        backoff_jitter=_number(data, "backoff_jitter", 0.1, float, minimum=0),
        attempt_timeout_s=_number(data, "attempt_timeout_s", 10.0, float, minimum=0),
        shutdown_grace_s=_number(data, "shutdown_grace_s", 10.0, float, minimum=0),
    )


def _read_yaml(path: str | Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise StartupConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise StartupConfigError(f"invalid YAML in {path}: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise StartupConfigError(f"config file {path} must contain a mapping")
    return raw


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise StartupConfigError(f"config section '{name}' must be a mapping")
    return section


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> BridgeConfig:
    env = os.environ if environ is None else environ
    path = path or env.get("SENSORBRIDGE_CONFIG")
    raw = _read_yaml(path) if path else {}

    mqtt_cfg = _parse_mqtt(_section(raw, "mqtt"), env)
    influx_cfg = _parse_influx(_section(raw, "influx"), env)
    sink_cfg = _parse_sink(_section(raw, "sink"))

    missing = [
        name
        for name, value in zip(REQUIRED_ENV, (mqtt_cfg.host, mqtt_cfg.topic, influx_cfg.url, influx_cfg.bucket))
        if not value
    ]
    if missing:
        raise StartupConfigError(f"must set {', '.join(missing)} env variable(s)")

    return BridgeConfig(
        mqtt=mqtt_cfg,
        influx=influx_cfg,
        sink=sink_cfg,
        metrics_port=_number(raw, "metrics_port", 9108, int, minimum=0),
        log_level=parse_log_level(env.get("LOG_LEVEL") or raw.get("log_level", "INFO")),
    )
