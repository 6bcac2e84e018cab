# SPDX-License-Identifier: Apache-2.0
"""MQTT to InfluxDB ingest bridge for greenhouse sensors."""

__version__ = "0.1.0"
