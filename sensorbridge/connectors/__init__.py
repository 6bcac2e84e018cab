# SPDX-License-Identifier: Apache-2.0
"""Broker subscribers."""
from __future__ import annotations

from .base import BaseSubscriber
from .mqtt import MQTTSubscriber

__all__ = ["BaseSubscriber", "MQTTSubscriber"]
