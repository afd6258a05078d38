# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """
    Receives every bootstrap event. Preparation and join events arrive from
    the orchestrator's worker threads, so notify() may run concurrently.
    """

    def notify(self, event: BaseEvent) -> None: ...
