"""Per-worker context handed to every handler call."""
from __future__ import annotations
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Optional

from .logging import Logger
from .platform import Platform
from .response import Response


@dataclass(frozen=True)
class TriggerInfo:
    kind: Optional[str] = None
    name: Optional[str] = None


class Context:
    """Created once at startup; holds no reference to the event being handled."""

    Response = Response

    def __init__(self, logger: Logger, platform: Platform, worker_id=None,
                 trigger: Optional[TriggerInfo] = None):
        self.logger = logger
        self.platform = platform
        self.worker_id = worker_id
        self.trigger = trigger or TriggerInfo()
        self.user_data = SimpleNamespace()


__all__ = ["Context", "TriggerInfo"]
