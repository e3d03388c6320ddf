"""
fnworker

Out-of-process function runtime worker: receives events from the host over a
Unix socket, runs the user handler and streams responses, metrics and logs back.
"""

from .core.config_loader import WorkerConfig, load_config
from .core.context import Context, TriggerInfo
from .core.dispatcher import Worker
from .core.errors import WorkerError, WorkerFatalError
from .core.event import Event, Headers
from .core.platform import Platform, QualifiedOffset
from .core.response import Response

__all__ = [
    "Worker",
    "WorkerConfig",
    "load_config",
    "Context",
    "TriggerInfo",
    "Event",
    "Headers",
    "Response",
    "Platform",
    "QualifiedOffset",
    "WorkerError",
    "WorkerFatalError",
]
