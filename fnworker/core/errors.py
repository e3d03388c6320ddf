"""Centralized exception hierarchy for the worker runtime.

Only ``WorkerFatalError`` and its subclasses end the worker process; every
other error is scoped to the event being handled.
"""
from __future__ import annotations


class WorkerError(Exception):
    """Base class for all worker related errors."""


class WorkerFatalError(WorkerError):
    """The worker cannot (and should not) recover from this."""


class WorkerDisconnectedError(WorkerFatalError):
    pass


class IllegalFrameSizeError(WorkerFatalError):
    def __init__(self, size: int):
        super().__init__(f"Illegal message size: {size}")
        self.size = size


class ConnectionFailedError(WorkerFatalError):
    pass


class WorkerInitError(WorkerFatalError):
    pass


class ConfigError(WorkerInitError):
    pass


class HandlerLoadError(WorkerInitError):
    pass


class MalformedHandlerError(HandlerLoadError, ValueError):
    pass


class HandlerNotFoundError(HandlerLoadError):
    pass


class EventDecodeError(WorkerError):
    pass


class ResponseEncodingError(WorkerError, TypeError):
    pass


class PlatformError(WorkerError):
    pass


__all__ = [
    "WorkerError",
    "WorkerFatalError",
    "WorkerDisconnectedError",
    "IllegalFrameSizeError",
    "ConnectionFailedError",
    "WorkerInitError",
    "ConfigError",
    "HandlerLoadError",
    "MalformedHandlerError",
    "HandlerNotFoundError",
    "EventDecodeError",
    "ResponseEncodingError",
    "PlatformError",
]
