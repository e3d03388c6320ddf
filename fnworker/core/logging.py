"""Logging setup and the bridge that ships log records over the event channel.

Users can override the log level with the FNWORKER_LOG_LEVEL env var.

Until the event socket exists every record is written to stdout as one JSON
line. Once the worker is connected the stdout sink is swapped for a sink that
writes each record as an ``l`` frame on the event channel.
"""
from __future__ import annotations
import logging
import os
import sys
import traceback
from typing import Any, Dict, Optional

from loguru import logger

from . import json_encoder
from .codec import LOG_TAG

LOG_LEVEL = os.getenv("FNWORKER_LOG_LEVEL", "DEBUG").upper()

_LEVEL_NAMES = {
    "TRACE": "debug",
    "DEBUG": "debug",
    "INFO": "info",
    "SUCCESS": "info",
    "WARNING": "warning",
    "ERROR": "error",
    "CRITICAL": "critical",
}

_BRIDGE: Optional["LogBridge"] = None


def normalize_level(level: Any) -> str:
    if isinstance(level, int):
        return logging.getLevelName(level).upper()
    name = str(level).strip().upper()
    if name == "WARN":
        return "WARNING"
    if name == "FATAL":
        return "CRITICAL"
    return name


def format_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a loguru record into the JSON shape the host expects."""
    with_fields = dict(record["extra"])
    exc = record["exception"]
    if exc is not None and exc.type is not None:
        with_fields.setdefault("traceback", "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)))
    return {
        "datetime": record["time"].isoformat(),
        "level": _LEVEL_NAMES.get(record["level"].name, record["level"].name.lower()),
        "message": record["message"],
        "name": record["name"],
        "with": with_fields,
    }


class LogBridge:
    """Owns the loguru sink currently receiving worker logs (stdout or socket)."""

    def __init__(self, level: Any = LOG_LEVEL, stream=None):
        self.level = normalize_level(level)
        self._stream = stream
        self._sink_id: Optional[int] = None
        self._channel = None

    @property
    def channel(self):
        return self._channel

    def _stdout_sink(self, message):
        stream = self._stream or sys.stdout
        stream.write(json_encoder.encode_lenient(format_record(message.record)) + "\n")
        stream.flush()

    def _channel_sink(self, message):
        channel = self._channel
        if channel is None:
            return
        line = LOG_TAG + json_encoder.encode_lenient(format_record(message.record)) + "\n"
        channel.write_log_line(line.encode("utf-8"))

    def _replace_sink(self, sink):
        if self._sink_id is not None:
            try:
                logger.remove(self._sink_id)
            except ValueError:
                pass
        self._sink_id = logger.add(sink, level=self.level, format="{message}", catch=True)

    def attach_stdout(self):
        self._channel = None
        self._replace_sink(self._stdout_sink)

    def attach_channel(self, channel):
        self._channel = channel
        self._replace_sink(self._channel_sink)

    def set_level(self, level: Any):
        self.level = normalize_level(level)
        if self._channel is not None:
            self._replace_sink(self._channel_sink)
        elif self._sink_id is not None:
            self._replace_sink(self._stdout_sink)

    def detach(self):
        if self._sink_id is not None:
            try:
                logger.remove(self._sink_id)
            except ValueError:
                pass
        self._sink_id = None
        self._channel = None


class InterceptHandler(logging.Handler):
    """Route standard library logging records into loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class Logger:
    """Logger handed to user code through the context.

    Wraps a (possibly bound) loguru logger and adds the structured ``*_with``
    variants whose keyword arguments land in the record's ``with`` map.
    """

    def __init__(self, bound=None):
        self._logger = bound if bound is not None else logger

    def bind(self, **fields) -> "Logger":
        return Logger(self._logger.bind(**fields))

    def _log(self, level: str, message: str, args, fields: Optional[Dict[str, Any]] = None, exception=False):
        target = self._logger.bind(**fields) if fields else self._logger
        target.opt(depth=2, exception=exception).log(level, str(message), *args)

    def debug(self, message, *args):
        self._log("DEBUG", message, args)

    def info(self, message, *args):
        self._log("INFO", message, args)

    def warn(self, message, *args):
        self._log("WARNING", message, args)

    warning = warn

    def error(self, message, *args):
        self._log("ERROR", message, args)

    def critical(self, message, *args):
        self._log("CRITICAL", message, args)

    def exception(self, message, *args):
        self._log("ERROR", message, args, exception=True)

    def debug_with(self, message, *args, **fields):
        self._log("DEBUG", message, args, fields)

    def info_with(self, message, *args, **fields):
        self._log("INFO", message, args, fields)

    def warn_with(self, message, *args, **fields):
        self._log("WARNING", message, args, fields)

    warning_with = warn_with

    def error_with(self, message, *args, **fields):
        self._log("ERROR", message, args, fields)

    def critical_with(self, message, *args, **fields):
        self._log("CRITICAL", message, args, fields)


def setup_logging(level: Any = None, intercept_stdlib: bool = True) -> LogBridge:
    """Configure loguru once and return the process-wide bridge (stdout sink)."""
    global _BRIDGE
    if _BRIDGE is not None:
        if level is not None:
            _BRIDGE.set_level(level)
        return _BRIDGE

    # Remove default handler then add our sink
    try:
        logger.remove()
    except ValueError:
        pass
    _BRIDGE = LogBridge(level or LOG_LEVEL)
    _BRIDGE.attach_stdout()

    if intercept_stdlib:
        root = logging.getLogger()
        if not any(isinstance(h, InterceptHandler) for h in root.handlers):
            root.addHandler(InterceptHandler())
        root.setLevel(_stdlib_level(_BRIDGE.level))
    return _BRIDGE


def _stdlib_level(name: str) -> int:
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.DEBUG


__all__ = ["LogBridge", "Logger", "InterceptHandler", "setup_logging", "format_record", "normalize_level"]
