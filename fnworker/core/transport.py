"""Unix socket connections to the host (event channel + optional control channel)."""
from __future__ import annotations
import asyncio
import threading
from typing import Optional

from loguru import logger

from . import codec
from .codec import ControlMessage
from .errors import ConnectionFailedError, WorkerDisconnectedError

DEFAULT_CONNECT_ATTEMPTS = 60
DEFAULT_CONNECT_INTERVAL = 1.0


async def connect(path: str,
                  attempts: int = DEFAULT_CONNECT_ATTEMPTS,
                  interval: float = DEFAULT_CONNECT_INTERVAL):
    """Open a unix stream connection, retrying while the host creates the socket."""
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.open_unix_connection(path)
        except OSError as e:
            last_error = e
            logger.warning(f"Failed to connect to {path} (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                await asyncio.sleep(interval)
    raise ConnectionFailedError(f"Failed to connect to {path} in given timeframe: {last_error}")


class EventChannel:
    """Duplex event stream: length-prefixed events in, tagged lines out.

    Every frame goes out with a single ``transport.write`` so frames are never
    split; log lines emitted from foreign threads are marshalled to the loop.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, path: str = ""):
        self.reader = reader
        self.writer = writer
        self.path = path
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._closed = False

    @classmethod
    async def open(cls, path: str, attempts: int = DEFAULT_CONNECT_ATTEMPTS,
                   interval: float = DEFAULT_CONNECT_INTERVAL) -> "EventChannel":
        reader, writer = await connect(path, attempts=attempts, interval=interval)
        return cls(reader, writer, path)

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    def write_frame(self, frame: bytes):
        if self.closed:
            raise WorkerDisconnectedError("Event channel is closed")
        self.writer.write(frame)

    def write_log_line(self, frame: bytes):
        if self.closed:
            return
        if threading.get_ident() == self._loop_thread:
            self.writer.write(frame)
        else:
            self._loop.call_soon_threadsafe(self._write_if_open, frame)

    def _write_if_open(self, frame: bytes):
        if not self.closed:
            self.writer.write(frame)

    def write_ready(self):
        self.write_frame(codec.encode_tagged(codec.READY_TAG))

    def write_metric(self, duration: float):
        self.write_frame(codec.encode_tagged(codec.METRIC_TAG, {"duration": duration}))

    def write_response(self, payload: dict):
        self.write_frame(codec.encode_tagged(codec.RESPONSE_TAG, payload))

    async def drain(self):
        try:
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise WorkerDisconnectedError(f"Failed writing to event channel: {e}") from e

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class ControlChannel:
    """Length-prefixed JSON control messages in both directions."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, path: str = ""):
        self.reader = reader
        self.writer = writer
        self.path = path
        self._closed = False

    @classmethod
    async def open(cls, path: str, attempts: int = DEFAULT_CONNECT_ATTEMPTS,
                   interval: float = DEFAULT_CONNECT_INTERVAL) -> "ControlChannel":
        reader, writer = await connect(path, attempts=attempts, interval=interval)
        return cls(reader, writer, path)

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    def send(self, message: ControlMessage):
        if self.closed:
            raise ConnectionError("Control channel is closed")
        self.writer.write(codec.encode_control_message(message))

    async def send_and_drain(self, message: ControlMessage):
        self.send(message)
        await self.writer.drain()

    async def receive(self) -> Optional[ControlMessage]:
        return await codec.read_control_message(self.reader)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


__all__ = ["connect", "EventChannel", "ControlChannel", "DEFAULT_CONNECT_ATTEMPTS", "DEFAULT_CONNECT_INTERVAL"]
