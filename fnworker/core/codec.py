"""Frame codec for the event and control channels.

Inbound (event channel):
    <uint32 big-endian length><msgpack map>

Inbound/outbound (control channel):
    <uint32 big-endian length><json object {"kind": ..., "attributes": {...}}>

Outbound (event channel), one line per frame:
    s            ready
    m<json>      duration metric
    r<json>      response
    l<json>      log record
"""
from __future__ import annotations
import asyncio
import json
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import msgpack

from . import json_encoder
from .errors import EventDecodeError, IllegalFrameSizeError, WorkerDisconnectedError
from .event import Event

LENGTH_PREFIX = struct.Struct(">I")

READY_TAG = "s"
RESPONSE_TAG = "r"
METRIC_TAG = "m"
LOG_TAG = "l"

# the host pre-handles request limits, this only bounds a single frame
MAX_BUFFER_SIZE = 1024 * 1024 * 1024


async def read_length(reader: asyncio.StreamReader) -> int:
    try:
        buf = await reader.readexactly(LENGTH_PREFIX.size)
    except asyncio.IncompleteReadError as e:
        raise WorkerDisconnectedError("Client disconnected") from e
    except OSError as e:
        raise WorkerDisconnectedError(f"Client connection failed: {e}") from e
    (size,) = LENGTH_PREFIX.unpack(buf)
    if size <= 0:
        raise IllegalFrameSizeError(size)
    return size


async def read_body(reader: asyncio.StreamReader, size: int, decoder: "EventDecoder") -> int:
    """Feed exactly ``size`` bytes from ``reader`` into ``decoder``.

    Partial reads are accumulated; a zero-byte read before completion means
    the host went away.
    """
    received = 0
    while received < size:
        try:
            chunk = await reader.read(size - received)
        except OSError as e:
            raise WorkerDisconnectedError(f"Client connection failed: {e}") from e
        if not chunk:
            raise WorkerDisconnectedError("Client disconnected")
        decoder.feed(chunk)
        received += len(chunk)
    return received


class EventDecoder:
    """Collects one frame at a time and decodes it as a single msgpack map.

    Every frame is unpacked on its own, so trailing or broken bytes in frame N
    are dropped together with it and never reach frame N+1.
    """

    def __init__(self, decode_strings: bool = True, max_buffer_size: int = MAX_BUFFER_SIZE):
        self.decode_strings = decode_strings
        self._max_buffer_size = max_buffer_size
        self._buffer = bytearray()

    def feed(self, data: bytes):
        self._buffer.extend(data)

    def reset(self):
        self._buffer = bytearray()

    def decode(self) -> Event:
        frame = bytes(self._buffer)
        self.reset()
        try:
            if len(frame) > self._max_buffer_size:
                raise ValueError(f"Frame of {len(frame)} bytes exceeds {self._max_buffer_size}")
            # raw=True leaves strings undecoded so invalid utf-8 cannot fail the frame;
            # trailing bytes raise ExtraData
            message = msgpack.unpackb(frame, raw=not self.decode_strings)
            if not isinstance(message, dict):
                raise TypeError(f"Expected a map, got {type(message).__name__}")
            return Event.from_message(message)
        except Exception as e:  # noqa: BLE001
            raise EventDecodeError(f"Failed to decode event: {e}") from e


def encode_tagged(tag: str, payload: Any = None) -> bytes:
    if len(tag) != 1:
        raise ValueError(f"Frame tag must be a single character, got {tag!r}")
    if payload is None:
        return (tag + "\n").encode("utf-8")
    return (tag + json_encoder.encode(payload) + "\n").encode("utf-8")


def encode_length_prefixed(payload: bytes) -> bytes:
    return LENGTH_PREFIX.pack(len(payload)) + payload


def encode_event(event) -> bytes:
    """Length-prefixed msgpack frame for an Event (or an event map)."""
    message = event.to_message() if isinstance(event, Event) else event
    return encode_length_prefixed(msgpack.packb(message, use_bin_type=True))


@dataclass
class ControlMessage:
    kind: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "attributes": self.attributes}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControlMessage":
        if not isinstance(data, dict) or "kind" not in data:
            raise ValueError(f"Malformed control message: {data!r}")
        return cls(kind=str(data["kind"]), attributes=dict(data.get("attributes") or {}))


def encode_control_message(message: ControlMessage) -> bytes:
    return encode_length_prefixed(json_encoder.encode(message.to_dict()).encode("utf-8"))


async def read_control_message(reader: asyncio.StreamReader) -> Optional[ControlMessage]:
    """Read one control message; ``None`` when the control channel closed cleanly."""
    try:
        size = await read_length(reader)
    except WorkerDisconnectedError:
        return None
    try:
        payload = await reader.readexactly(size)
    except asyncio.IncompleteReadError:
        return None
    return ControlMessage.from_dict(json.loads(payload))


__all__ = [
    "LENGTH_PREFIX",
    "READY_TAG",
    "RESPONSE_TAG",
    "METRIC_TAG",
    "LOG_TAG",
    "read_length",
    "read_body",
    "EventDecoder",
    "encode_tagged",
    "encode_length_prefixed",
    "encode_event",
    "ControlMessage",
    "encode_control_message",
    "read_control_message",
]
