"""Per-invocation event record.

An ``Event`` is built from exactly one decoded frame (a msgpack map) and is
handed to the handler as an explicit argument; it is never stored on the
context or reused between invocations.
"""
from __future__ import annotations
import datetime
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional


class Headers(MutableMapping):
    """Mapping with case-insensitive keys that keeps the original key casing."""

    def __init__(self, data=None, **kwargs):
        self._store: Dict[str, tuple] = {}
        self.update(data or {}, **kwargs)

    def __setitem__(self, key: str, value: Any):
        self._store[key.lower()] = (key, value)

    def __getitem__(self, key: str):
        return self._store[key.lower()][1]

    def __delitem__(self, key: str):
        del self._store[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __eq__(self, other):
        if not isinstance(other, MutableMapping):
            return NotImplemented
        other = other if isinstance(other, Headers) else Headers(other)
        return {k: v for k, (_, v) in self._store.items()} == {k: v for k, (_, v) in other._store.items()}

    def __repr__(self):
        return f"Headers({dict(self.items())!r})"

    def copy(self) -> "Headers":
        return Headers(dict(self.items()))


@dataclass(frozen=True)
class EventTrigger:
    klass: str = ""
    kind: str = ""


@dataclass(frozen=True)
class Event:
    id: Any = ""
    body: Any = b""
    content_type: str = ""
    headers: Headers = field(default_factory=Headers)
    fields: Dict[str, Any] = field(default_factory=dict)
    path: str = ""
    url: str = ""
    method: str = ""
    trigger: EventTrigger = field(default_factory=EventTrigger)
    timestamp: Optional[datetime.datetime] = None
    type: str = ""
    type_version: str = ""
    version: str = ""
    size: int = 0
    shard_id: int = 0
    offset: int = 0
    topic: str = ""
    last_in_batch: bool = False

    def get_header(self, name: str, default=None):
        return self.headers.get(name, default)

    def get_field(self, name: str, default=None):
        return self.fields.get(name, default)

    @classmethod
    def from_message(cls, message: Dict[Any, Any]) -> "Event":
        """Build an Event from a decoded msgpack map.

        When the map was unpacked in raw mode (keys and strings left as bytes),
        keys and metadata are decoded to text while ``body`` stays untouched.
        """
        message = {_text(k): v for k, v in message.items()}
        trigger = {_text(k): _text(v) for k, v in (message.get("trigger") or {}).items()}
        body = message.get("body", b"")
        if body is None:
            body = b""
        size = message.get("size")
        if size is None:
            size = len(body) if isinstance(body, (bytes, bytearray, str)) else 0
        content_type = message.get("content_type", message.get("content-type", ""))
        return cls(
            id=_text(message.get("id", "")),
            body=body,
            content_type=_text(content_type or ""),
            headers=Headers({_text(k): _text(v) for k, v in (message.get("headers") or {}).items()}),
            fields={_text(k): _text(v) for k, v in (message.get("fields") or {}).items()},
            path=_text(message.get("path") or ""),
            url=_text(message.get("url") or ""),
            method=_text(message.get("method") or ""),
            trigger=EventTrigger(klass=trigger.get("class", ""), kind=trigger.get("kind", "")),
            timestamp=_timestamp(message.get("timestamp")),
            type=_text(message.get("type") or ""),
            type_version=_text(message.get("type_version") or ""),
            version=_text(message.get("version") or ""),
            size=int(size),
            shard_id=int(message.get("shard_id") or 0),
            offset=int(message.get("offset") or 0),
            topic=_text(message.get("topic") or ""),
            last_in_batch=bool(message.get("last_in_batch", False)),
        )

    def to_message(self) -> Dict[str, Any]:
        """Inverse of ``from_message``; the map a host would pack for this event."""
        if self.timestamp is None:
            timestamp = 0
        else:
            seconds = self.timestamp.timestamp()
            timestamp = int(seconds) if seconds == int(seconds) else seconds
        return {
            "id": self.id,
            "body": self.body,
            "content_type": self.content_type,
            "headers": dict(self.headers.items()),
            "fields": dict(self.fields),
            "path": self.path,
            "url": self.url,
            "method": self.method,
            "trigger": {"class": self.trigger.klass, "kind": self.trigger.kind},
            "timestamp": timestamp,
            "type": self.type,
            "type_version": self.type_version,
            "version": self.version,
            "size": self.size,
            "shard_id": self.shard_id,
            "offset": self.offset,
            "topic": self.topic,
            "last_in_batch": self.last_in_batch,
        }


def _text(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


def _timestamp(value: Any) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)


__all__ = ["Event", "EventTrigger", "Headers"]
