"""JSON encoding used for every outbound frame."""
from __future__ import annotations
import base64
import dataclasses
import datetime
import json
from typing import Any


class Encoder(json.JSONEncoder):
    """json.JSONEncoder that also understands the types handlers commonly return."""

    def default(self, obj: Any):
        if isinstance(obj, (datetime.datetime, datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, (bytes, bytearray)):
            try:
                return bytes(obj).decode("utf-8")
            except UnicodeDecodeError:
                return base64.b64encode(bytes(obj)).decode("ascii")
        if isinstance(obj, (set, frozenset)):
            return list(obj)
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


class LenientEncoder(Encoder):
    """Never fails: anything unknown is rendered with ``str``."""

    def default(self, obj: Any):
        try:
            return super().default(obj)
        except TypeError:
            return str(obj)


_encoder = Encoder()
_lenient_encoder = LenientEncoder()


def encode(obj: Any) -> str:
    return _encoder.encode(obj)


def encode_lenient(obj: Any) -> str:
    return _lenient_encoder.encode(obj)


__all__ = ["Encoder", "LenientEncoder", "encode", "encode_lenient"]
