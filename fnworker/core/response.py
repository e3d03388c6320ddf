"""Canonical response and the normalization of handler return values."""
from __future__ import annotations
import base64
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from . import json_encoder
from .errors import ResponseEncodingError

TEXT_PLAIN = "text/plain"
APPLICATION_JSON = "application/json"


@dataclass
class Response:
    body: Any = None
    headers: Dict[str, Any] = field(default_factory=dict)
    content_type: Optional[str] = None
    status_code: int = 200

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape; binary bodies are base64 encoded."""
        body = self.body
        if body is None:
            body = ""
        if isinstance(body, (bytes, bytearray)):
            body = base64.b64encode(bytes(body)).decode("ascii")
            body_encoding = "base64"
        else:
            body_encoding = "text"
        return {
            "body": body,
            "body_encoding": body_encoding,
            "content_type": self.content_type or TEXT_PLAIN,
            "headers": dict(self.headers or {}),
            "status_code": self.status_code,
        }

    @classmethod
    def from_handler_output(cls, output: Any,
                            encode: Callable[[Any], str] = json_encoder.encode) -> "Response":
        if isinstance(output, Response):
            body = output.body
            if isinstance(body, (dict, list)):
                body = encode(body)
            return cls(body=body,
                       headers=dict(output.headers or {}),
                       content_type=output.content_type or TEXT_PLAIN,
                       status_code=output.status_code)

        if output is None:
            return cls(body="", content_type=TEXT_PLAIN)

        if isinstance(output, (str, bytes, bytearray)):
            return cls(body=output, content_type=TEXT_PLAIN)

        if isinstance(output, tuple):
            if len(output) != 2 or isinstance(output[0], bool) or not isinstance(output[0], int):
                raise ResponseEncodingError(
                    f"Tuple output must be (status_code: int, body), got {output!r}")
            status_code, body = output
            if isinstance(body, (str, bytes, bytearray)):
                return cls(body=body, content_type=TEXT_PLAIN, status_code=status_code)
            return cls(body=encode(body), content_type=APPLICATION_JSON, status_code=status_code)

        if isinstance(output, (dict, list)):
            return cls(body=encode(output), content_type=APPLICATION_JSON)

        try:
            return cls(body=str(output), content_type=TEXT_PLAIN)
        except Exception as e:  # noqa: BLE001
            raise ResponseEncodingError(
                f"Unsupported handler output of type {type(output).__name__}: {e}") from e


def error_response(message: str, status_code: int = 500) -> Response:
    return Response(body=message, content_type=TEXT_PLAIN, status_code=status_code)


__all__ = ["Response", "error_response", "TEXT_PLAIN", "APPLICATION_JSON"]
