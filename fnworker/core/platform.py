"""Platform capabilities exposed to handlers through ``context.platform``."""
from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from . import json_encoder
from .codec import ControlMessage
from .errors import PlatformError
from .event import Event
from .response import APPLICATION_JSON, Response

STREAM_MESSAGE_ACK = "streamMessageAck"
FUNCTION_PORT = 8080


@dataclass
class QualifiedOffset:
    topic: str
    partition: int
    offset: int

    @classmethod
    def from_event(cls, event: Event) -> "QualifiedOffset":
        return cls(topic=event.topic, partition=event.shard_id, offset=event.offset)


class Platform:
    def __init__(self, kind: str = "local", namespace: Optional[str] = None,
                 control_channel=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.kind = kind
        self.namespace = namespace or "default"
        self._control_channel = control_channel
        self._transport = transport
        self._drain_callback: Optional[Callable[[], Any]] = None
        self._termination_callback: Optional[Callable[[], Any]] = None

    @property
    def drain_callback(self):
        return self._drain_callback

    @property
    def termination_callback(self):
        return self._termination_callback

    def set_control_channel(self, control_channel):
        self._control_channel = control_channel

    def set_drain_callback(self, callback: Callable[[], Any]):
        self._drain_callback = callback

    def set_termination_callback(self, callback: Callable[[], Any]):
        self._termination_callback = callback

    def get_function_url(self, function_name: str) -> str:
        if self.kind == "kube":
            return f"nuclio-{function_name}:{FUNCTION_PORT}"
        return f"nuclio-{self.namespace}-{function_name}:{FUNCTION_PORT}"

    async def call_function(self, function_name: str, event: Event, timeout: Optional[float] = None) -> Response:
        """Invoke another function over HTTP and return its response."""
        headers = {k: str(v) for k, v in event.headers.items()}
        headers["X-Nuclio-Target"] = function_name
        body = event.body
        if isinstance(body, (dict, list)):
            body = json_encoder.encode(body)
            headers.setdefault("Content-Type", APPLICATION_JSON)
        elif event.content_type:
            headers.setdefault("Content-Type", event.content_type)

        path = event.path if event.path.startswith("/") else "/" + event.path
        url = f"http://{self.get_function_url(function_name)}{path}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                resp = await client.request(event.method or "GET", url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise PlatformError(f"Failed calling function {function_name}: {e}") from e

        content_type = resp.headers.get("content-type", "")
        response_body: Any = resp.content
        if content_type.startswith(APPLICATION_JSON):
            try:
                response_body = json.loads(resp.content)
            except ValueError:
                logger.warning(f"Function {function_name} returned invalid JSON body")
        return Response(body=response_body,
                        headers=dict(resp.headers.items()),
                        content_type=content_type,
                        status_code=resp.status_code)

    def explicit_ack(self, target) -> None:
        """Ack a stream message (an Event or a QualifiedOffset) over the control channel."""
        if self._control_channel is None:
            raise PlatformError("Explicit ack requires a control channel")
        offset = QualifiedOffset.from_event(target) if isinstance(target, Event) else target
        message = ControlMessage(kind=STREAM_MESSAGE_ACK, attributes={
            "topic": offset.topic,
            "partition": offset.partition,
            "offset": offset.offset,
        })
        try:
            self._control_channel.send(message)
        except ConnectionError as e:
            raise PlatformError(f"Failed sending explicit ack: {e}") from e


__all__ = ["Platform", "QualifiedOffset", "STREAM_MESSAGE_ACK"]
