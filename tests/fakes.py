"""In-process stand-ins for the host side of the worker sockets."""
import asyncio
import json

from fnworker.core import codec

TIMEOUT = 10


class FakeHost:
    """Unix socket server playing the host end of the event channel."""

    def __init__(self, path: str):
        self.path = path
        self.reader = None
        self.writer = None
        self._server = None
        self._connected = None

    async def start(self):
        self._connected = asyncio.Event()
        self._server = await asyncio.start_unix_server(self._on_connect, path=self.path)
        return self

    async def _on_connect(self, reader, writer):
        self.reader, self.writer = reader, writer
        self._connected.set()

    async def wait_connected(self):
        await asyncio.wait_for(self._connected.wait(), TIMEOUT)

    def send_event(self, message: dict):
        self.writer.write(codec.encode_event(message))

    def send_raw(self, data: bytes):
        self.writer.write(data)

    async def read_frame(self, skip_logs: bool = True, timeout: float = TIMEOUT):
        """Next outbound line as ``(tag, payload)``; payload is the decoded JSON or None."""
        while True:
            line = await asyncio.wait_for(self.reader.readline(), timeout)
            if not line:
                raise EOFError("worker closed the event channel")
            text = line.decode("utf-8").rstrip("\n")
            tag, rest = text[0], text[1:]
            if tag == codec.LOG_TAG and skip_logs:
                continue
            return tag, (json.loads(rest) if rest else None)

    async def read_reply(self):
        """Read the ``m`` then ``r`` pair produced for one event."""
        metric = await self.read_frame()
        response = await self.read_frame()
        assert metric[0] == codec.METRIC_TAG, metric
        assert response[0] == codec.RESPONSE_TAG, response
        return metric[1], response[1]

    async def close(self):
        if self.writer is not None:
            self.writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


class FakeControlHost(FakeHost):
    """Host end of the control channel (length-prefixed JSON both ways)."""

    def send_control(self, kind: str, attributes=None):
        message = codec.ControlMessage(kind=kind, attributes=attributes or {})
        self.writer.write(codec.encode_control_message(message))

    async def read_control(self, timeout: float = TIMEOUT):
        return await asyncio.wait_for(codec.read_control_message(self.reader), timeout)


class RecordingChannel:
    """Collects log lines the way EventChannel.write_log_line would receive them."""

    def __init__(self):
        self.lines = []

    def write_log_line(self, frame: bytes):
        self.lines.append(frame)

    def records(self):
        return [json.loads(line.decode("utf-8")[1:]) for line in self.lines]
