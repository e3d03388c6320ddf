"""Event dispatch loop.

One asyncio task reads an event frame, invokes the handler, and writes the
metric and response frames before the next length prefix is read. At most one
event is in flight per worker; an async handler only suspends at its own
await points.

Per iteration:
    queued lifecycle messages + pending callbacks
    -> wait for length (cancellable by lifecycle messages)
    -> read body / decode
    -> dispatch (or discard) -> m frame -> r frame
"""
from __future__ import annotations
import asyncio
import inspect
import sys
import time
import traceback
from typing import Any, Iterable, Optional

from loguru import logger

from . import codec
from .codec import ControlMessage, EventDecoder
from .context import Context, TriggerInfo
from .errors import EventDecodeError, WorkerFatalError
from .event import Event
from .lifecycle import ControlKind, LifecycleController
from .logging import LogBridge, Logger
from .platform import Platform
from .registry import HandlerEntry, HandlerRegistry
from .response import Response, error_response
from .transport import (
    DEFAULT_CONNECT_ATTEMPTS,
    DEFAULT_CONNECT_INTERVAL,
    ControlChannel,
    EventChannel,
)

WRAPPER_INITIALIZED = "wrapperInitialized"


class Worker:
    def __init__(self,
                 handler: str,
                 socket_path: str,
                 control_socket_path: Optional[str] = None,
                 platform_kind: str = "local",
                 namespace: Optional[str] = None,
                 worker_id: Any = None,
                 trigger_kind: Optional[str] = None,
                 trigger_name: Optional[str] = None,
                 decode_event_strings: bool = True,
                 handler_paths: Iterable[str] = (),
                 connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS,
                 connect_interval: float = DEFAULT_CONNECT_INTERVAL,
                 log_bridge: Optional[LogBridge] = None,
                 registry: Optional[HandlerRegistry] = None,
                 platform: Optional[Platform] = None):
        self._socket_path = socket_path
        self._control_socket_path = control_socket_path
        self._connect_attempts = connect_attempts
        self._connect_interval = connect_interval
        self._log_bridge = log_bridge
        self._registry = registry or HandlerRegistry()

        # resolved once; never re-resolved per event
        self._entry: HandlerEntry = self._registry.load(handler, search_paths=handler_paths)

        self._decoder = EventDecoder(decode_strings=decode_event_strings)
        self._platform = platform or Platform(platform_kind, namespace=namespace)
        self._logger = Logger().bind(worker_id=worker_id) if worker_id is not None else Logger()
        self._context = Context(self._logger, self._platform, worker_id,
                                TriggerInfo(kind=trigger_kind, name=trigger_name))
        self._lifecycle = LifecycleController(self._platform)
        self._channel: Optional[EventChannel] = None
        self._control_channel: Optional[ControlChannel] = None
        self._control_task: Optional[asyncio.Task] = None
        self._ready_sent = False

    @classmethod
    def from_config(cls, config, log_bridge: Optional[LogBridge] = None) -> "Worker":
        return cls(handler=config.handler,
                   socket_path=config.socket_path,
                   control_socket_path=config.control_socket_path,
                   platform_kind=config.platform_kind,
                   namespace=config.namespace,
                   worker_id=config.worker_id,
                   trigger_kind=config.trigger_kind,
                   trigger_name=config.trigger_name,
                   decode_event_strings=config.decode_event_strings,
                   handler_paths=config.handler_paths,
                   connect_attempts=config.connect_attempts,
                   connect_interval=config.connect_interval,
                   log_bridge=log_bridge)

    @property
    def context(self) -> Context:
        return self._context

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def entry(self) -> HandlerEntry:
        return self._entry

    @property
    def channel(self) -> Optional[EventChannel]:
        return self._channel

    # Startup ----------------------------------------------------------
    async def connect(self):
        self._channel = await EventChannel.open(self._socket_path,
                                                attempts=self._connect_attempts,
                                                interval=self._connect_interval)
        if self._control_socket_path:
            self._control_channel = await ControlChannel.open(self._control_socket_path,
                                                              attempts=self._connect_attempts,
                                                              interval=self._connect_interval)
            self._platform.set_control_channel(self._control_channel)

        # from here on, logs go out as frames on the event channel
        if self._log_bridge is not None:
            self._log_bridge.attach_channel(self._channel)

    async def initialize(self):
        """Run ``init_context`` once, then signal readiness exactly once."""
        await self._registry.initialize(self._entry, self._context)
        if self._ready_sent:
            return
        self._ready_sent = True
        self._channel.write_ready()
        await self._channel.drain()
        if self._control_channel is not None:
            await self._control_channel.send_and_drain(
                ControlMessage(kind=WRAPPER_INITIALIZED, attributes={"ready": "true"}))
            self._control_task = asyncio.ensure_future(self._read_control_messages())
        self._lifecycle.mark_ready()
        logger.debug(f"worker ready handler={self._entry.reference}")

    async def _read_control_messages(self):
        while True:
            try:
                message = await self._control_channel.receive()
            except ValueError as e:
                logger.warning(f"Dropping malformed control message: {e}")
                continue
            except (WorkerFatalError, OSError) as e:
                logger.error(f"Control channel unusable, no longer reading it: {e}")
                return
            if message is None:
                logger.debug("Control channel closed")
                return
            try:
                kind = ControlKind(message.kind)
            except ValueError:
                logger.debug(f"Ignoring control message of kind {message.kind!r}")
                continue
            self._lifecycle.submit(kind)

    # Serving ----------------------------------------------------------
    async def serve_requests(self, num_requests: Optional[int] = None):
        """Read events and write replies until ``num_requests`` frames were consumed."""
        self._lifecycle.mark_serving()
        while num_requests is None or num_requests > 0:
            try:
                await self._process_lifecycle()

                size = await self._wait_for_length()
                if size is None:
                    continue

                try:
                    event = await self._read_event(size)
                except EventDecodeError as exc:
                    self._on_serving_error(exc)
                else:
                    await self._dispatch(event)

                if num_requests is not None:
                    num_requests -= 1

            except WorkerFatalError as exc:
                self._on_serving_error(exc)
                raise

        await self._process_lifecycle()

    async def _process_lifecycle(self):
        self._lifecycle.apply_queued()
        await self._lifecycle.run_pending_callbacks()

    async def _wait_for_length(self) -> Optional[int]:
        read_task = asyncio.ensure_future(codec.read_length(self._channel.reader))
        message_task = asyncio.ensure_future(self._lifecycle.wait_for_message())
        try:
            done, _ = await asyncio.wait({read_task, message_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            message_task.cancel()
            if not read_task.done():
                read_task.cancel()

        if message_task in done:
            self._lifecycle.apply(message_task.result())

        if read_task in done:
            return read_task.result()

        # nothing was consumed yet, the next iteration reads the same prefix
        try:
            await read_task
        except asyncio.CancelledError:
            pass
        return None

    async def _read_event(self, size: int) -> Event:
        await codec.read_body(self._channel.reader, size, self._decoder)
        return self._decoder.decode()

    async def _dispatch(self, event: Event):
        if self._lifecycle.discard_events:
            logger.debug(f"Discarding event id={event.id} state={self._lifecycle.state.value}")
            return

        start_time = time.perf_counter()
        output: Any = None
        handler_exc: Optional[BaseException] = None
        handler_traceback = ""
        try:
            output = self._entry.function(self._context, event)
            if inspect.isawaitable(output):
                output = await output
        except asyncio.CancelledError:
            raise
        except BaseException as exc:  # noqa: BLE001
            handler_exc = exc
            handler_traceback = traceback.format_exc()

        # downstream consumers never expect a zero duration
        duration = (time.perf_counter() - start_time) or sys.float_info.min
        self._channel.write_metric(duration)

        if handler_exc is None:
            try:
                frame = self._encode_response(Response.from_handler_output(output))
            except asyncio.CancelledError:
                raise
            except BaseException as exc:  # noqa: BLE001
                handler_exc = exc
                handler_traceback = traceback.format_exc()

        if handler_exc is not None:
            frame = self._error_frame(handler_exc, "Exception caught in handler", handler_traceback)

        self._channel.write_frame(frame)
        await self._channel.drain()

    def _encode_response(self, response: Response) -> bytes:
        return codec.encode_tagged(codec.RESPONSE_TAG, response.to_dict())

    def _error_frame(self, exc: BaseException, error_message: str, formatted_traceback: str) -> bytes:
        logger.bind(exc=str(exc), traceback=formatted_traceback).error(error_message)
        body = f'{error_message} - "{exc}": {formatted_traceback}'
        return self._encode_response(error_response(body))

    def _on_serving_error(self, exc: BaseException):
        formatted = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        frame = self._error_frame(exc, "Exception caught while serving", formatted)
        try:
            self._channel.write_frame(frame)
        except Exception as write_exc:  # noqa: BLE001
            print("Failed to write message to processor after serving error detected, is socket open?\n"
                  f"Exception: {write_exc}")

    # Shutdown ---------------------------------------------------------
    async def close(self):
        self._lifecycle.mark_shutdown()
        if self._control_task is not None:
            self._control_task.cancel()
            try:
                await self._control_task
            except asyncio.CancelledError:
                pass
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Control reader ended with an error: {e}")
            self._control_task = None
        if self._log_bridge is not None and self._log_bridge.channel is self._channel:
            self._log_bridge.attach_stdout()
        if self._control_channel is not None:
            await self._control_channel.close()
        if self._channel is not None:
            await self._channel.close()

    async def run(self, install_signal_handlers: bool = True):
        try:
            await self.connect()
            await self.initialize()
            if install_signal_handlers:
                self._lifecycle.install_signal_handlers()
            await self.serve_requests()
        finally:
            if install_signal_handlers:
                self._lifecycle.remove_signal_handlers()
            await self.close()


__all__ = ["Worker", "WRAPPER_INITIALIZED"]
