"""Worker lifecycle: drain / terminate / continue.

OS signal handlers and the control-channel reader never touch loop state
directly; they only enqueue a ``ControlKind``. The dispatch loop consumes the
queue between iterations (or while idle, waiting for the next event) and runs
the drain / termination callbacks there, never while a handler is running.
"""
from __future__ import annotations
import asyncio
import inspect
import signal
from enum import Enum
from typing import Dict, Optional

from loguru import logger


class WorkerLifecycleState(str, Enum):
    STARTING = "starting"
    READY = "ready"
    SERVING = "serving"
    DRAINING = "draining"
    TERMINATING = "terminating"
    SHUTDOWN = "shutdown"


class ControlKind(str, Enum):
    DRAIN = "drain"
    TERMINATE = "terminate"
    CONTINUE = "continue"


SIGNALS: Dict[ControlKind, int] = {
    ControlKind.DRAIN: signal.SIGUSR1,
    ControlKind.TERMINATE: signal.SIGTERM,
    ControlKind.CONTINUE: signal.SIGCONT,
}


class LifecycleController:
    def __init__(self, platform=None):
        self.platform = platform
        self.state = WorkerLifecycleState.STARTING
        self.discard_events = False
        self.drain_callback_pending = False
        self.termination_callback_pending = False
        self._terminating = False
        self._queue: "asyncio.Queue[ControlKind]" = asyncio.Queue()
        self._installed_signals = []

    # Message intake ---------------------------------------------------
    def submit(self, kind: ControlKind):
        """Enqueue a lifecycle message. Safe to call from a signal handler."""
        self._queue.put_nowait(ControlKind(kind))

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        loop = loop or asyncio.get_running_loop()
        for kind, sig in SIGNALS.items():
            try:
                loop.add_signal_handler(sig, self.submit, kind)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.warning(f"Cannot install handler for signal {sig}, {kind.value} via signal disabled")
                continue
            self._installed_signals.append(sig)

    def remove_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals = []

    async def wait_for_message(self) -> ControlKind:
        return await self._queue.get()

    def has_pending_messages(self) -> bool:
        return not self._queue.empty()

    # State transitions ------------------------------------------------
    def mark_ready(self):
        self.state = WorkerLifecycleState.READY

    def mark_serving(self):
        if self.state in (WorkerLifecycleState.STARTING, WorkerLifecycleState.READY):
            self.state = WorkerLifecycleState.SERVING

    def mark_shutdown(self):
        self.state = WorkerLifecycleState.SHUTDOWN

    def apply(self, kind: ControlKind):
        kind = ControlKind(kind)
        if kind is ControlKind.DRAIN:
            if self.discard_events:
                logger.debug("Drain requested while already discarding events, ignoring")
                return
            logger.info("Drain requested, discarding incoming events")
            self.discard_events = True
            self.drain_callback_pending = True
            self.state = WorkerLifecycleState.DRAINING
        elif kind is ControlKind.TERMINATE:
            if self._terminating:
                logger.debug("Termination already requested, ignoring")
                return
            logger.info("Termination requested, discarding incoming events")
            self._terminating = True
            self.discard_events = True
            self.termination_callback_pending = True
            self.state = WorkerLifecycleState.TERMINATING
        elif kind is ControlKind.CONTINUE:
            if self._terminating:
                logger.warning("Continue requested while terminating, ignoring")
                return
            if self.discard_events:
                logger.info("Continue requested, resuming event handling")
            self.discard_events = False
            self.state = WorkerLifecycleState.SERVING

    def apply_queued(self) -> int:
        """Apply every queued message without blocking; returns how many were applied."""
        applied = 0
        while True:
            try:
                kind = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            self.apply(kind)
            applied += 1

    async def run_pending_callbacks(self):
        if self.drain_callback_pending:
            self.drain_callback_pending = False
            await self._run_callback("drain", getattr(self.platform, "drain_callback", None))
        if self.termination_callback_pending:
            self.termination_callback_pending = False
            await self._run_callback("termination", getattr(self.platform, "termination_callback", None))

    async def _run_callback(self, name: str, callback):
        if callback is None:
            logger.debug(f"No {name} callback registered")
            return
        logger.debug(f"Running {name} callback")
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            logger.opt(exception=e).error(f"Exception raised in {name} callback: {e}")


__all__ = ["WorkerLifecycleState", "ControlKind", "LifecycleController", "SIGNALS"]
