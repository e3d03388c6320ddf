"""Handler registry: resolves ``module.sub:callable`` references once at startup."""
from __future__ import annotations
import inspect
import re
import sys
from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from .errors import HandlerLoadError, HandlerNotFoundError, MalformedHandlerError, WorkerInitError

HANDLER_PATTERN = re.compile(r"^([\w|-]+(\.[\w|-]+)*):(\w+)$")
INIT_HOOK_NAME = "init_context"


@dataclass
class HandlerEntry:
    reference: str
    module: ModuleType
    function: Callable[..., Any]
    is_coroutine: bool = False
    init_hook: Optional[Callable[..., Any]] = None
    initialized: bool = False


def parse_reference(reference: str):
    match = HANDLER_PATTERN.match(reference or "")
    if not match:
        raise MalformedHandlerError(f"Malformed handler - {reference!r}")
    return match.group(1), match.group(3)


def _ensure_search_paths(paths: Iterable[str]):
    for p in paths:
        root = str(Path(p).resolve())
        if root not in sys.path:
            # place early but after cwd to avoid shadowing top-level packages
            insertion_index = 1 if sys.path and sys.path[0] == "" else 0
            sys.path.insert(insertion_index, root)
            logger.debug(f"[import] inserted handler root into sys.path index={insertion_index} root={root}")


class HandlerRegistry:
    def __init__(self):
        self._entries: Dict[str, HandlerEntry] = {}

    def load(self, reference: str, search_paths: Iterable[str] = ()) -> HandlerEntry:
        existing = self._entries.get(reference)
        if existing is not None:
            return existing

        module_name, attr = parse_reference(reference)
        _ensure_search_paths(search_paths)
        try:
            module = import_module(module_name)
        except ImportError as e:
            raise HandlerNotFoundError(f"Handler module not found - {module_name!r}: {e}") from e
        except Exception as e:  # noqa: BLE001
            # syntax errors and module-level failures in user code
            raise HandlerLoadError(f"Failed importing handler module {module_name!r}: {e!r}") from e
        try:
            function = getattr(module, attr)
        except AttributeError as e:
            raise HandlerNotFoundError(f"Handler not found - {reference!r}") from e
        if not callable(function):
            raise HandlerNotFoundError(f"Handler {reference!r} is not callable")

        init_hook = getattr(module, INIT_HOOK_NAME, None)
        entry = HandlerEntry(
            reference=reference,
            module=module,
            function=function,
            is_coroutine=inspect.iscoroutinefunction(function),
            init_hook=init_hook if callable(init_hook) else None,
        )
        self._entries[reference] = entry
        logger.debug(f"loaded handler reference={reference} coroutine={entry.is_coroutine}")
        return entry

    async def initialize(self, entry: HandlerEntry, context) -> None:
        """Run the module's ``init_context`` hook exactly once."""
        if entry.initialized:
            return
        entry.initialized = True
        if entry.init_hook is None:
            return
        try:
            result = entry.init_hook(context)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            logger.error(f"Exception raised while running {INIT_HOOK_NAME}: {e}")
            raise WorkerInitError(f"{INIT_HOOK_NAME} failed: {e}") from e

    def get(self, reference: str) -> Optional[HandlerEntry]:
        return self._entries.get(reference)

    def list(self) -> List[HandlerEntry]:
        return list(self._entries.values())

    def clear(self):
        self._entries.clear()


__all__ = ["HandlerRegistry", "HandlerEntry", "parse_reference", "HANDLER_PATTERN", "INIT_HOOK_NAME"]
