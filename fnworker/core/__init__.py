"""Core components of the function worker runtime.

Modules:
  errors: Exception hierarchy (fatal vs event-scoped).
  event: Immutable Event value and case-insensitive Headers.
  codec: Length-prefixed msgpack input and tagged-line output framing.
  transport: Unix socket event/control channels with connect retries.
  registry: Resolve ``module:callable`` handler references once.
  logging: loguru setup and the bridge that ships records as ``l`` frames.
  response: Map handler return values onto Response records.
  platform: Cross-function calls, explicit acks, drain/termination callbacks.
  context: Per-worker context passed to every handler call.
  lifecycle: Drain / terminate / continue state machine.
  dispatcher: The single-task dispatch loop (Worker).
  config_loader: Merge CLI, env and YAML into a validated WorkerConfig.
"""

from .dispatcher import Worker  # noqa: F401
from .registry import HandlerRegistry  # noqa: F401
