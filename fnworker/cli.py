"""CLI entrypoint for the function worker."""
from __future__ import annotations
import argparse
import asyncio

from loguru import logger

from .core.config_loader import load_config
from .core.dispatcher import Worker
from .core.errors import ConfigError, HandlerLoadError, WorkerFatalError
from .core.logging import setup_logging


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {value!r}")


def build_parser():
    p = argparse.ArgumentParser(prog="fnworker", description="Out-of-process function worker")
    p.add_argument("--handler", help="Handler reference, e.g. package.module:handler")
    p.add_argument("--socket-path", help="Unix socket of the event channel")
    p.add_argument("--control-socket-path", help="Unix socket of the control channel (optional)")
    p.add_argument("--log-level", help="Minimum log level (default from FNWORKER_LOG_LEVEL or DEBUG)")
    p.add_argument("--platform-kind", choices=["local", "kube"])
    p.add_argument("--namespace")
    p.add_argument("--trigger-kind")
    p.add_argument("--trigger-name")
    p.add_argument("--worker-id")
    p.add_argument(
        "--decode-event-strings",
        type=_parse_bool,
        help="Decode event strings as utf-8 (true) or keep them as raw bytes (false)",
    )
    p.add_argument(
        "--handler-path",
        action="append",
        dest="handler_paths",
        default=None,
        help="Additional import root for the handler module (repeatable)",
    )
    p.add_argument("--config", help="Path to a YAML config file")
    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # stdout sink until the event channel is connected
    bridge = setup_logging(args.log_level)

    overrides = {k: v for k, v in vars(args).items() if k != "config"}
    try:
        config = load_config(overrides, config_file=args.config)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    bridge.set_level(config.log_level)

    try:
        worker = Worker.from_config(config, log_bridge=bridge)
    except HandlerLoadError as e:
        logger.error(f"Failed to load handler {config.handler!r}: {e}")
        return 1

    try:
        asyncio.run(worker.run())
    except WorkerFatalError as e:
        logger.error(f"Worker stopped: {e}")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
