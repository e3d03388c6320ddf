import io
import json
import logging

from loguru import logger

from fakes import RecordingChannel
from fnworker.core.logging import LogBridge, Logger, InterceptHandler, normalize_level


def test_normalize_level():
    assert normalize_level("warn") == "WARNING"
    assert normalize_level(logging.INFO) == "INFO"
    assert normalize_level(" debug ") == "DEBUG"


def test_stdout_sink_before_connect():
    stream = io.StringIO()
    bridge = LogBridge("DEBUG", stream=stream)
    bridge.attach_stdout()
    try:
        logger.bind(request="r1").info("starting up")
    finally:
        bridge.detach()
    record = json.loads(stream.getvalue().splitlines()[-1])
    assert record["message"] == "starting up"
    assert record["level"] == "info"
    assert record["with"] == {"request": "r1"}
    assert "datetime" in record and "name" in record


def test_channel_sink_writes_log_frames():
    channel = RecordingChannel()
    bridge = LogBridge("INFO")
    bridge.attach_channel(channel)
    try:
        Logger().bind(worker_id="3").warn_with("slow call", elapsed=1.5, target=object())
        Logger().debug("filtered out")
    finally:
        bridge.detach()
    assert all(line.startswith(b"l") and line.endswith(b"\n") for line in channel.lines)
    records = channel.records()
    assert len(records) == 1
    assert records[0]["level"] == "warning"
    assert records[0]["message"] == "slow call"
    assert records[0]["with"]["elapsed"] == 1.5
    assert records[0]["with"]["worker_id"] == "3"
    assert records[0]["with"]["target"].startswith("<object object")


def test_exception_adds_traceback():
    channel = RecordingChannel()
    bridge = LogBridge("DEBUG")
    bridge.attach_channel(channel)
    try:
        try:
            raise ValueError("bad input")
        except ValueError:
            Logger().exception("handler failed")
    finally:
        bridge.detach()
    record = channel.records()[-1]
    assert record["level"] == "error"
    assert "ValueError: bad input" in record["with"]["traceback"]


def test_set_level_applies_to_current_sink():
    channel = RecordingChannel()
    bridge = LogBridge("ERROR")
    bridge.attach_channel(channel)
    try:
        logger.info("hidden")
        bridge.set_level("debug")
        logger.info("shown")
    finally:
        bridge.detach()
    assert [r["message"] for r in channel.records()] == ["shown"]


def test_stdlib_logging_is_intercepted():
    channel = RecordingChannel()
    bridge = LogBridge("DEBUG")
    bridge.attach_channel(channel)
    std_logger = logging.getLogger("fnworker.tests.intercept")
    handler = InterceptHandler()
    std_logger.addHandler(handler)
    std_logger.setLevel(logging.DEBUG)
    std_logger.propagate = False
    try:
        std_logger.error("from stdlib %s", "logging")
    finally:
        std_logger.removeHandler(handler)
        bridge.detach()
    assert channel.records()[-1]["message"] == "from stdlib logging"
