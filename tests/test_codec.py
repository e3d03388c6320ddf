import asyncio
import json

import msgpack
import pytest

from fnworker.core import codec
from fnworker.core.codec import EventDecoder
from fnworker.core.errors import EventDecodeError, IllegalFrameSizeError, WorkerDisconnectedError


def _reader(data: bytes = b"", eof: bool = False) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def test_read_length_big_endian():
    async def scenario():
        return await codec.read_length(_reader(b"\x00\x00\x01\x02"))
    assert asyncio.run(scenario()) == 258


def test_zero_length_is_fatal():
    async def scenario():
        await codec.read_length(_reader(b"\x00\x00\x00\x00"))
    with pytest.raises(IllegalFrameSizeError, match="Illegal message size: 0"):
        asyncio.run(scenario())


def test_eof_inside_prefix_is_disconnect():
    async def scenario():
        await codec.read_length(_reader(b"\x00\x00", eof=True))
    with pytest.raises(WorkerDisconnectedError):
        asyncio.run(scenario())


def test_partial_reads_are_reassembled():
    payload = msgpack.packb({"id": "e1", "body": b"hello world", "path": "/p"}, use_bin_type=True)

    async def scenario():
        reader = asyncio.StreamReader()
        decoder = EventDecoder()
        task = asyncio.ensure_future(codec.read_body(reader, len(payload), decoder))
        for i in range(0, len(payload), 3):
            reader.feed_data(payload[i:i + 3])
            await asyncio.sleep(0)
        received = await task
        return received, decoder.decode()

    received, event = asyncio.run(scenario())
    assert received == len(payload)
    assert event.id == "e1"
    assert event.body == b"hello world"
    assert event.path == "/p"


def test_eof_inside_body_is_disconnect():
    async def scenario():
        await codec.read_body(_reader(b"\x81", eof=True), 10, EventDecoder())
    with pytest.raises(WorkerDisconnectedError):
        asyncio.run(scenario())


def test_malformed_frame_does_not_affect_next():
    decoder = EventDecoder()
    decoder.feed(b"\xc1")
    with pytest.raises(EventDecodeError):
        decoder.decode()

    decoder.feed(msgpack.packb({"id": "next", "body": "ok"}, use_bin_type=True))
    event = decoder.decode()
    assert event.id == "next"
    assert event.body == "ok"


def test_trailing_bytes_stay_with_their_frame():
    decoder = EventDecoder()
    decoder.feed(msgpack.packb({"id": "1", "body": "a"}) + b"\xc1")
    with pytest.raises(EventDecodeError):
        decoder.decode()

    decoder.feed(msgpack.packb({"id": "2", "body": "b"}))
    assert decoder.decode().id == "2"


def test_second_map_in_one_frame_is_not_an_extra_event():
    decoder = EventDecoder()
    decoder.feed(msgpack.packb({"id": "1"}) + msgpack.packb({"id": "smuggled"}))
    with pytest.raises(EventDecodeError):
        decoder.decode()

    decoder.feed(msgpack.packb({"id": "3"}))
    assert decoder.decode().id == "3"


def test_non_map_frame_is_decode_error():
    decoder = EventDecoder()
    decoder.feed(msgpack.packb([1, 2, 3]))
    with pytest.raises(EventDecodeError):
        decoder.decode()


def test_truncated_frame_is_decode_error():
    decoder = EventDecoder()
    decoder.feed(b"\x82")
    with pytest.raises(EventDecodeError):
        decoder.decode()
    decoder.feed(msgpack.packb({"id": 7}))
    assert decoder.decode().id == 7


def test_raw_mode_keeps_invalid_utf8_body():
    decoder = EventDecoder(decode_strings=False)
    # body packed as a msgpack str holding bytes that are not utf-8
    packer = msgpack.Packer(use_bin_type=False)
    decoder.feed(packer.pack({"id": "x", "body": b"\xff\xfe", "path": "/raw"}))
    event = decoder.decode()
    assert event.body == b"\xff\xfe"
    assert event.path == "/raw"


def test_encode_tagged():
    assert codec.encode_tagged(codec.READY_TAG) == b"s\n"
    line = codec.encode_tagged(codec.METRIC_TAG, {"duration": 0.5})
    assert line.startswith(b"m") and line.endswith(b"\n")
    assert json.loads(line[1:]) == {"duration": 0.5}
    with pytest.raises(ValueError):
        codec.encode_tagged("rr", {})


def test_encode_event_is_length_prefixed():
    frame = codec.encode_event({"id": "a"})
    (size,) = codec.LENGTH_PREFIX.unpack(frame[:4])
    assert size == len(frame) - 4
    assert msgpack.unpackb(frame[4:]) == {"id": "a"}


def test_control_message_round_trip():
    message = codec.ControlMessage(kind="drain", attributes={"a": 1})

    async def scenario():
        reader = _reader(codec.encode_control_message(message), eof=True)
        first = await codec.read_control_message(reader)
        second = await codec.read_control_message(reader)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == message
    assert second is None
