import threading
import time

import pytest

from modbuskit.message import ModbusMessage
from modbuskit.rtu import calculate_interval, encode_ascii_frame, encode_rtu_frame
from modbuskit.rtuserver import ModbusServerRTU
from modbuskit.server import ECHO_RESPONSE, NIL_RESPONSE
from modbuskit.types import Error


class FakeStream:
    def __init__(self):
        self._lock = threading.Lock()
        self._incoming = bytearray()
        self.written = bytearray()

    def feed(self, data):
        with self._lock:
            self._incoming.extend(data)

    def read(self, size):
        with self._lock:
            chunk = bytes(self._incoming[:size])
            del self._incoming[:size]
            return chunk

    def write(self, data):
        with self._lock:
            self.written.extend(data)

    def output(self):
        with self._lock:
            return bytes(self.written)


REQUEST = bytes([0x01, 0x03, 0x00, 0x10, 0x00, 0x02])
REPLY = bytes([0x01, 0x03, 0x04, 0x00, 0x01, 0x00, 0x02])


def make_started(stream, timeout=50):
    server = ModbusServerRTU(timeout)
    server.begin(stream, 9600)
    server.end()
    return server


def test_worker_response_returned_and_counted():
    server = ModbusServerRTU(100)
    server.register_worker(1, 3, lambda msg: REPLY)
    response = server.handle_request(REQUEST)
    assert bytes(response) == REPLY
    assert server.message_count == 1
    assert server.error_count == 0


def test_worker_receives_request():
    seen = []
    server = ModbusServerRTU(100)
    server.register_worker(1, 3, lambda msg: (seen.append(bytes(msg)), REPLY)[1])
    server.handle_request(REQUEST)
    assert seen == [REQUEST]


def test_nil_response_sends_nothing():
    server = ModbusServerRTU(100)
    server.register_worker(1, 3, lambda msg: NIL_RESPONSE)
    assert server.handle_request(REQUEST) is None
    assert server.message_count == 1


def test_echo_response_full_request():
    server = ModbusServerRTU(100)
    server.register_worker(1, 6, lambda msg: ECHO_RESPONSE)
    request = bytes([0x01, 0x06, 0x00, 0x05, 0x12, 0x34])
    assert bytes(server.handle_request(request)) == request


def test_echo_write_multiple_registers_is_cut_to_six_bytes():
    server = ModbusServerRTU(100)
    server.register_worker(1, 0x10, lambda msg: ECHO_RESPONSE)
    request = ModbusMessage()
    request.set_words(1, 0x10, 0x20, 2, [0x1111, 0x2222])
    response = server.handle_request(request)
    assert bytes(response) == bytes(request)[:6]


def test_echo_write_multiple_coils_is_cut_to_six_bytes():
    server = ModbusServerRTU(100)
    server.register_worker(1, 0x0F, lambda msg: ECHO_RESPONSE)
    request = ModbusMessage()
    request.set_coils(1, 0x0F, 0x00, 10, b"\xff\x03")
    response = server.handle_request(request)
    assert bytes(response) == bytes(request)[:6]


def test_known_server_unknown_function_gives_illegal_function():
    server = ModbusServerRTU(100)
    server.register_worker(1, 4, lambda msg: REPLY)
    response = server.handle_request(REQUEST)
    assert response.error == Error.ILLEGAL_FUNCTION
    assert response.server_id == 1
    assert response.function_code == 0x83
    assert server.error_count == 1


def test_unknown_server_is_ignored():
    server = ModbusServerRTU(100)
    server.register_worker(2, 3, lambda msg: REPLY)
    assert server.handle_request(REQUEST) is None
    assert server.error_count == 0


def test_short_worker_response_is_not_sent():
    server = ModbusServerRTU(100)
    server.register_worker(1, 3, lambda msg: b"\x01\x03")
    assert server.handle_request(REQUEST) is None


def test_error_response_from_worker_counts_error():
    server = ModbusServerRTU(100)

    def worker(msg):
        reply = ModbusMessage()
        reply.set_error(1, 3, Error.ILLEGAL_DATA_ADDRESS)
        return reply

    server.register_worker(1, 3, worker)
    response = server.handle_request(REQUEST)
    assert response.error == Error.ILLEGAL_DATA_ADDRESS
    assert server.error_count == 1


def test_broadcast_goes_to_listener_only():
    heard = []
    called = []
    server = ModbusServerRTU(100)
    server.register_worker(0, 6, lambda msg: called.append(msg) or REPLY)
    server.register_broadcast_worker(lambda msg: heard.append(bytes(msg)))
    broadcast = bytes([0x00, 0x06, 0x00, 0x01, 0x00, 0x02])
    assert server.handle_request(broadcast) is None
    assert heard == [broadcast]
    assert called == []


def test_sniffer_sees_every_request():
    sniffed = []
    server = ModbusServerRTU(100)
    server.register_sniffer(lambda msg: sniffed.append(bytes(msg)))
    broadcast = bytes([0x00, 0x06, 0x00, 0x01, 0x00, 0x02])
    server.handle_request(REQUEST)
    server.handle_request(broadcast)
    assert sniffed == [REQUEST, broadcast]


def test_too_short_request_is_ignored():
    server = ModbusServerRTU(100)
    server.register_worker(1, 3, lambda msg: REPLY)
    assert server.handle_request(b"\x01") is None
    assert server.message_count == 0


def test_protocol_toggles():
    server = ModbusServerRTU(100)
    assert server.is_modbus_ascii() is False
    server.use_modbus_ascii(500)
    assert server.is_modbus_ascii() is True
    assert server.timeout == 500
    server.use_modbus_rtu()
    assert server.is_modbus_ascii() is False
    server.set_modbus_timeout(250)
    assert server.timeout == 250


def test_rts_set_low_on_creation():
    levels = []
    ModbusServerRTU(100, levels.append)
    assert levels == [False]


def test_begin_uses_calculated_interval():
    stream = FakeStream()
    server = make_started(stream)
    assert server.interval == calculate_interval(9600)


def test_begin_prefers_longer_user_interval():
    stream = FakeStream()
    server = ModbusServerRTU(50)
    user_interval = calculate_interval(9600) * 2
    server.begin(stream, 9600, user_interval)
    server.end()
    assert server.interval == user_interval
    assert server.running is False


def test_serve_once_before_begin_raises():
    server = ModbusServerRTU(50)
    with pytest.raises(RuntimeError):
        server.serve_once()


def test_serve_once_rtu_round_trip():
    stream = FakeStream()
    levels = []
    server = ModbusServerRTU(50, levels.append)
    server.begin(stream, 115200)
    server.end()
    server.register_worker(1, 3, lambda msg: REPLY)
    stream.feed(encode_rtu_frame(REQUEST))
    response = server.serve_once()
    assert bytes(response) == REPLY
    assert stream.output() == encode_rtu_frame(REPLY)
    assert levels[-2:] == [True, False]


def test_serve_once_timeout_returns_none():
    stream = FakeStream()
    server = make_started(stream, timeout=20)
    server.register_worker(1, 3, lambda msg: REPLY)
    assert server.serve_once() is None
    assert stream.output() == b""


def test_serve_once_bad_crc_sends_nothing():
    stream = FakeStream()
    server = make_started(stream)
    server.register_worker(1, 3, lambda msg: REPLY)
    frame = bytearray(encode_rtu_frame(REQUEST))
    frame[-1] ^= 0xFF
    stream.feed(frame)
    assert server.serve_once() is None
    assert stream.output() == b""
    assert server.message_count == 0


def test_serve_once_skips_leading_zero():
    stream = FakeStream()
    server = make_started(stream)
    server.skip_leading_0x00()
    server.register_worker(1, 3, lambda msg: REPLY)
    stream.feed(b"\x00" + encode_rtu_frame(REQUEST))
    assert bytes(server.serve_once()) == REPLY
    assert stream.output() == encode_rtu_frame(REPLY)


def test_serve_once_ascii_round_trip():
    stream = FakeStream()
    server = make_started(stream)
    server.use_modbus_ascii(200)
    server.register_worker(1, 3, lambda msg: REPLY)
    stream.feed(encode_ascii_frame(REQUEST))
    assert bytes(server.serve_once()) == REPLY
    assert stream.output() == encode_ascii_frame(REPLY)


def test_serve_once_illegal_function_is_sent_and_counted():
    stream = FakeStream()
    server = make_started(stream)
    server.register_worker(1, 4, lambda msg: REPLY)
    stream.feed(encode_rtu_frame(REQUEST))
    response = server.serve_once()
    expected = ModbusMessage()
    expected.set_error(1, 3, Error.ILLEGAL_FUNCTION)
    assert response == expected
    assert stream.output() == encode_rtu_frame(bytes(expected))
    assert server.error_count == 1


def test_background_thread_answers_requests():
    stream = FakeStream()
    server = ModbusServerRTU(50)
    server.register_worker(1, 3, lambda msg: REPLY)
    server.begin(stream, 115200)
    try:
        assert server.running is True
        stream.feed(encode_rtu_frame(REQUEST))
        deadline = time.monotonic() + 3
        while time.monotonic() < deadline and not stream.output():
            time.sleep(0.01)
        time.sleep(0.05)
    finally:
        server.end()
    assert stream.output() == encode_rtu_frame(REPLY)
    assert server.message_count == 1
    assert server.running is False