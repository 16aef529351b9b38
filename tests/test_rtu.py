import pytest

from modbuskit.message import ModbusMessage
from modbuskit.rtu import (
    SerialLink,
    add_crc,
    calc_crc,
    calculate_interval,
    decode_ascii_frame,
    decode_rtu_frame,
    encode_ascii_frame,
    encode_rtu_frame,
    rts_auto,
    valid_crc,
)
from modbuskit.types import Error, ModbusError


class FakeStream:
    def __init__(self, incoming=b""):
        self.incoming = bytearray(incoming)
        self.written = bytearray()
        self.flushed = 0

    def read(self, size):
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def write(self, data):
        self.written.extend(data)
        return len(data)

    def flush(self):
        self.flushed += 1


REQUEST = bytes([0x01, 0x03, 0x00, 0x00, 0x00, 0x0A])


def test_crc_known_wire_bytes():
    assert encode_rtu_frame(REQUEST)[-2:] == bytes([0xC5, 0xCD])


def test_crc_of_message_matches_bytes():
    assert calc_crc(ModbusMessage(REQUEST)) == calc_crc(REQUEST)


def test_valid_crc_trailing_and_explicit():
    frame = encode_rtu_frame(REQUEST)
    assert valid_crc(frame)
    assert valid_crc(REQUEST, calc_crc(REQUEST))
    assert not valid_crc(REQUEST, calc_crc(REQUEST) ^ 1)
    broken = bytearray(frame)
    broken[2] ^= 0xFF
    assert not valid_crc(broken)


def test_valid_crc_too_short():
    assert valid_crc(b"\x01") is False


def test_add_crc_to_message_and_bytearray():
    msg = ModbusMessage(REQUEST)
    add_crc(msg)
    assert bytes(msg) == encode_rtu_frame(REQUEST)
    buf = bytearray(REQUEST)
    add_crc(buf)
    assert bytes(buf) == encode_rtu_frame(REQUEST)


def test_calculate_interval_limits():
    assert calculate_interval(115200) == 1750
    assert calculate_interval(1200) > calculate_interval(9600) >= 1750
    with pytest.raises(ValueError):
        calculate_interval(0)


def test_rts_auto_does_nothing():
    assert rts_auto(True) is None


def test_rtu_frame_round_trip():
    assert decode_rtu_frame(encode_rtu_frame(REQUEST)) == REQUEST


@pytest.mark.parametrize(
    "frame, error",
    [
        (b"\x01\x03\x00", Error.PACKET_LENGTH_ERROR),
        (REQUEST + b"\x00\x00", Error.CRC_ERROR),
    ],
)
def test_rtu_frame_errors(frame, error):
    with pytest.raises(ModbusError) as exc:
        decode_rtu_frame(frame)
    assert exc.value.error == error


def test_ascii_frame_known():
    assert encode_ascii_frame(b"\x01\x03") == b":0103FC\r\n"


def test_ascii_frame_round_trip_and_lowercase():
    frame = encode_ascii_frame(REQUEST)
    assert decode_ascii_frame(frame) == REQUEST
    assert decode_ascii_frame(frame.lower()) == REQUEST


def test_ascii_frame_ignores_before_lead_in_and_trailing():
    frame = encode_ascii_frame(REQUEST)
    assert decode_ascii_frame(b"\r\n" + frame + b"00") == REQUEST


@pytest.mark.parametrize(
    "frame, error",
    [
        (b":01G3\r\n", Error.ASCII_INVALID_CHAR),
        (b":010300\r\n", Error.ASCII_CRC_ERR),
        (b":010\r\n", Error.PACKET_LENGTH_ERROR),
        (b":0103\r\n", Error.PACKET_LENGTH_ERROR),
        (b":0103FC\r:", Error.ASCII_FRAME_ERR),
        (b":01:03\r\n", Error.ASCII_INVALID_CHAR),
        (b":0103FC", Error.ASCII_FRAME_ERR),
    ],
)
def test_ascii_frame_errors(frame, error):
    with pytest.raises(ModbusError) as exc:
        decode_ascii_frame(frame)
    assert exc.value.error == error


def test_link_send_rtu_writes_crc_and_toggles_rts():
    levels = []
    stream = FakeStream(b"stale")
    link = SerialLink(stream, 100, levels.append, False)
    link.send(ModbusMessage(REQUEST))
    assert bytes(stream.written) == encode_rtu_frame(REQUEST)
    assert levels == [True, False]
    assert stream.incoming == bytearray()
    assert stream.flushed == 1


def test_link_send_ascii():
    stream = FakeStream()
    link = SerialLink(stream, 100, rts_auto, True)
    link.send(REQUEST)
    assert bytes(stream.written) == encode_ascii_frame(REQUEST)


def test_link_receive_rtu():
    stream = FakeStream(encode_rtu_frame(REQUEST))
    link = SerialLink(stream, 200, rts_auto, False)
    msg = link.receive(100)
    assert bytes(msg) == REQUEST


def test_link_receive_skip_leading_zero():
    frame = b"\x00" + encode_rtu_frame(REQUEST)
    link = SerialLink(FakeStream(frame), 200, rts_auto, False)
    assert bytes(link.receive(100, True)) == REQUEST
    link = SerialLink(FakeStream(frame), 200, rts_auto, False)
    with pytest.raises(ModbusError) as exc:
        link.receive(100, False)
    assert exc.value.error == Error.CRC_ERROR


def test_link_receive_timeout():
    link = SerialLink(FakeStream(), 200, rts_auto, False)
    with pytest.raises(ModbusError) as exc:
        link.receive(10)
    assert exc.value.error == Error.TIMEOUT


def test_link_receive_overflow():
    stream = FakeStream(bytes(range(256)) * 3)
    link = SerialLink(stream, 200, rts_auto, False)
    with pytest.raises(ModbusError) as exc:
        link.receive(100)
    assert exc.value.error == Error.PACKET_LENGTH_ERROR
    assert stream.incoming == bytearray()


def test_link_receive_ascii():
    stream = FakeStream(encode_ascii_frame(REQUEST))
    link = SerialLink(stream, 200, rts_auto, True)
    assert bytes(link.receive(100)) == REQUEST


def test_link_receive_ascii_timeout_and_error():
    link = SerialLink(FakeStream(b":0103"), 200, rts_auto, True)
    with pytest.raises(ModbusError) as exc:
        link.receive(10)
    assert exc.value.error == Error.TIMEOUT
    link = SerialLink(FakeStream(b"xyz"), 200, rts_auto, True)
    with pytest.raises(ModbusError) as exc:
        link.receive(100)
    assert exc.value.error == Error.ASCII_INVALID_CHAR


def test_link_send_receive_round_trip():
    sender_stream = FakeStream()
    SerialLink(sender_stream, 100, rts_auto, False).send(REQUEST)
    receiver = SerialLink(FakeStream(sender_stream.written), 200, rts_auto, False)
    assert receiver.receive(100) == ModbusMessage(REQUEST)