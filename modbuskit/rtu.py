"""Modbus RTU and ASCII framing: CRC, LRC, frame codecs and a serial link.

A serial link works on any stream object offering ``read(size)`` that
returns at most ``size`` bytes without blocking (possibly ``b""``),
``write(data)`` and, optionally, ``flush()``.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, Protocol, Union

from .message import ModbusMessage
from .types import Error, ModbusError

__all__ = [
    "SerialLink",
    "calc_crc",
    "valid_crc",
    "add_crc",
    "calculate_interval",
    "rts_auto",
    "encode_rtu_frame",
    "decode_rtu_frame",
    "encode_ascii_frame",
    "decode_ascii_frame",
]

BytesLike = Union[bytes, bytearray, memoryview, ModbusMessage, Iterable[int]]
RTSCallback = Callable[[bool], None]

# Largest RTU frame accepted before the receiver gives up
_BUFFER_SIZE = 512
# Lower limit of the silent interval between RTU frames, in microseconds
_MIN_INTERVAL = 1750

_LEAD_IN = 0xF0
_CR = 0xF1
_LF = 0xF2


def _build_crc_table() -> tuple[int, ...]:
    def entry(byte: int) -> int:
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
        return crc

    return tuple(entry(b) for b in range(256))


_CRC_TABLE = _build_crc_table()

_ASCII_VALUES: dict[int, int] = {
    **{ord(c): i for i, c in enumerate("0123456789ABCDEF")},
    **{ord(c): 10 + i for i, c in enumerate("abcdef")},
    ord(":"): _LEAD_IN,
    ord("\r"): _CR,
    ord("\n"): _LF,
}


def _as_bytes(data: BytesLike) -> bytes:
    return bytes(data)


def calc_crc(data: BytesLike) -> int:
    """Return the Modbus CRC16 of ``data``; its low byte goes first on the wire."""
    crc = 0xFFFF
    for byte in _as_bytes(data):
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc


def valid_crc(data: BytesLike, crc: int | None = None) -> bool:
    """Check a CRC.

    With ``crc`` given, compare it with the CRC of ``data``. Otherwise the
    last two bytes of ``data`` are taken as the CRC (low byte first) and
    checked against the bytes before them.
    """
    raw = _as_bytes(data)
    if crc is None:
        if len(raw) < 2:
            return False
        crc = raw[-2] | (raw[-1] << 8)
        raw = raw[:-2]
    return calc_crc(raw) == crc


def add_crc(message: ModbusMessage | bytearray) -> None:
    """Append the CRC of ``message`` to it, low byte first."""
    crc = calc_crc(message)
    low, high = crc & 0xFF, (crc >> 8) & 0xFF
    if isinstance(message, ModbusMessage):
        message.add_uint8(low, high)
    else:
        message.extend((low, high))


def calculate_interval(baud_rate: int) -> int:
    """Return the minimal silent gap between frames in microseconds (3.5 characters)."""
    if baud_rate <= 0:
        raise ValueError(f"baud rate must be positive, got {baud_rate}")
    return max(35_000_000 // baud_rate, _MIN_INTERVAL)


def rts_auto(level: bool) -> None:
    """RTS callback for boards that switch RS485 direction on their own."""
    return None


def encode_rtu_frame(data: BytesLike) -> bytes:
    """Return ``data`` followed by its CRC, low byte first."""
    raw = _as_bytes(data)
    crc = calc_crc(raw)
    return raw + bytes((crc & 0xFF, (crc >> 8) & 0xFF))


def decode_rtu_frame(data: BytesLike) -> bytes:
    """Check an RTU frame and return it without the CRC.

    Raises :class:`ModbusError` with ``PACKET_LENGTH_ERROR`` for frames
    shorter than four bytes and ``CRC_ERROR`` for a wrong checksum.
    """
    raw = _as_bytes(data)
    if len(raw) < 4:
        raise ModbusError(Error.PACKET_LENGTH_ERROR)
    if not valid_crc(raw):
        raise ModbusError(Error.CRC_ERROR)
    return raw[:-2]


def encode_ascii_frame(data: BytesLike) -> bytes:
    """Return the Modbus ASCII frame for ``data``: ':', hex digits, LRC, CR LF."""
    raw = _as_bytes(data)
    lrc = (-sum(raw)) & 0xFF
    return b":" + (raw + bytes((lrc,))).hex().upper().encode("ascii") + b"\r\n"


class _AsciiDecoder:
    """Character-wise Modbus ASCII frame parser."""

    _WAIT, _DATA, _LEAD_OUT = range(3)

    def __init__(self) -> None:
        self._state = self._WAIT
        self._buffer = bytearray()
        self._nibble: int | None = None
        self._sum = 0

    def feed(self, char: int) -> bytes | None:
        """Take one character; return the payload once a frame is complete."""
        value = _ASCII_VALUES.get(char)
        if value is None:
            raise ModbusError(Error.ASCII_INVALID_CHAR)
        if self._state == self._WAIT:
            if value == _LEAD_IN:
                self._state = self._DATA
            return None
        if self._state == self._DATA:
            if value == _CR:
                if self._nibble is not None:
                    raise ModbusError(Error.PACKET_LENGTH_ERROR)
                self._state = self._LEAD_OUT
            elif value < _LEAD_IN:
                if self._nibble is None:
                    self._nibble = value
                else:
                    byte = (self._nibble << 4) | value
                    self._nibble = None
                    self._buffer.append(byte)
                    self._sum = (self._sum + byte) & 0xFF
            else:
                raise ModbusError(Error.ASCII_INVALID_CHAR)
            return None
        # Waiting for the final line feed
        if value != _LF:
            raise ModbusError(Error.ASCII_FRAME_ERR)
        if len(self._buffer) < 3:
            raise ModbusError(Error.PACKET_LENGTH_ERROR)
        if self._sum != 0:
            raise ModbusError(Error.ASCII_CRC_ERR)
        return bytes(self._buffer[:-1])


def decode_ascii_frame(data: BytesLike) -> bytes:
    """Parse a Modbus ASCII frame and return its payload without the LRC.

    Characters after the end of the frame are ignored. Raises
    :class:`ModbusError` on invalid characters, odd digit counts, a wrong
    LRC, a short frame or a frame that is not terminated.
    """
    decoder = _AsciiDecoder()
    for char in _as_bytes(data):
        payload = decoder.feed(char)
        if payload is not None:
            return payload
    raise ModbusError(Error.ASCII_FRAME_ERR, "incomplete ASCII frame")


class _Stream(Protocol):
    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> object: ...


def _micros() -> int:
    return time.monotonic_ns() // 1000


def _millis() -> int:
    return time.monotonic_ns() // 1_000_000


class SerialLink:
    """Sends and receives Modbus RTU or ASCII frames over a byte stream.

    ``interval`` is the silent gap between RTU frames in microseconds;
    ``rts`` is called with ``True`` before and ``False`` after sending.
    """

    def __init__(
        self,
        stream: _Stream,
        interval: int = _MIN_INTERVAL,
        rts: RTSCallback = rts_auto,
        ascii_mode: bool = False,
    ) -> None:
        self.stream = stream
        self.interval = interval
        self.rts = rts
        self.ascii_mode = ascii_mode
        self.last_micros = _micros()

    def _drain(self) -> None:
        while self.stream.read(_BUFFER_SIZE):
            pass

    def _flush(self) -> None:
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()

    def send(self, data: BytesLike) -> None:
        """Send a message, adding CRC (RTU) or LRC and framing (ASCII)."""
        raw = _as_bytes(data)
        self._drain()
        if self.ascii_mode:
            frame = encode_ascii_frame(raw)
        else:
            frame = encode_rtu_frame(raw)
            elapsed = _micros() - self.last_micros
            if elapsed < self.interval:
                time.sleep((self.interval - elapsed) / 1_000_000)
        self.rts(True)
        self.stream.write(frame)
        self._flush()
        self.rts(False)
        self.last_micros = _micros()

    def receive(self, timeout: int = 2000, skip_leading_zero: bool = False) -> ModbusMessage:
        """Wait up to ``timeout`` milliseconds for a message and return it.

        Raises :class:`ModbusError` with ``TIMEOUT`` if nothing arrives, or
        with the framing error found in the received data.
        """
        if self.ascii_mode:
            return ModbusMessage(self._receive_ascii(timeout))
        return ModbusMessage(self._receive_rtu(timeout, skip_leading_zero))

    def _receive_rtu(self, timeout: int, skip_leading_zero: bool) -> bytes:
        started = _millis()
        self.last_micros = _micros()
        buffer = bytearray()
        while True:
            chunk = self.stream.read(1)
            if chunk:
                self.last_micros = _micros()
                if chunk[0] or not skip_leading_zero:
                    buffer.extend(chunk)
                    break
            elif _millis() - started >= timeout:
                self._drain()
                raise ModbusError(Error.TIMEOUT)
            else:
                time.sleep(0.001)

        while True:
            chunk = self.stream.read(_BUFFER_SIZE - len(buffer))
            if chunk:
                buffer.extend(chunk)
                self.last_micros = _micros()
                if len(buffer) >= _BUFFER_SIZE:
                    self._drain()
                    raise ModbusError(Error.PACKET_LENGTH_ERROR)
            elif _micros() - self.last_micros >= self.interval:
                break
            else:
                time.sleep(0)

        self._drain()
        return decode_rtu_frame(buffer)

    def _receive_ascii(self, timeout: int) -> bytes:
        decoder = _AsciiDecoder()
        last = _millis()
        while True:
            if _millis() - last >= timeout:
                raise ModbusError(Error.TIMEOUT)
            chunk = self.stream.read(1)
            if chunk:
                last = _millis()
                payload = decoder.feed(chunk[0])
                if payload is not None:
                    return payload
            else:
                time.sleep(0.001)