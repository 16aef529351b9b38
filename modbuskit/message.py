"""Modbus message container with builders, validators and value accessors."""

from __future__ import annotations

from typing import Iterable, Iterator, Union

from .byteorder import (
    bytes_to_double,
    bytes_to_float,
    double_to_bytes,
    float_to_bytes,
)
from .types import Error, FCType, ModbusError, get_type

__all__ = ["ModbusMessage", "check_data"]

BytesLike = Union[bytes, bytearray, memoryview, Iterable[int]]

_MAX_SERVER_ID = 247


def _check_server_fc(server_id: int, function_code: int) -> FCType:
    """Validate server ID and function code, returning the code's type."""
    if server_id == 0 or server_id > _MAX_SERVER_ID:
        raise ModbusError(Error.INVALID_SERVER)
    fc_type = get_type(function_code)
    if fc_type == FCType.FCILLEGAL:
        raise ModbusError(Error.ILLEGAL_FUNCTION)
    return fc_type


def _require_type(fc_type: FCType, *allowed: FCType) -> None:
    if fc_type not in (*allowed, FCType.FCUSER, FCType.FCGENERIC):
        raise ModbusError(Error.PARAMETER_COUNT_ERROR)


def check_data(server_id: int, function_code: int, *args: int) -> None:
    """Validate a request made of up to three 16-bit parameters.

    Raises :class:`ModbusError` with the matching error code if the server
    ID, the function code or the parameters are not acceptable.
    """
    fc_type = _check_server_fc(server_id, function_code)
    if len(args) == 0:
        _require_type(fc_type, FCType.FC07_TYPE)
    elif len(args) == 1:
        _require_type(fc_type, FCType.FC18_TYPE)
    elif len(args) == 2:
        _require_type(fc_type, FCType.FC01_TYPE)
        quantity = args[1]
        if function_code in (0x01, 0x02):
            if quantity == 0 or quantity > 0x7D0:
                raise ModbusError(Error.PARAMETER_LIMIT_ERROR)
        elif function_code in (0x03, 0x04):
            if quantity == 0 or quantity > 0x7D:
                raise ModbusError(Error.PARAMETER_LIMIT_ERROR)
        elif function_code == 0x05:
            if quantity not in (0, 0xFF00):
                raise ModbusError(Error.PARAMETER_LIMIT_ERROR)
    elif len(args) == 3:
        _require_type(fc_type, FCType.FC16_TYPE)
    else:
        raise TypeError(f"check_data takes at most 3 parameters, got {len(args)}")


def _check_words(server_id: int, function_code: int, quantity: int, count: int) -> None:
    fc_type = _check_server_fc(server_id, function_code)
    _require_type(fc_type, FCType.FC10_TYPE)
    if quantity == 0 or quantity > 0x7B:
        raise ModbusError(Error.PARAMETER_LIMIT_ERROR)
    if count != quantity * 2:
        raise ModbusError(Error.ILLEGAL_DATA_VALUE)


def _check_coils(server_id: int, function_code: int, quantity: int, count: int) -> None:
    fc_type = _check_server_fc(server_id, function_code)
    _require_type(fc_type, FCType.FC0F_TYPE)
    if quantity == 0 or quantity > 0x7B0:
        raise ModbusError(Error.PARAMETER_LIMIT_ERROR)
    if count != (quantity + 7) // 8:
        raise ModbusError(Error.ILLEGAL_DATA_VALUE)


def _check_generic(server_id: int, function_code: int) -> None:
    fc_type = _check_server_fc(server_id, function_code)
    if fc_type not in (FCType.FCUSER, FCType.FCGENERIC):
        raise ModbusError(Error.PARAMETER_COUNT_ERROR)


class ModbusMessage:
    """A Modbus PDU with leading server ID: ``[server_id, fc, data...]``."""

    __hash__ = None  # mutable

    def __init__(self, data: BytesLike | ModbusMessage = b"") -> None:
        self._data = bytearray(bytes(data) if isinstance(data, ModbusMessage) else data)

    # ----- container protocol -------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ModbusMessage):
            return self._data == other._data
        if isinstance(other, (bytes, bytearray, memoryview)):
            return self._data == bytes(other)
        return NotImplemented

    def __bool__(self) -> bool:
        """True if the message holds at least server ID and function code."""
        return len(self._data) >= 2

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index: int | slice) -> int | bytes:
        """Return a byte; an index out of range yields 0 instead of raising."""
        if isinstance(index, slice):
            return bytes(self._data[index])
        if -len(self._data) <= index < len(self._data):
            return self._data[index]
        return 0

    def __iter__(self) -> Iterator[int]:
        return iter(bytes(self._data))

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def __repr__(self) -> str:
        return f"ModbusMessage({bytes(self._data).hex(' ').upper()!r})"

    def copy(self) -> ModbusMessage:
        """Return an independent copy."""
        return ModbusMessage(self._data)

    def append(self, other: ModbusMessage | BytesLike) -> None:
        """Append the bytes of another message or byte sequence."""
        self._data.extend(bytes(other) if isinstance(other, ModbusMessage) else other)

    def clear(self) -> None:
        """Remove all content."""
        self._data.clear()

    def resize(self, new_size: int) -> int:
        """Truncate or zero-pad to ``new_size`` bytes; return the new size."""
        if new_size < len(self._data):
            del self._data[new_size:]
        else:
            self._data.extend(bytes(new_size - len(self._data)))
        return len(self._data)

    # ----- header fields ------------------------------------------------------

    @property
    def server_id(self) -> int:
        """Server ID, or 0 if the message is shorter than two bytes."""
        return self._data[0] if len(self._data) >= 2 else 0

    @server_id.setter
    def server_id(self, value: int) -> None:
        if self._data:
            self._data[0] = value & 0xFF
        else:
            self._data.append(value & 0xFF)

    @property
    def function_code(self) -> int:
        """Function code, or 0 if the message is shorter than two bytes."""
        return self._data[1] if len(self._data) >= 2 else 0

    @function_code.setter
    def function_code(self, value: int) -> None:
        if len(self._data) < 2:
            self._data[:] = b"\x00\x00"
        self._data[1] = value & 0xFF

    @property
    def error(self) -> Error | int:
        """The error code of an error response, :attr:`Error.SUCCESS` otherwise."""
        if len(self._data) > 2 and self._data[1] & 0x80:
            try:
                return Error(self._data[2])
            except ValueError:
                return self._data[2]
        return Error.SUCCESS

    # ----- adding data --------------------------------------------------------

    def _add_sized(self, size: int, values: tuple[int, ...]) -> int:
        for value in values:
            self._data.extend((int(value) & ((1 << (8 * size)) - 1)).to_bytes(size, "big"))
        return len(self._data)

    def add_bytes(self, data: BytesLike) -> int:
        """Append raw bytes; return the new size."""
        self._data.extend(data)
        return len(self._data)

    def add_uint8(self, *args: int) -> int:
        """Append 8-bit values; return the new size."""
        return self._add_sized(1, args)

    def add_uint16(self, *args: int) -> int:
        """Append 16-bit values MSB first; return the new size."""
        return self._add_sized(2, args)

    def add_uint32(self, *args: int) -> int:
        """Append 32-bit values MSB first; return the new size."""
        return self._add_sized(4, args)

    def add_float(self, value: float, swap_rule: int = 0) -> int:
        """Append a 32-bit IEEE 754 float, re-ordered by ``swap_rule``."""
        self._data.extend(float_to_bytes(value, swap_rule))
        return len(self._data)

    def add_double(self, value: float, swap_rule: int = 0) -> int:
        """Append a 64-bit IEEE 754 double, re-ordered by ``swap_rule``."""
        self._data.extend(double_to_bytes(value, swap_rule))
        return len(self._data)

    # ----- reading data -------------------------------------------------------

    def _fits(self, index: int, size: int) -> bool:
        return 0 <= index and index + size <= len(self._data)

    def get_uint(self, index: int, size: int = 2) -> tuple[int, int]:
        """Read an unsigned MSB-first value of ``size`` bytes.

        Returns ``(value, next_index)``; if the value does not fit, returns
        ``(0, index)``.
        """
        if not self._fits(index, size):
            return 0, index
        return int.from_bytes(self._data[index:index + size], "big"), index + size

    def get_bytes(self, index: int, count: int) -> tuple[bytes, int]:
        """Read up to ``count`` bytes; returns ``(bytes, next_index)``."""
        chunk = bytes(self._data[index:index + count]) if index >= 0 else b""
        return chunk, index + len(chunk)

    def get_float(self, index: int, swap_rule: int = 0) -> tuple[float, int]:
        """Read a float; returns ``(value, next_index)`` or ``(0.0, index)``."""
        if not self._fits(index, 4):
            return 0.0, index
        return bytes_to_float(self._data[index:index + 4], swap_rule), index + 4

    def get_double(self, index: int, swap_rule: int = 0) -> tuple[float, int]:
        """Read a double; returns ``(value, next_index)`` or ``(0.0, index)``."""
        if not self._fits(index, 8):
            return 0.0, index
        return bytes_to_double(self._data[index:index + 8], swap_rule), index + 8

    # ----- builders -----------------------------------------------------------

    def _start(self, server_id: int, function_code: int) -> None:
        self._data = bytearray((server_id & 0xFF, function_code & 0xFF))

    def set_message(self, server_id: int, function_code: int, *args: int) -> None:
        """Build a request with zero to three 16-bit parameters.

        Raises :class:`ModbusError` and leaves the message unchanged if the
        parameters are invalid.
        """
        check_data(server_id, function_code, *args)
        self._start(server_id, function_code)
        self.add_uint16(*args)

    def set_words(
        self,
        server_id: int,
        function_code: int,
        address: int,
        quantity: int,
        words: Iterable[int],
    ) -> None:
        """Build a write-multiple-registers style request."""
        words = list(words)
        count = len(words) * 2
        _check_words(server_id, function_code, quantity, count)
        self._start(server_id, function_code)
        self.add_uint16(address, quantity)
        self.add_uint8(count)
        self.add_uint16(*words)

    def set_coils(
        self,
        server_id: int,
        function_code: int,
        address: int,
        quantity: int,
        coil_bytes: BytesLike,
    ) -> None:
        """Build a write-multiple-coils style request."""
        coil_bytes = bytes(coil_bytes)
        _check_coils(server_id, function_code, quantity, len(coil_bytes))
        self._start(server_id, function_code)
        self.add_uint16(address, quantity)
        self.add_uint8(len(coil_bytes))
        self._data.extend(coil_bytes)

    def set_generic(self, server_id: int, function_code: int, data: BytesLike) -> None:
        """Build a request for a user or generic function code from raw data."""
        data = bytes(data)
        _check_generic(server_id, function_code)
        self._start(server_id, function_code)
        self._data.extend(data)

    def set_error(self, server_id: int, function_code: int, error: int) -> None:
        """Turn the message into an error response."""
        self._data = bytearray(
            (server_id & 0xFF, (function_code | 0x80) & 0xFF, int(error) & 0xFF)
        )