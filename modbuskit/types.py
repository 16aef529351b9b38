"""Modbus function codes, error codes and function code type classification."""

from __future__ import annotations

from enum import IntEnum

__all__ = [
    "ANY_SERVER",
    "SWAP_BYTES",
    "SWAP_REGISTERS",
    "SWAP_WORDS",
    "SWAP_NIBBLES",
    "FunctionCode",
    "Error",
    "FCType",
    "ModbusError",
    "get_type",
    "redefine_type",
]

# Readable expression for the "illegal" server ID of 0
ANY_SERVER = 0x00

# Flags for float and double re-ordering
SWAP_BYTES = 0x01
SWAP_REGISTERS = 0x02
SWAP_WORDS = 0x04
SWAP_NIBBLES = 0x08


class FunctionCode(IntEnum):
    """Modbus function codes."""

    ANY_FUNCTION_CODE = 0x00
    READ_COIL = 0x01
    READ_DISCR_INPUT = 0x02
    READ_HOLD_REGISTER = 0x03
    READ_INPUT_REGISTER = 0x04
    WRITE_COIL = 0x05
    WRITE_HOLD_REGISTER = 0x06
    READ_EXCEPTION_SERIAL = 0x07
    DIAGNOSTICS_SERIAL = 0x08
    READ_COMM_CNT_SERIAL = 0x0B
    READ_COMM_LOG_SERIAL = 0x0C
    WRITE_MULT_COILS = 0x0F
    WRITE_MULT_REGISTERS = 0x10
    REPORT_SERVER_ID_SERIAL = 0x11
    READ_FILE_RECORD = 0x14
    WRITE_FILE_RECORD = 0x15
    MASK_WRITE_REGISTER = 0x16
    R_W_MULT_REGISTERS = 0x17
    READ_FIFO_QUEUE = 0x18
    ENCAPSULATED_INTERFACE = 0x2B
    USER_DEFINED_41 = 0x41
    USER_DEFINED_42 = 0x42
    USER_DEFINED_43 = 0x43
    USER_DEFINED_44 = 0x44
    USER_DEFINED_45 = 0x45
    USER_DEFINED_46 = 0x46
    USER_DEFINED_47 = 0x47
    USER_DEFINED_48 = 0x48
    USER_DEFINED_64 = 0x64
    USER_DEFINED_65 = 0x65
    USER_DEFINED_66 = 0x66
    USER_DEFINED_67 = 0x67
    USER_DEFINED_68 = 0x68
    USER_DEFINED_69 = 0x69
    USER_DEFINED_6A = 0x6A
    USER_DEFINED_6B = 0x6B
    USER_DEFINED_6C = 0x6C
    USER_DEFINED_6D = 0x6D
    USER_DEFINED_6E = 0x6E


class Error(IntEnum):
    """Modbus exception codes plus library-specific communication errors."""

    SUCCESS = 0x00
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SERVER_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SERVER_DEVICE_BUSY = 0x06
    NEGATIVE_ACKNOWLEDGE = 0x07
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAIL = 0x0A
    GATEWAY_TARGET_NO_RESP = 0x0B
    TIMEOUT = 0xE0
    INVALID_SERVER = 0xE1
    CRC_ERROR = 0xE2
    FC_MISMATCH = 0xE3
    SERVER_ID_MISMATCH = 0xE4
    PACKET_LENGTH_ERROR = 0xE5
    PARAMETER_COUNT_ERROR = 0xE6
    PARAMETER_LIMIT_ERROR = 0xE7
    REQUEST_QUEUE_FULL = 0xE8
    ILLEGAL_IP_OR_PORT = 0xE9
    IP_CONNECTION_FAILED = 0xEA
    TCP_HEAD_MISMATCH = 0xEB
    EMPTY_MESSAGE = 0xEC
    ASCII_FRAME_ERR = 0xED
    ASCII_CRC_ERR = 0xEE
    ASCII_INVALID_CHAR = 0xEF
    BROADCAST_ERROR = 0xF0
    UNDEFINED_ERROR = 0xFF


class FCType(IntEnum):
    """Parameter layout class of a function code."""

    FC01_TYPE = 0  # two 16-bit parameters
    FC07_TYPE = 1  # no additional parameter
    FC0F_TYPE = 2  # address, quantity, byte count, coil bytes
    FC10_TYPE = 3  # address, quantity, byte count, register words
    FC16_TYPE = 4  # three 16-bit parameters
    FC18_TYPE = 5  # one 16-bit parameter
    FCGENERIC = 6  # not explicitly coded
    FCUSER = 7  # no checks except the server ID
    FCILLEGAL = 8  # not allowed


class ModbusError(Exception):
    """Exception carrying a Modbus :class:`Error` code."""

    def __init__(self, error: int, message: str | None = None) -> None:
        try:
            self.error: int = Error(error)
        except ValueError:
            self.error = int(error)
        if message is None:
            name = self.error.name if isinstance(self.error, Error) else "UNKNOWN"
            message = f"{name} (0x{int(self.error):02X})"
        super().__init__(message)

    def __int__(self) -> int:
        return int(self.error)


def _initial_table() -> list[FCType]:
    table = [FCType.FCILLEGAL] * 128
    assignments = {
        FCType.FC01_TYPE: range(0x01, 0x07),
        FCType.FC07_TYPE: (0x07, 0x0B, 0x0C, 0x11),
        FCType.FCGENERIC: (0x08, 0x14, 0x15, 0x17, 0x2B),
        FCType.FC0F_TYPE: (0x0F,),
        FCType.FC10_TYPE: (0x10,),
        FCType.FC16_TYPE: (0x16,),
        FCType.FC18_TYPE: (0x18,),
        FCType.FCUSER: [*range(0x41, 0x49), *range(0x64, 0x6F)],
    }
    for fc_type, codes in assignments.items():
        for code in codes:
            table[code] = fc_type
    return table


_FC_TABLE: list[FCType] = _initial_table()


def get_type(function_code: int) -> FCType:
    """Return the type of a function code; the error bit 0x80 is ignored."""
    return _FC_TABLE[function_code & 0x7F]


def redefine_type(function_code: int, fc_type: FCType = FCType.FCUSER) -> FCType:
    """Change the type of a function code and return the effective type."""
    fc = function_code & 0x7F
    _FC_TABLE[fc] = FCType(fc_type)
    return _FC_TABLE[fc]