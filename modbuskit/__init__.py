"""Modbus messages, RTU/ASCII framing, and TCP and serial servers."""

__version__ = "0.1.0"
__all__ = ["byteorder", "message", "rtu", "rtuserver", "server", "tcpserver", "types"]