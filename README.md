# modbuskit

Building blocks for Modbus servers in pure Python, with no dependencies
outside the standard library.

- `modbuskit.types` – function codes (`FunctionCode`), error codes (`Error`),
  the exception `ModbusError` that carries an `Error`, the function-code
  classification (`FCType`, `get_type`, `redefine_type`) and the swap flags
  `SWAP_BYTES`, `SWAP_REGISTERS`, `SWAP_WORDS`, `SWAP_NIBBLES`.
- `modbuskit.byteorder` – IEEE 754 float and double encoding, most significant
  byte first, re-ordered by a swap rule (`float_to_bytes`, `bytes_to_float`,
  `double_to_bytes`, `bytes_to_double`, `swap_bytes`).
- `modbuskit.message` – `ModbusMessage`, a PDU with leading server ID, with
  validated builders (`set_message`, `set_words`, `set_coils`, `set_generic`,
  `set_error`), MSB-first packing (`add_uint8`, `add_uint16`, `add_uint32`,
  `add_float`, `add_double`, `add_bytes`) and reading (`get_uint`,
  `get_bytes`, `get_float`, `get_double`), plus `check_data`.
- `modbuskit.rtu` – CRC16 (`calc_crc`, `valid_crc`, `add_crc`), RTU and ASCII
  framing (`encode_rtu_frame`, `decode_rtu_frame`, `encode_ascii_frame`,
  `decode_ascii_frame`), the inter-frame gap (`calculate_interval`) and
  `SerialLink`, which sends and receives frames over a byte stream.
- `modbuskit.server` – `ModbusServer`, a registry of worker callbacks keyed by
  server ID and function code, with `local_request` dispatch, the
  `message_count` and `error_count` counters, and the predefined worker
  results `NIL_RESPONSE` and `ECHO_RESPONSE`.
- `modbuskit.tcpserver` – `ModbusServerTCPAsync`, an asyncio Modbus TCP
  server, and `ClientSession`, the per-connection MBAP parser.
- `modbuskit.rtuserver` – `ModbusServerRTU`, a serial RTU/ASCII server running
  in a background thread, with broadcast and sniffer hooks.

## Installation

```
pip install modbuskit
```

## Building a request

```python
from modbuskit.message import ModbusMessage
from modbuskit.types import FunctionCode

msg = ModbusMessage()
msg.set_message(1, FunctionCode.READ_HOLD_REGISTER, 0x0000, 10)
print(bytes(msg).hex())   # 01030000000a
```

Invalid parameters raise `ModbusError`; its `error` attribute holds the
matching `Error` code (for example `Error.PARAMETER_LIMIT_ERROR` when more
than 125 registers are requested) and the message is left unchanged.

Values are read back as `(value, next_index)` pairs:

```python
value, index = msg.get_uint(2, 2)   # (0, 4)
count, index = msg.get_uint(index)  # (10, 6)
```

## Serving requests

A worker takes the request as a `ModbusMessage` and returns the response
(a `ModbusMessage` or bytes). It may also return `NIL_RESPONSE`, so that no
response is sent, or `ECHO_RESPONSE`, so that the request is echoed.

```python
from modbuskit.message import ModbusMessage
from modbuskit.server import ModbusServer
from modbuskit.types import FunctionCode

def read_registers(request):
    response = ModbusMessage()
    response.add_uint8(request.server_id, request.function_code, 4)
    response.add_uint16(0x1234, 0x5678)
    return response

server = ModbusServer()
server.register_worker(1, FunctionCode.READ_HOLD_REGISTER, read_registers)
print(server.local_request(b"\x01\x03\x00\x00\x00\x02"))
```

Requests for an unknown server ID are answered with `Error.INVALID_SERVER`,
requests for a known server ID without a matching worker with
`Error.ILLEGAL_FUNCTION`.

### Over TCP

`ModbusServerTCPAsync` is a `ModbusServer`, so it uses the same registry:

```python
import asyncio
from modbuskit.tcpserver import ModbusServerTCPAsync

async def main():
    tcp = ModbusServerTCPAsync()
    tcp.register_worker(1, FunctionCode.READ_HOLD_REGISTER, read_registers)
    await tcp.start("127.0.0.1", 5020, 4, 60_000)  # host, port, max clients, idle ms
    try:
        await asyncio.sleep(3600)
    finally:
        await tcp.stop()

asyncio.run(main())
```

Connections beyond the client limit are closed at once; a client idle for
longer than the timeout is dropped (a timeout of 0 keeps clients forever).

### Over a serial line

`ModbusServerRTU` and `SerialLink` work on any object with a non-blocking
`read(size)` that returns at most `size` bytes (possibly `b""`), a
`write(data)` and, optionally, `flush()`.

```python
from modbuskit.rtuserver import ModbusServerRTU

rtu = ModbusServerRTU(timeout=2000)
rtu.register_worker(1, FunctionCode.READ_HOLD_REGISTER, read_registers)
rtu.begin(stream, 19200)     # starts the background thread
...
rtu.end()
```

`use_modbus_ascii()` and `use_modbus_rtu()` switch the framing,
`skip_leading_0x00()` ignores a stray zero byte before an RTU request, and
`register_broadcast_worker()` and `register_sniffer()` install hooks for
broadcasts and for every request received. `handle_request()` and
`serve_once()` answer a single request without the background thread.

## What the package does not do

- There is no Modbus client: the package builds and parses messages and
  answers requests, but does not send requests to other devices.
- It does not open serial ports; the caller supplies the stream.
- It has no command-line program.

## Running the tests

```
pip install -e .[test]
pytest
```