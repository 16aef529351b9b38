"""Modbus TCP server on asyncio."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .message import BytesLike, ModbusMessage
from .server import ECHO_RESPONSE, NIL_RESPONSE, ModbusServer
from .types import Error, FunctionCode

__all__ = ["ClientSession", "ModbusServerTCPAsync"]

logger = logging.getLogger(__name__)

_MBAP_SIZE = 6
# 256 bytes of PDU plus the MBAP header
_MAX_FRAME = 262


class ClientSession:
    """Parses the request stream of one TCP client and builds the responses."""

    def __init__(self, server: ModbusServer) -> None:
        self.server = server
        self._buffer = bytearray()

    def feed(self, data: BytesLike) -> list[bytes]:
        """Take received bytes and return the response frames they complete.

        A malformed header yields an error response and discards whatever
        else was buffered.
        """
        self._buffer.extend(data)
        responses: list[bytes] = []
        while len(self._buffer) >= _MBAP_SIZE:
            frame_length = int.from_bytes(self._buffer[4:6], "big") + _MBAP_SIZE
            error = Error.SUCCESS
            if self._buffer[2] or self._buffer[3]:
                error = Error.TCP_HEAD_MISMATCH
            elif frame_length > _MAX_FRAME:
                error = Error.PACKET_LENGTH_ERROR
            if error != Error.SUCCESS:
                logger.debug("Invalid MBAP header: %s", error.name)
                head = ModbusMessage(self._buffer)
                payload = ModbusMessage()
                payload.set_error(head.server_id, head.function_code, error)
                responses.append(self._frame(bytes(self._buffer[:4]), payload))
                self._buffer.clear()
                return responses
            if len(self._buffer) < frame_length:
                break
            frame = bytes(self._buffer[:frame_length])
            del self._buffer[:frame_length]
            responses.append(self._process(frame))
        return responses

    @staticmethod
    def _frame(head: bytes, payload: ModbusMessage) -> bytes:
        return head + len(payload).to_bytes(2, "big") + bytes(payload)

    def _process(self, frame: bytes) -> bytes:
        request = ModbusMessage(frame[_MBAP_SIZE:])
        server_id = request.server_id
        function_code = request.function_code
        user_data = ModbusMessage()
        error = Error.SUCCESS
        if self.server.is_server_for(server_id):
            worker = self.server.get_worker(server_id, function_code)
            if worker is not None:
                user_data = ModbusMessage(worker(request.copy()))
                marker = user_data[:2]
                if marker == bytes(NIL_RESPONSE):
                    user_data.clear()
                elif marker == bytes(ECHO_RESPONSE):
                    user_data = request.copy()
                    if function_code in (
                        FunctionCode.WRITE_MULT_REGISTERS,
                        FunctionCode.WRITE_MULT_COILS,
                    ):
                        user_data.resize(6)
            else:
                error = Error.ILLEGAL_FUNCTION
        else:
            error = Error.INVALID_SERVER
        if error != Error.SUCCESS:
            user_data.set_error(server_id, function_code, error)
        return self._frame(frame[:4], user_data)


class ModbusServerTCPAsync(ModbusServer):
    """Modbus TCP server serving several clients concurrently."""

    def __init__(self) -> None:
        super().__init__()
        self._server: asyncio.base_events.Server | None = None
        self._clients: dict[asyncio.StreamWriter, asyncio.Task] = {}
        self._max_clients = 5
        self._idle_timeout = 60000

    @property
    def port(self) -> int | None:
        """Port the running server listens on, ``None`` if not running."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(
        self,
        host: str | None = None,
        port: int = 502,
        max_clients: int = 5,
        timeout: int = 60000,
    ) -> bool:
        """Start listening; ``timeout`` is the idle time in ms before a client
        is dropped (0 keeps clients forever). Returns False if already running.
        """
        if self._server is not None:
            logger.warning("Server already running.")
            return False
        self._max_clients = max_clients
        self._idle_timeout = timeout
        self._server = await asyncio.start_server(self._handle_client, host, port)
        logger.debug("Modbus server started")
        return True

    async def stop(self) -> bool:
        """Stop listening and drop all clients. Returns False if not running."""
        if self._server is None:
            logger.warning("Server not running.")
            return False
        server, self._server = self._server, None
        server.close()
        tasks = list(self._clients.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._clients.clear()
        await server.wait_closed()
        logger.debug("Modbus server stopped")
        return True

    def active_clients(self) -> int:
        """Number of clients currently connected."""
        return len(self._clients)

    def is_running(self) -> bool:
        """Tell whether the server is listening."""
        return self._server is not None

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if len(self._clients) >= self._max_clients:
            logger.debug("max number of clients reached, closing new")
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            return
        task = asyncio.current_task()
        if task is not None:
            self._clients[writer] = task
        session = ClientSession(self)
        idle = self._idle_timeout / 1000 if self._idle_timeout > 0 else None
        try:
            while True:
                try:
                    data = await asyncio.wait_for(reader.read(4096), idle)
                except asyncio.TimeoutError:
                    logger.debug("client idle, closing")
                    break
                if not data:
                    break
                for response in session.feed(data):
                    writer.write(response)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            self._clients.pop(writer, None)
            writer.close()
            with contextlib.suppress(ConnectionError, asyncio.CancelledError):
                await writer.wait_closed()
            logger.debug("client disconnected, %d left", len(self._clients))