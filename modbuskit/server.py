"""Registry of worker functions that answer Modbus requests."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Union

from .message import BytesLike, ModbusMessage
from .types import ANY_SERVER, Error, FunctionCode

__all__ = ["ModbusServer", "Worker", "NIL_RESPONSE", "ECHO_RESPONSE"]

logger = logging.getLogger(__name__)

# Worker results that stand for "send no response" and "echo the request"
NIL_RESPONSE = ModbusMessage(b"\xff\xf0")
ECHO_RESPONSE = ModbusMessage(b"\xff\xf1")

Worker = Callable[[ModbusMessage], Union[ModbusMessage, BytesLike]]


class ModbusServer:
    """Maps server ID and function code to worker functions.

    Workers are looked up for the exact server ID first and for
    :data:`ANY_SERVER` next; inside a server, for the exact function code
    first and for ``ANY_FUNCTION_CODE`` next.
    """

    def __init__(self) -> None:
        self._workers: dict[int, dict[int, Worker]] = {}
        self._lock = threading.Lock()
        self._message_count = 0
        self._error_count = 0

    @property
    def message_count(self) -> int:
        """Number of requests processed."""
        return self._message_count

    @property
    def error_count(self) -> int:
        """Number of error responses given."""
        return self._error_count

    def _count_message(self) -> None:
        with self._lock:
            self._message_count += 1

    def _count_error(self) -> None:
        with self._lock:
            self._error_count += 1

    def register_worker(self, server_id: int, function_code: int, worker: Worker) -> None:
        """Register a worker, replacing any already registered for the pair."""
        self._workers.setdefault(server_id, {})[function_code] = worker
        logger.debug("Registered worker for %02X/%02X", server_id, function_code)

    def get_worker(self, server_id: int, function_code: int) -> Worker | None:
        """Return the worker for the pair, or ``None`` if there is none."""
        functions = self._workers.get(server_id)
        if functions is None:
            functions = self._workers.get(ANY_SERVER)
        if functions is None:
            return None
        worker = functions.get(function_code)
        if worker is None:
            worker = functions.get(FunctionCode.ANY_FUNCTION_CODE)
        return worker

    def unregister_worker(self, server_id: int, function_code: int = 0) -> bool:
        """Remove one worker, or all of a server's workers if ``function_code`` is 0.

        Returns whether anything was removed.
        """
        functions = self._workers.get(server_id)
        if functions is None:
            return False
        if function_code:
            return functions.pop(function_code, None) is not None
        del self._workers[server_id]
        return True

    def is_server_for(self, server_id: int, function_code: int | None = None) -> bool:
        """Tell whether a worker serves the pair, or the server ID at all."""
        if function_code is not None:
            return self.get_worker(server_id, function_code) is not None
        return server_id in self._workers or ANY_SERVER in self._workers

    def reset_counts(self) -> None:
        """Set message and error counts to zero."""
        with self._lock:
            self._message_count = 0
            self._error_count = 0

    def local_request(self, msg: ModbusMessage | BytesLike) -> ModbusMessage:
        """Answer a request with the registered workers, without any transport."""
        request = ModbusMessage(msg)
        server_id = request.server_id
        function_code = request.function_code
        self._count_message()
        worker = self.get_worker(server_id, function_code)
        response = ModbusMessage()
        if worker is None:
            error = Error.ILLEGAL_FUNCTION if self.is_server_for(server_id) else Error.INVALID_SERVER
            response.set_error(server_id, function_code, error)
            self._count_error()
            return response
        response = ModbusMessage(worker(request.copy()))
        marker = response[:2]
        if marker == bytes(NIL_RESPONSE):
            response.clear()
        elif marker == bytes(ECHO_RESPONSE):
            response = request.copy()
        if response.error != Error.SUCCESS:
            self._count_error()
        return response

    def list_server(self) -> list[str]:
        """Describe every served server ID with its function codes, and log it."""
        lines = []
        for server_id in sorted(self._workers):
            codes = "".join(f" {fc:02X}" for fc in sorted(self._workers[server_id]))
            line = f"Server {server_id:3d}: {codes}"
            logger.info(line)
            lines.append(line)
        return lines