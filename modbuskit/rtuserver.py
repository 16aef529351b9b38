"""Modbus RTU/ASCII server answering requests on a serial stream."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from .message import BytesLike, ModbusMessage
from .rtu import RTSCallback, SerialLink, calculate_interval, rts_auto
from .server import ECHO_RESPONSE, NIL_RESPONSE, ModbusServer
from .types import Error, FunctionCode, ModbusError

__all__ = ["ModbusServerRTU", "Listener"]

logger = logging.getLogger(__name__)

Listener = Callable[[ModbusMessage], None]

_BROADCAST = 0x00
_DEFAULT_INTERVAL = 2000


class ModbusServerRTU(ModbusServer):
    """Serves registered workers over a Modbus RTU or ASCII serial line.

    ``timeout`` is the receive timeout in milliseconds; after it passes
    without a request the server simply starts listening again. ``rts`` is
    called with ``True`` before and ``False`` after each response is sent.
    """

    def __init__(self, timeout: int, rts: RTSCallback | None = None) -> None:
        super().__init__()
        self.timeout = timeout
        self.rts: RTSCallback = rts if rts is not None else rts_auto
        self.interval = _DEFAULT_INTERVAL
        self._ascii = False
        self._skip_zero = False
        self._listener: Listener | None = None
        self._sniffer: Listener | None = None
        self._link: SerialLink | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self.rts(False)

    # ----- lifecycle ----------------------------------------------------------

    def begin(self, stream, baud_rate: int, user_interval: int = 0) -> None:
        """Start serving on ``stream`` in a background thread.

        The silent interval between frames is derived from ``baud_rate``
        unless ``user_interval`` (microseconds) is longer. A running server
        is stopped first.
        """
        self.end()
        self.interval = max(calculate_interval(baud_rate), user_interval)
        self._link = SerialLink(stream, self.interval, self.rts, self._ascii)
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._serve, args=(self._stop,), name="ModbusServerRTU", daemon=True
        )
        self._thread.start()
        logger.debug("Server thread started. Interval=%d", self.interval)

    def end(self) -> None:
        """Stop the background thread, if one is running."""
        if self._thread is not None:
            self._stop.set()
            self._thread.join()
            self._thread = None
            logger.debug("Server thread stopped.")

    @property
    def running(self) -> bool:
        """Tell whether the background thread is serving."""
        return self._thread is not None and self._thread.is_alive()

    def _serve(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                self.serve_once()
            except Exception:  # a failing worker must not end the server
                logger.exception("Error while serving request")
            stop.wait(0.001)

    # ----- configuration ------------------------------------------------------

    def use_modbus_ascii(self, timeout: int = 1000) -> None:
        """Switch to Modbus ASCII and set the receive timeout."""
        self._ascii = True
        self.timeout = timeout
        logger.debug("Protocol mode: ASCII")

    def use_modbus_rtu(self) -> None:
        """Switch to Modbus RTU."""
        self._ascii = False
        logger.debug("Protocol mode: RTU")

    def is_modbus_ascii(self) -> bool:
        """Tell whether Modbus ASCII is in use."""
        return self._ascii

    def set_modbus_timeout(self, timeout: int) -> None:
        """Set the receive timeout in milliseconds."""
        self.timeout = timeout

    def skip_leading_0x00(self, on_off: bool = True) -> None:
        """Ignore a 0x00 byte in front of an RTU request, or stop doing so."""
        self._skip_zero = on_off
        logger.debug("Skip leading 0x00 mode = %s", "ON" if on_off else "OFF")

    def register_broadcast_worker(self, worker: Listener) -> None:
        """Register the function called for broadcast requests (server ID 0)."""
        self._listener = worker

    def register_sniffer(self, worker: Listener) -> None:
        """Register a function called with every request received."""
        self._sniffer = worker

    # ----- request handling ---------------------------------------------------

    def handle_request(self, request: ModbusMessage | BytesLike) -> ModbusMessage | None:
        """Answer one request; return the response to send, or ``None``."""
        request = ModbusMessage(request)
        if len(request) <= 1:
            return None
        if self._sniffer is not None:
            self._sniffer(request.copy())
        server_id = request[0]
        function_code = request[1]
        if server_id == _BROADCAST:
            if self._listener is not None:
                self._listener(request.copy())
                logger.debug("Broadcast served.")
            return None

        response = ModbusMessage()
        worker = self.get_worker(server_id, function_code)
        if worker is not None:
            self._count_message()
            reply = ModbusMessage(worker(request.copy()))
            marker = reply[:2]
            if marker == bytes(NIL_RESPONSE):
                response = ModbusMessage()
            elif marker == bytes(ECHO_RESPONSE):
                response = request.copy()
                if function_code in (
                    FunctionCode.WRITE_MULT_REGISTERS,
                    FunctionCode.WRITE_MULT_COILS,
                ):
                    response.resize(6)
            else:
                response = reply
        elif self.is_server_for(server_id):
            response.set_error(server_id, function_code, Error.ILLEGAL_FUNCTION)

        if len(response) < 3:
            return None
        if response.error != Error.SUCCESS:
            self._count_error()
        return response

    def serve_once(self) -> ModbusMessage | None:
        """Receive one request, answer it and return the response sent.

        Returns ``None`` when nothing was sent: on timeout, on a receive
        error or when the request needs no answer. Raises ``RuntimeError``
        if :meth:`begin` was never called.
        """
        link = self._link
        if link is None:
            raise RuntimeError("server has not been started with begin()")
        link.ascii_mode = self._ascii
        try:
            request = link.receive(self.timeout, self._skip_zero)
        except ModbusError as exc:
            if exc.error != Error.TIMEOUT:
                logger.error("RTU receive: %s", exc)
            return None
        response = self.handle_request(request)
        if response is not None:
            link.send(response)
            logger.debug("Response sent.")
        return response