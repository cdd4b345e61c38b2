import asyncio
import logging
from typing import Callable

from serial_prober import _connection
from serial_prober import _exceptions
from serial_prober import _spec

log = logging.getLogger("serial_prober.opening")

Connector = Callable[[str, int], _connection.SerialHandle]


class LockRetryOpener:
    """Opens a port exclusively, waiting out other processes' locks.

    'connect' opens the port, raising SerialOpenBusy if it's locked
    elsewhere or SerialOpenDeviceError for any other failure. Busy ports
    are retried after a fixed delay, up to a fixed number of attempts;
    other failures are final.
    """

    def __init__(
        self,
        baud: int,
        opts: _spec.ProbeOptions = _spec.ProbeOptions(),
        *,
        connect: Connector = _connection.SerialConnection,
    ):
        self._baud = baud
        self._opts = opts
        self._connect = connect

    def __repr__(self) -> str:
        return f"LockRetryOpener({self._baud}, {self._opts!r})"

    async def open(self, port: str) -> _connection.SerialHandle:
        limit, delay = self._opts.open_attempts, self._opts.retry_delay
        attempt = 0
        while True:
            attempt += 1
            log.debug("Opening %s (try %d/%d)", port, attempt, limit)
            try:
                return self._connect(port, self._baud)
            except _exceptions.SerialOpenBusy as ex:
                if attempt >= limit:
                    message = f"Serial port locked ({attempt} attempts)"
                    raise _exceptions.SerialLockTimeout(message, port) from ex
                log.debug("%s locked, retrying in %.2fs", port, delay)

            await asyncio.sleep(delay)
