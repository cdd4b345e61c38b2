import abc
import asyncio
import contextlib
import errno
import logging
import serial
import threading

import pydantic

from serial_prober import _exceptions
from serial_prober import _locking
from serial_prober import _timeout_math

log = logging.getLogger("serial_prober.connection")
data_log = logging.getLogger(log.name + ".data")


class SerialHandle(contextlib.AbstractContextManager):
    """An open, exclusively held serial port, as handed out by probing"""

    @property
    @abc.abstractmethod
    def port_name(self) -> str: ...

    @property
    @abc.abstractmethod
    def is_open(self) -> bool: ...

    @abc.abstractmethod
    def write(self, data: bytes) -> None:
        """Queues 'data' for transmission without blocking"""

    @abc.abstractmethod
    async def read_async(self, *, min: int = 1, max: int = 65536) -> bytes:
        """Waits for at least 'min' received bytes and returns up to 'max'"""

    @abc.abstractmethod
    def close(self) -> None:
        """Releases the port; safe to call more than once"""

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


class SerialOptions(pydantic.BaseModel):
    baud: int = 115200


class SerialConnection(SerialHandle):
    """PySerial port opened with exclusive locking and background I/O"""

    @pydantic.validate_call
    def __init__(self, port: str, opts: SerialOptions | int = SerialOptions()):
        if isinstance(opts, int):
            opts = SerialOptions(baud=opts)

        with contextlib.ExitStack() as cleanup:
            cleanup.enter_context(_locking.using_lock_file(port))

            log.debug("Opening %s (%s)", port, opts)
            try:
                pyserial = cleanup.enter_context(
                    serial.Serial(
                        port=port,
                        baudrate=opts.baud,
                        write_timeout=0.1,
                    )
                )
            except OSError as ex:
                if ex.errno == errno.EBUSY:
                    message = "Serial port busy (EBUSY)"
                    raise _exceptions.SerialOpenBusy(message, port) from ex
                else:
                    message = "Serial port open error"
                    error = _exceptions.SerialOpenDeviceError(message, port)
                    raise error from ex

            if hasattr(pyserial, "fileno"):
                fd = pyserial.fileno()
                cleanup.enter_context(_locking.using_fd_lock(port, fd))

            self._io = cleanup.enter_context(_PortWorkers(pyserial))
            self._io.start()
            self._cleanup = cleanup.pop_all()

    def __del__(self) -> None:
        if hasattr(self, "_cleanup"):
            self._cleanup.close()

    def __repr__(self) -> str:
        return f"SerialConnection({self.port_name!r})"

    @property
    def port_name(self) -> str:
        return self._io.pyserial.port

    @property
    def is_open(self) -> bool:
        with self._io.monitor:
            closed = _exceptions.SerialIoClosed
            return not isinstance(self._io.exception, closed)

    def close(self) -> None:
        self._cleanup.close()

    @pydantic.validate_call
    def read_sync(
        self,
        *,
        min: int = 1,
        max: int = 65536,
        timeout: float | int | None = None,
    ) -> bytes:
        deadline = _timeout_math.to_deadline(timeout)
        with self._io.monitor:
            while True:
                if len(self._io.incoming) >= min:
                    incoming = bytes(self._io.incoming[:max])
                    del self._io.incoming[:max]
                    return incoming
                if self._io.exception:
                    raise self._io.exception
                wait = _timeout_math.from_deadline(deadline)
                if wait <= 0:
                    return b""
                self._io.monitor.wait(timeout=wait)

    @pydantic.validate_call
    async def read_async(self, *, min: int = 1, max: int = 65536) -> bytes:
        while True:
            wakeup = self._io.add_waiter()  # before checking, to avoid a race
            if (out := self.read_sync(min=min, max=max, timeout=0)) or min <= 0:
                return out
            await wakeup

    @pydantic.validate_call
    def write(self, data: bytes) -> None:
        with self._io.monitor:
            if self._io.exception:
                raise self._io.exception
            if data:
                data_log.debug("%s: Queued %db", self.port_name, len(data))
                self._io.outgoing.extend(data)
                self._io.monitor.notify_all()


class _PortWorkers(contextlib.AbstractContextManager):
    """Reader and writer threads shuttling bytes to and from pyserial"""

    def __init__(self, pyserial: serial.Serial) -> None:
        self.pyserial = pyserial
        self.threads: list[threading.Thread] = []
        self.monitor = threading.Condition()
        self.incoming = bytearray()
        self.outgoing = bytearray()
        self.exception: _exceptions.SerialIoException | None = None
        self.waiters: list[asyncio.Future[None]] = []
        self.loop: asyncio.AbstractEventLoop | None
        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            self.loop = None

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()

    def start(self) -> None:
        port = self.pyserial.port
        workers = ((self._read_loop, "reader"), (self._write_loop, "writer"))
        for run, role in workers:
            name = f"{port} {role}"
            thread = threading.Thread(target=run, name=name, daemon=True)
            thread.start()
            self.threads.append(thread)

    def stop(self) -> None:
        port = self.pyserial.port
        with self.monitor:
            if not self.exception:
                message = "Serial port was closed"
                self.exception = _exceptions.SerialIoClosed(message, port)
            self._wake_locked()

        try:
            self.pyserial.cancel_read()
            self.pyserial.cancel_write()
        except OSError:
            log.warning("Can't cancel %s I/O", port, exc_info=True)

        log.debug("Joining %s I/O threads", port)
        for thread in self.threads:
            thread.join()
        self.threads.clear()

    def add_waiter(self) -> asyncio.Future[None]:
        """Must be run from the event loop that opened the port."""

        assert self.loop, "Serial port was not opened inside an event loop"
        with self.monitor:
            future = self.loop.create_future()
            self.waiters.append(future)
            return future

    def _read_loop(self) -> None:
        port = self.pyserial.port
        log.debug("%s: Reader started", port)
        while not self.exception:
            incoming, error = b"", None
            try:
                # Block for one byte, then take whatever else has arrived
                incoming = self.pyserial.read(size=1)
                if incoming and (waiting := self.pyserial.in_waiting) > 0:
                    incoming += self.pyserial.read(size=waiting)
            except OSError as ex:
                error = _exceptions.SerialIoException("Serial read error", port)
                error.__cause__ = ex
                data_log.warning("%s: Read failed", port, exc_info=True)

            with self.monitor:
                if incoming:
                    self.incoming.extend(incoming)
                    data_log.debug(
                        "%s: Read %db buf=%db",
                        port,
                        len(incoming),
                        len(self.incoming),
                    )
                if error and not self.exception:
                    self.exception = error
                if incoming or error:
                    self._wake_locked()

    def _write_loop(self) -> None:
        port = self.pyserial.port
        log.debug("%s: Writer started", port)

        # Writes are done here rather than in write() to avoid pyserial bugs:
        # https://github.com/pyserial/pyserial/issues/280
        # https://github.com/pyserial/pyserial/issues/281
        while True:
            with self.monitor:
                while not self.exception and not self.outgoing:
                    self.monitor.wait()
                if self.exception:
                    return
                chunk = bytes(self.outgoing[:256])

            error = None
            try:
                self.pyserial.write(chunk)
                self.pyserial.flush()
            except OSError as ex:
                message = "Serial write error"
                error = _exceptions.SerialIoException(message, port)
                error.__cause__ = ex
                data_log.warning("%s: Write failed", port, exc_info=True)

            with self.monitor:
                if error:
                    self.exception = self.exception or error
                else:
                    del self.outgoing[: len(chunk)]
                    data_log.debug(
                        "%s: Wrote %db, %db left",
                        port,
                        len(chunk),
                        len(self.outgoing),
                    )
                self._wake_locked()

    def _wake_locked(self) -> None:
        """Must be run with self.monitor held."""

        self.monitor.notify_all()
        if self.waiters and self.loop and not self.loop.is_closed():
            waiters, self.waiters = self.waiters, []
            self.loop.call_soon_threadsafe(_resolve_all, waiters)


def _resolve_all(futures: list[asyncio.Future[None]]) -> None:
    for future in futures:
        if not future.done():
            future.set_result(None)
