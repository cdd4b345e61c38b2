import asyncio
import contextlib
import dataclasses
import logging
from typing import Literal

from serial_prober import _connection
from serial_prober import _exceptions
from serial_prober import _filter
from serial_prober import _opening
from serial_prober import _probing
from serial_prober import _scanning
from serial_prober import _spec

log = logging.getLogger("serial_prober.prober")

SessionState = Literal["idle", "opening", "probing", "succeeded", "failed"]


def set_debug(flag: bool) -> None:
    """Turns serial_prober debug logging on or off (no behavior change)"""

    level = logging.DEBUG if flag else logging.NOTSET
    logging.getLogger("serial_prober").setLevel(level)


class SerialProber:
    """Finds, opens, and verifies ports hosting a particular kind of device.

    Each open() is a session: the port is opened exclusively (waiting out
    other processes' locks), then probed. On success the open handle
    belongs to the caller; on any failure it has been closed. Only one
    session runs at a time; starting another, or calling close(), abandons
    whatever is in flight.
    """

    def __init__(
        self,
        spec: _spec.ProbeSpec,
        opts: _spec.ProbeOptions = _spec.ProbeOptions(),
        *,
        connect: _opening.Connector = _connection.SerialConnection,
        prober: _probing.ResponseProber | None = None,
    ):
        self.spec = spec
        self._filter = _filter.PortFilter(spec.filter)
        self._opener = _opening.LockRetryOpener(
            spec.baud, opts, connect=connect
        )
        self._prober = prober or _probing.ResponseProber(spec, opts)

        self._state: SessionState = "idle"
        self._port: str | None = None
        self._conn: _connection.SerialHandle | None = None
        self._task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"SerialProber({self.spec.name!r})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def port_filter(self) -> _filter.PortFilter:
        return self._filter

    async def open(self, port: str) -> _connection.SerialHandle:
        """Opens and probes 'port', returning the handle if it passes"""

        self.close()
        name, baud = self.spec.name, self.spec.baud
        log.debug("Probing %s at %d baud for %s", port, baud, name)
        self._port, self._task = port, asyncio.current_task()
        try:
            with contextlib.ExitStack() as cleanup:
                self._state = "opening"
                conn = await self._opener.open(port)
                self._conn = conn
                cleanup.callback(conn.close)

                self._state = "probing"
                await self._prober.probe(conn)
                cleanup.pop_all()
                self._state = "succeeded"
                return conn
        except _exceptions.SerialException as ex:
            log.debug("%s: Probe failed (%s)", port, ex)
            raise
        finally:
            if self._task is asyncio.current_task():
                self._conn, self._task = None, None
                if self._state != "succeeded":
                    self._state = "failed"

    def close(self) -> None:
        """Abandons any session in flight, closing its port; else no-op"""

        conn, self._conn = self._conn, None
        task, self._task = self._task, None
        if self._state in ("opening", "probing"):
            self._state = "failed"
        if conn and conn.is_open:
            log.debug("Closing %s", conn.port_name)
            conn.close()
        if task and not task.done() and task is not _current_task():
            log.debug("Abandoning %s session", self._port)
            task.cancel()

    async def probe_all(self) -> list["ProbeResult"]:
        """Opens and probes every port passing the filter, one at a time"""

        found = await asyncio.to_thread(_scanning.scan_serial_ports)
        candidates = self._filter.filter(found)
        log.debug(
            "%d/%d ports pass the %s filter",
            len(candidates),
            len(found),
            self.spec.name,
        )

        results: list[ProbeResult] = []
        with contextlib.ExitStack() as cleanup:
            for port in candidates:
                try:
                    conn = await self.open(port.name)
                except _exceptions.SerialException as ex:
                    log.debug("Skipping %s (%s)", port, ex)
                    continue
                cleanup.callback(conn.close)
                results.append(ProbeResult(prober=self, port=port, conn=conn))
            cleanup.pop_all()

        log.debug("%d %s device(s) found", len(results), self.spec.name)
        return results


@dataclasses.dataclass(frozen=True)
class ProbeResult:
    """A port that passed probing, with its open handle (now the caller's)"""

    prober: SerialProber
    port: _scanning.SerialPort
    conn: _connection.SerialHandle


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
