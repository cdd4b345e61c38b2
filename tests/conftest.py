import asyncio
import contextlib
import io
import json
import ok_logging_setup
import os
import pty
import pytest
import typing

import serial_prober
from serial_prober import _scanning

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "serial_prober=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


@pytest.fixture
def set_scan_override(monkeypatch, tmp_path):
    path = tmp_path / "scan.json"
    path.write_text("{}")
    monkeypatch.setenv(_scanning.SCAN_OVERRIDE_ENV, str(path))

    def set_ports(ports: dict[str, dict[str, object]]):
        path.write_text(json.dumps(ports))

    return set_ports


class FakeHandle(serial_prober.SerialHandle):
    """In-memory port that answers each write with scripted chunks"""

    def __init__(self, port: str, baud: int, reply=(), delay=0.01):
        self.baud = baud
        self.reply = list(reply)
        self.delay = delay
        self.written = bytearray()
        self.closed = False
        self._port = port
        self._incoming: asyncio.Queue[bytes] = asyncio.Queue()

    @property
    def port_name(self) -> str:
        return self._port

    @property
    def is_open(self) -> bool:
        return not self.closed

    def write(self, data: bytes) -> None:
        if self.closed:
            raise serial_prober.SerialIoClosed("closed", self._port)
        self.written.extend(data)
        loop = asyncio.get_running_loop()
        for n, chunk in enumerate(self.reply, start=1):
            loop.call_later(self.delay * n, self._incoming.put_nowait, chunk)

    async def read_async(self, *, min: int = 1, max: int = 65536) -> bytes:
        if self.closed:
            raise serial_prober.SerialIoClosed("closed", self._port)
        return await self._incoming.get()

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Stands in for SerialConnection as a LockRetryOpener 'connect'"""

    def __init__(self):
        self.busy: dict[str, int] = {}  # port -> number of busy attempts
        self.missing: set[str] = set()
        self.replies: dict[str, list[bytes]] = {}
        self.calls: list[tuple[str, float]] = []
        self.handles: dict[str, FakeHandle] = {}

    @property
    def ports_tried(self) -> list[str]:
        return [port for port, _when in self.calls]

    def __call__(self, port: str, baud: int) -> FakeHandle:
        self.calls.append((port, asyncio.get_running_loop().time()))
        if self.busy.get(port, 0) > 0:
            self.busy[port] -= 1
            raise serial_prober.SerialOpenBusy("Serial port busy (fake)", port)
        if port in self.missing:
            message = "Serial port open error (fake)"
            raise serial_prober.SerialOpenDeviceError(message, port)

        handle = FakeHandle(port, baud, reply=self.replies.get(port, ()))
        self.handles[port] = handle
        return handle


@pytest.fixture
def fake_transport():
    return FakeTransport()
