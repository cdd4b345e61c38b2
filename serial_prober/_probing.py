import asyncio
import logging

from serial_prober import _connection
from serial_prober import _exceptions
from serial_prober import _spec

log = logging.getLogger("serial_prober.probing")
data_log = logging.getLogger(log.name + ".data")


class ResponseProber:
    """Checks an open port by sending a command and awaiting a reply.

    The probe passes once the expected response appears anywhere in
    everything received so far, even if it arrived split over several
    reads. The command is sent once; there is no retry. Subclasses may
    override probe() for devices that need something more exotic.
    """

    def __init__(
        self,
        spec: _spec.ProbeSpec,
        opts: _spec.ProbeOptions = _spec.ProbeOptions(),
    ):
        self._spec = spec
        self._opts = opts

    def __repr__(self) -> str:
        return f"ResponseProber({self._spec.name!r})"

    async def probe(self, conn: _connection.SerialHandle) -> None:
        """Raises SerialProbeTimeout unless the device answers in time"""

        timeout = self._opts.probe_timeout
        try:
            received = await asyncio.wait_for(self._exchange(conn), timeout)
        except asyncio.TimeoutError as ex:
            message = f"{self._spec.name} not detected ({timeout:.2f}s timeout)"
            error = _exceptions.SerialProbeTimeout(message, conn.port_name)
            raise error from ex

        name, port = self._spec.name, conn.port_name
        log.debug("%s: %s probe passed (%db read)", port, name, received)

    async def _exchange(self, conn: _connection.SerialHandle) -> int:
        expected = self._spec.probe_rsp
        data_log.debug("%s: Sent %r", conn.port_name, self._spec.probe_cmd)
        conn.write(self._spec.probe_cmd)

        # Checked only as data arrives; an empty pattern still needs a reply
        received = bytearray()
        while True:
            chunk = await conn.read_async()
            data_log.debug("%s: Rcvd %r", conn.port_name, chunk)
            received.extend(chunk)
            if expected in received:
                return len(received)
