import dataclasses
import json
import logging
import os
import pathlib
from serial.tools import list_ports
from serial.tools import list_ports_common

from serial_prober import _exceptions

log = logging.getLogger("serial_prober.scanning")

SCAN_OVERRIDE_ENV = "SERIAL_PROBER_SCAN_OVERRIDE"

# macOS lists /dev/tty.usbXXX, which waits for DCD to be asserted
# (many USB dongles never assert it); /dev/cu.usbXXX is the same port
# without that wait.
_CALLIN_PREFIX, _CALLOUT_PREFIX = "/dev/tty.usb", "/dev/cu.usb"


@dataclasses.dataclass(frozen=True)
class SerialPort:
    """What we know about a potentially available serial port on the system"""

    name: str
    attr: dict[str, object]

    def __str__(self):
        return self.name


def normalize_port_name(name: str) -> str:
    """Maps a wait-for-carrier device path to its always-open twin"""

    if name.startswith(_CALLIN_PREFIX):
        return _CALLOUT_PREFIX + name[len(_CALLIN_PREFIX) :]
    return name


def scan_serial_ports() -> list[SerialPort]:
    """Returns a list of serial ports found on the current system"""

    if ov := os.getenv(SCAN_OVERRIDE_ENV):
        try:
            ov_data = json.loads(pathlib.Path(ov).read_text())
            if not isinstance(ov_data, dict) or not all(
                isinstance(attr, dict) for attr in ov_data.values()
            ):
                raise ValueError("Override data is not a dict of dicts")
        except (OSError, ValueError) as ex:
            msg = f"Can't read ${SCAN_OVERRIDE_ENV} {ov}"
            raise _exceptions.SerialScanException(msg) from ex

        out = [_override_port(p, a) for p, a in ov_data.items()]
        log.debug("$%s (%s): %d ports", SCAN_OVERRIDE_ENV, ov, len(out))
    else:
        try:
            ports = list_ports.comports()
        except OSError as ex:
            raise _exceptions.SerialScanException("Can't scan serial") from ex

        out = [_convert_port(p) for p in ports]

    log.debug("Found %d ports", len(out))
    return out


def _override_port(name: str, attr: dict) -> SerialPort:
    name = normalize_port_name(name)
    return SerialPort(name=name, attr=_normalize_attr(attr))


def _convert_port(p: list_ports_common.ListPortInfo) -> SerialPort:
    _NA = (None, "", "n/a")
    attr: dict[str, object] = {
        k.lower(): v for k, v in vars(p).items() if v not in _NA
    }
    attr = _normalize_attr({**attr, "device": p.device})
    if isinstance(p.vid, int):
        attr["vendor_id"] = f"{p.vid:04x}"
    if isinstance(p.pid, int):
        attr["product_id"] = f"{p.pid:04x}"
    return SerialPort(name=normalize_port_name(p.device), attr=attr)


def _normalize_attr(attr: dict) -> dict[str, object]:
    # pyserial's 'name' is the basename of 'device'; both must agree
    attr = dict(attr)
    if isinstance(device := attr.get("device"), str):
        attr["device"] = normalize_port_name(device)
    if isinstance(short := attr.get("name"), str) and "/" not in short:
        attr["name"] = os.path.basename(normalize_port_name("/dev/" + short))
    return attr
