"""
Finds the serial port a particular device is attached to, by filtering
port metadata, opening candidates exclusively, and probing each one.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from serial_prober._connection import (
    SerialConnection,
    SerialHandle,
    SerialOptions,
)

from serial_prober._exceptions import (
    ProbeSpecInvalid,
    SerialException,
    SerialIoClosed,
    SerialIoException,
    SerialLockTimeout,
    SerialOpenBusy,
    SerialOpenDeviceError,
    SerialOpenException,
    SerialProbeTimeout,
    SerialScanException,
)

from serial_prober._filter import PortFilter
from serial_prober._opening import LockRetryOpener
from serial_prober._probing import ResponseProber
from serial_prober._prober import ProbeResult, SerialProber, set_debug
from serial_prober._scanning import (
    SerialPort,
    normalize_port_name,
    scan_serial_ports,
)
from serial_prober._spec import ProbeOptions, ProbeSpec

__all__ = [n for n in dir() if not n.startswith("_")]
