"""Unit tests for serial_prober._scanning."""

import json
import pytest
from serial.tools import list_ports
from serial.tools import list_ports_common

import serial_prober
from serial_prober import SerialPort


def test_scan_ports(mocker):
    mocker.patch("serial.tools.list_ports.comports")

    bare_port = list_ports_common.ListPortInfo("/dev/zz")

    full_port = list_ports_common.ListPortInfo("/dev/full")
    full_port.description = "Description"
    full_port.hwid = "HwId"
    full_port.vid = 0x0403
    full_port.pid = 0x6001
    full_port.serial_number = "Serial"
    full_port.location = "Location"
    full_port.manufacturer = "Manufacturer"
    full_port.product = "Product"
    full_port.interface = "Interface"

    list_ports.comports.return_value = [bare_port, full_port]

    assert serial_prober.scan_serial_ports() == [
        SerialPort(name="/dev/zz", attr={"device": "/dev/zz", "name": "zz"}),
        SerialPort(
            name="/dev/full",
            attr={
                "device": "/dev/full",
                "name": "full",
                "description": "Description",
                "hwid": "HwId",
                "vid": 0x0403,
                "pid": 0x6001,
                "vendor_id": "0403",
                "product_id": "6001",
                "serial_number": "Serial",
                "manufacturer": "Manufacturer",
                "product": "Product",
                "interface": "Interface",
                "location": "Location",
            },
        ),
    ]


def test_scan_ports_keeps_host_order(mocker):
    mocker.patch("serial.tools.list_ports.comports")
    list_ports.comports.return_value = [
        list_ports_common.ListPortInfo(p)
        for p in ("/dev/ttyUSB1", "/dev/ttyACM0", "/dev/ttyUSB10")
    ]
    names = [p.name for p in serial_prober.scan_serial_ports()]
    assert names == ["/dev/ttyUSB1", "/dev/ttyACM0", "/dev/ttyUSB10"]


def test_scan_ports_normalizes_callin_devices(mocker):
    mocker.patch("serial.tools.list_ports.comports")
    list_ports.comports.return_value = [
        list_ports_common.ListPortInfo("/dev/tty.usbserial-A10K"),
        list_ports_common.ListPortInfo("/dev/tty.Bluetooth-Incoming-Port"),
    ]

    found = {p.name: p for p in serial_prober.scan_serial_ports()}
    assert set(found) == {
        "/dev/cu.usbserial-A10K",
        "/dev/tty.Bluetooth-Incoming-Port",
    }
    usb = found["/dev/cu.usbserial-A10K"]
    assert usb.attr["device"] == "/dev/cu.usbserial-A10K"
    assert usb.attr["name"] == "cu.usbserial-A10K"

    other = found["/dev/tty.Bluetooth-Incoming-Port"]
    assert other.attr["name"] == "tty.Bluetooth-Incoming-Port"



def test_scan_ports_error(mocker):
    mocker.patch("serial.tools.list_ports.comports", side_effect=OSError())
    with pytest.raises(serial_prober.SerialScanException):
        serial_prober.scan_serial_ports()


@pytest.mark.parametrize(
    "name,expected",
    [
        ("/dev/tty.usbABC", "/dev/cu.usbABC"),
        ("/dev/tty.usbmodem1421", "/dev/cu.usbmodem1421"),
        ("/dev/cu.usbABC", "/dev/cu.usbABC"),
        ("/dev/ttyUSB0", "/dev/ttyUSB0"),
        ("/dev/tty.Bluetooth", "/dev/tty.Bluetooth"),
        ("COM3", "COM3"),
    ],
)
def test_normalize_port_name(name, expected):
    assert serial_prober.normalize_port_name(name) == expected


def test_scan_ports_with_override(monkeypatch, tmp_path):
    override_path = tmp_path / "scan_override.json"
    monkeypatch.setenv("SERIAL_PROBER_SCAN_OVERRIDE", str(override_path))
    with pytest.raises(serial_prober.SerialScanException):
        serial_prober.scan_serial_ports()  # fails: file does not exist

    override_path.write_text("bad json")
    with pytest.raises(serial_prober.SerialScanException):
        serial_prober.scan_serial_ports()  # fails: format is invalid

    override_path.write_text(json.dumps({"bad": "entry"}))
    with pytest.raises(serial_prober.SerialScanException):
        serial_prober.scan_serial_ports()  # fails: structure is invalid

    override = {
        "port2": {},
        "port1": {"aname": "avalue", "vid": 1027},
        "/dev/tty.usbX": {"device": "/dev/tty.usbX", "name": "tty.usbX"},
    }
    override_path.write_text(json.dumps(override))

    assert serial_prober.scan_serial_ports() == [
        SerialPort(name="port2", attr={}),
        SerialPort(name="port1", attr={"aname": "avalue", "vid": 1027}),
        SerialPort(
            name="/dev/cu.usbX",
            attr={"device": "/dev/cu.usbX", "name": "cu.usbX"},
        ),
    ]
