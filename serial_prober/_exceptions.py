"""Exception hierarchy for serial_prober"""


class SerialException(OSError):
    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class SerialIoException(SerialException):
    pass


class SerialIoClosed(SerialIoException):
    pass


class SerialOpenException(SerialException):
    pass


class SerialOpenBusy(SerialOpenException):
    """One open attempt found the port locked by someone else"""


class SerialLockTimeout(SerialOpenException):
    """The port stayed locked through every open attempt"""


class SerialOpenDeviceError(SerialOpenException):
    """The host refused the open for a reason other than locking"""


class SerialProbeTimeout(SerialException):
    """The device never sent the expected probe response"""


class SerialScanException(SerialException):
    pass


class ProbeSpecInvalid(ValueError):
    pass
