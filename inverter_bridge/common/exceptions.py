"""
Custom Exception Classes for the Inverter Bridge

Hierarchical exception structure for error handling across services.
The `recoverable` flag separates transient failures (retried on the next
cycle) from fatal ones (escalated to shutdown).
"""


class BridgeError(Exception):
    """Base exception for all bridge errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(BridgeError):
    """Configuration-related errors"""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(f"Config Error: {message}", recoverable=False)


class DeviceError(BridgeError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        code: int | None = None,
    ):
        self.code = code
        super().__init__(f"Device Error: {message}", recoverable)

    @property
    def severity(self) -> str:
        return "transient" if self.recoverable else "fatal"


class CommunicationError(DeviceError):
    """Modbus/network communication errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(message, recoverable=True)


class RegisterError(DeviceError):
    """Register read or decode failed"""

    # Modbus exception codes that mean the register map itself is wrong
    FATAL_EXCEPTION_CODES = (1, 2)

    def __init__(
        self,
        message: str,
        register: str | None = None,
        address: int | None = None,
        code: int | None = None,
    ):
        self.register = register
        self.address = address
        recoverable = code not in self.FATAL_EXCEPTION_CODES
        super().__init__(message, recoverable=recoverable, code=code)


class PublishError(BridgeError):
    """Transport rejected a publish"""

    def __init__(self, message: str, channel: str | None = None, rc: int | None = None):
        self.channel = channel
        self.rc = rc
        super().__init__(f"Publish Error: {message}", recoverable=True)


class CallbackError(BridgeError):
    """A registered snapshot handler raised"""

    def __init__(self, category: str, cause: BaseException):
        self.category = category
        self.cause = cause
        super().__init__(
            f"Callback for '{category}' failed: {cause}",
            recoverable=False,
        )
