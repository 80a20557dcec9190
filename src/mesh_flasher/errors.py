"""
Error taxonomy for firmware acquisition and flashing.

Every failure surfaced by the engine derives from FlasherError. The
``category`` attribute tells callers how to present the error:

- "user-actionable": the user can fix it by reconnecting the device
- "configuration": the chosen target/firmware combination cannot work
- "fatal": the flashing session is lost and must restart from idle
"""

from typing import List, Optional


class FlasherError(Exception):
    """Base exception for all flasher errors"""

    category = "fatal"


class ConnectionTimeout(FlasherError):
    """Device handshake did not complete before the deadline"""

    category = "user-actionable"

    def __init__(self, deadline_ms: int, what: str = "device handshake"):
        self.deadline_ms = deadline_ms
        self.what = what
        super().__init__(f"{what} timed out after {deadline_ms} ms")


class DeviceError(FlasherError):
    """Transport or protocol failure reported by the device layer"""

    category = "user-actionable"


class PortBusyError(DeviceError):
    """Another session already owns the physical port"""

    def __init__(self, port: str):
        self.port = port
        super().__init__(f"Port {port} is already in use by another flashing session")


class UnknownDeviceError(DeviceError):
    """Device announced an identity that is not in the catalog"""

    def __init__(self, platformio_target: str = "", hw_model: Optional[int] = None):
        self.platformio_target = platformio_target
        self.hw_model = hw_model
        super().__init__(
            f"Device identity not found in catalog "
            f"(target={platformio_target or '-'}, hwModel={hw_model})"
        )


class ArtifactNotFound(FlasherError):
    """No resolution path produced the requested firmware file"""

    category = "configuration"

    def __init__(self, name: str, reason: str = ""):
        self.name = name
        self.reason = reason
        message = f"Firmware artifact not found: {name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class AmbiguousArtifact(ArtifactNotFound):
    """More than one archive member satisfies the match rules"""

    def __init__(self, name: str, candidates: List[str]):
        self.candidates = list(candidates)
        super().__init__(name, "ambiguous match: " + ", ".join(self.candidates))


class UnsupportedArchitecture(FlasherError):
    """No flashing path exists for the target architecture"""

    category = "configuration"

    def __init__(self, architecture: str):
        self.architecture = architecture
        super().__init__(f"Unsupported architecture: {architecture or '<empty>'}")


class FlashWriteError(FlasherError):
    """Failure while writing placements to device flash"""

    category = "fatal"
