"""Device-facing collaborators: transport contracts and their bindings."""

from .transport import (
    DeviceLink,
    FlashLoader,
    IdentityAnnouncement,
    OutputObserver,
    ProgressCallback,
    Transport,
)
from .serial_transport import SerialTransport, list_serial_ports, touch_1200bps

__all__ = [
    # Contracts
    "DeviceLink",
    "FlashLoader",
    "IdentityAnnouncement",
    "OutputObserver",
    "ProgressCallback",
    "Transport",
    # Serial
    "SerialTransport",
    "list_serial_ports",
    "touch_1200bps",
]
