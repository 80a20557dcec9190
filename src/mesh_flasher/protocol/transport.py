"""
Collaborator contracts for the flashing engine.

The engine never talks to hardware directly. It drives three collaborators:

- Transport: a byte stream over one physical port (serial)
- FlashLoader: the bootloader/flash algorithm bound to an open transport
- DeviceLink: the device's own protocol, used only for identity detection

Concrete bindings live beside this module (SerialTransport, EsptoolLoader).
Tests substitute fakes.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

from mesh_flasher.catalog.types import FlashPlacement

# (file_index, written, total)
ProgressCallback = Callable[[int, int, int], None]
OutputObserver = Callable[[str], None]
DisconnectCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class IdentityAnnouncement:
    """Hardware identity reported by a device after the handshake."""
    platformio_target: str = ""
    hw_model: Optional[int] = None


@runtime_checkable
class Transport(Protocol):
    """Exclusive byte stream over one port."""

    port: str
    on_disconnect: Optional[DisconnectCallback]

    async def open(self) -> None: ...

    async def read(self, size: int = 1) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def set_rts(self, level: bool) -> None: ...

    def start_pipe(self, observer: OutputObserver) -> None: ...

    async def cancel_inbound(self) -> None: ...

    async def close_outbound(self) -> None: ...

    async def drain_secondary(self) -> None: ...

    async def release(self) -> None: ...


@runtime_checkable
class FlashLoader(Protocol):
    """Bootloader session over an open transport."""

    async def connect(self) -> str:
        """Synchronize with the bootloader and return the chip name."""
        ...

    async def write_flash(
        self,
        placements: Sequence[FlashPlacement],
        erase_all: bool,
        on_progress: ProgressCallback,
    ) -> None:
        """Write placements in order, reporting (file_index, written, total)."""
        ...


@runtime_checkable
class DeviceLink(Protocol):
    """Device protocol connection used for identity detection."""

    transport: Transport

    async def open(self) -> None: ...

    async def configure(self) -> None:
        """Start the handshake; the device answers with one identity announcement."""
        ...

    async def next_announcement(self) -> IdentityAnnouncement:
        """Next announcement from the single-consumer channel."""
        ...

    async def enter_dfu_mode(self) -> None: ...
