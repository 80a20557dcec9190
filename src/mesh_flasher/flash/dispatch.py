"""
Architecture dispatch.

ESP32-family targets are flashed over serial by the FlashOrchestrator.
nRF52 and RP2040/RP2350 targets are flashed by saving a UF2 image, which
the user (or copy_to_drive) places on the bootloader's mass-storage drive;
those targets never open a serial session.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from mesh_flasher.artifacts.locator import ArtifactLocator
from mesh_flasher.config import FlasherSettings
from mesh_flasher.errors import UnsupportedArchitecture
from mesh_flasher.flash.orchestrator import FlashOrchestrator
from mesh_flasher.flash.request import (
    FlashRequest,
    is_serial_architecture,
    is_uf2_architecture,
)
from mesh_flasher.flash.session import FlashSession
from mesh_flasher.flash.uf2_drive import (
    copy_to_drive,
    find_uf2_drives,
    is_uf2_drive,
    read_drive_info,
)
from mesh_flasher.protocol.esp_loader import EsptoolLoader
from mesh_flasher.protocol.serial_transport import SerialTransport
from mesh_flasher.protocol.transport import OutputObserver, ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class FlashOutcome:
    """What a dispatched flash produced."""
    method: str
    bytes_written: int = 0
    session: Optional[FlashSession] = None
    saved_path: Optional[Path] = None
    copied_to: Optional[Path] = None


def uf2_file_name(request: FlashRequest) -> str:
    """Name for the saved UF2 image; wildcard versions fall back to the upload's name."""
    if request.firmware is None and request.uploaded_file is not None:
        return f"{Path(request.uploaded_file).stem}.uf2"
    if request.firmware is None:
        return f"firmware-{request.target.platformio_target}.uf2"
    return request.uf2_name()


def serial_orchestrator(
    locator: ArtifactLocator,
    settings: FlasherSettings,
) -> FlashOrchestrator:
    """Orchestrator bound to pyserial and esptool."""
    return FlashOrchestrator(
        transport_factory=lambda port: SerialTransport(
            port, baudrate=settings.baud_rate, poll_interval=settings.stream_poll_s
        ),
        loader_factory=lambda transport: EsptoolLoader(
            transport, baudrate=settings.baud_rate, chunk_size=settings.write_chunk_size
        ),
        locator=locator,
        settings=settings,
    )


class FirmwareFlasher:
    """
    Entry point choosing the flashing path by target architecture.

    Example:
        flasher = FirmwareFlasher(ArtifactLocator(), settings)
        outcome = await flasher.flash(request, port="/dev/ttyUSB0")
    """

    def __init__(
        self,
        locator: ArtifactLocator,
        settings: Optional[FlasherSettings] = None,
        orchestrator: Optional[FlashOrchestrator] = None,
    ):
        self.locator = locator
        self.settings = settings or FlasherSettings()
        self.orchestrator = orchestrator or serial_orchestrator(locator, self.settings)

    async def flash(
        self,
        request: FlashRequest,
        port: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[Callable[[], None]] = None,
        monitor: Optional[OutputObserver] = None,
        stop_event: Optional[asyncio.Event] = None,
        uf2_drive: Optional[Path] = None,
        copy_to_uf2_drive: bool = False,
    ) -> FlashOutcome:
        """
        Flash ``request`` by the path its architecture requires.

        Args:
            request: Job to flash
            port: Serial port (serial targets only)
            on_progress: Progress callback (file_index, written, total)
            on_complete: Called once when the image is fully written/saved
            monitor: Device output observer after reset (serial targets only)
            stop_event: Ends output streaming (serial targets only)
            uf2_drive: Bootloader drive to copy a UF2 image onto
            copy_to_uf2_drive: Look for a mounted bootloader drive when none is given

        Raises:
            UnsupportedArchitecture: If no path exists for the architecture
            ValueError: If a serial target is flashed without a port
            FlasherError: Failures of the chosen path
        """
        architecture = request.target.architecture
        if is_uf2_architecture(architecture):
            return await self._flash_uf2(request, on_progress, on_complete, uf2_drive, copy_to_uf2_drive)
        if not is_serial_architecture(architecture):
            raise UnsupportedArchitecture(architecture)
        if not port:
            raise ValueError(f"A serial port is required to flash {architecture} targets")

        session = await self.orchestrator.run(
            request,
            port,
            on_progress=on_progress,
            on_complete=on_complete,
            monitor=monitor,
            stop_event=stop_event,
        )
        return FlashOutcome(method="serial", bytes_written=session.bytes_written, session=session)

    async def _flash_uf2(
        self,
        request: FlashRequest,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[Callable[[], None]],
        uf2_drive: Optional[Path],
        copy_to_uf2_drive: bool,
    ) -> FlashOutcome:
        data = await self.locator.resolve(request.firmware, request.uf2_name(), request.uploaded_file)

        download_dir = Path(self.settings.download_dir)
        destination = download_dir / uf2_file_name(request)
        await asyncio.to_thread(download_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(destination.write_bytes, data)
        logger.info(f"Saved {len(data)} bytes to {destination}")

        if on_progress is not None:
            on_progress(0, len(data), len(data))

        copied_to = None
        if uf2_drive is None and copy_to_uf2_drive:
            drives = await asyncio.to_thread(find_uf2_drives)
            if drives:
                uf2_drive = drives[0]
            else:
                logger.warning("No UF2 bootloader drive found; copy the image manually")
        if uf2_drive is not None:
            if is_uf2_drive(uf2_drive):
                info = await asyncio.to_thread(read_drive_info, uf2_drive)
                logger.debug(f"Bootloader drive {uf2_drive}: {info.strip()}")
            copied_to = await asyncio.to_thread(copy_to_drive, destination, uf2_drive)

        if on_complete is not None:
            on_complete()
        return FlashOutcome(
            method="uf2",
            bytes_written=len(data),
            saved_path=destination,
            copied_to=copied_to,
        )
