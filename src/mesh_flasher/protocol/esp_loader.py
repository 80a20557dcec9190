"""
Flash loader on esptool's public Python API.

Binds the FlashLoader contract to an ESP32-family ROM bootloader reached
through an already open SerialTransport. esptool's commands are blocking,
so each one runs in a worker thread.

Placements are written in chunks so progress can be reported as
(file_index, written, total) while a large image is being flashed.
"""

import asyncio
import logging
from typing import Optional, Sequence

from esptool.cmds import detect_chip, erase_flash, run_stub, write_flash
from esptool.util import FatalError

from mesh_flasher.catalog.types import FlashPlacement
from mesh_flasher.errors import DeviceError, FlashWriteError
from mesh_flasher.protocol.serial_transport import SerialTransport
from mesh_flasher.protocol.transport import ProgressCallback

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 0x10000


class EsptoolLoader:
    """
    ESP32 bootloader session.

    Example:
        loader = EsptoolLoader(transport, baudrate=115200)
        chip = await loader.connect()
        await loader.write_flash(placements, erase_all=False, on_progress=print)
    """

    def __init__(
        self,
        transport: SerialTransport,
        baudrate: int = 115200,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.transport = transport
        self.baudrate = baudrate
        self.chunk_size = chunk_size
        self.esp = None
        self.chip: Optional[str] = None

    def _connect_blocking(self):
        esp = detect_chip(self.transport.serial_port, baud=self.baudrate)
        return run_stub(esp)

    async def connect(self) -> str:
        """
        Sync with the ROM bootloader and upload the flasher stub.

        Returns:
            Chip name reported by esptool (e.g., "ESP32-S3")

        Raises:
            DeviceError: If no bootloader answers
        """
        try:
            self.esp = await asyncio.to_thread(self._connect_blocking)
        except FatalError as e:
            raise DeviceError(f"Bootloader handshake failed on {self.transport.port}: {e}")
        self.chip = self.esp.CHIP_NAME
        logger.info(f"Connected to {self.chip} on {self.transport.port}")
        return self.chip

    async def write_flash(
        self,
        placements: Sequence[FlashPlacement],
        erase_all: bool,
        on_progress: ProgressCallback,
    ) -> None:
        """
        Write placements in order.

        Raises:
            FlashWriteError: If the loader is not connected or esptool fails
        """
        if self.esp is None:
            raise FlashWriteError("Flash loader not connected")

        try:
            if erase_all:
                logger.info("Erasing entire flash")
                await asyncio.to_thread(erase_flash, self.esp)

            for index, placement in enumerate(placements):
                total = len(placement.data)
                logger.info(f"Writing file {index + 1}/{len(placements)}: {placement!r}")
                on_progress(index, 0, total)
                for offset in range(0, total, self.chunk_size):
                    chunk = placement.data[offset:offset + self.chunk_size]
                    await asyncio.to_thread(
                        write_flash,
                        self.esp,
                        [(placement.address + offset, chunk)],
                        compress=True,
                        no_progress=True,
                    )
                    on_progress(index, offset + len(chunk), total)
        except FatalError as e:
            raise FlashWriteError(f"Flash write failed: {e}")
