"""
Flash job description.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from mesh_flasher.catalog.types import (
    DeviceDescriptor,
    FirmwareDescriptor,
    PartitionScheme,
    firmware_version_pattern,
)

UF2_ARCHITECTURE_PREFIXES = ("nrf52", "rp2040", "rp2350")
SERIAL_ARCHITECTURE_PREFIXES = ("esp32",)


def ota_loader_name(architecture: str) -> str:
    """BLE OTA loader image for an ESP32 family member."""
    if architecture == "esp32-s3":
        return "bleota-s3.bin"
    if architecture == "esp32-c3":
        return "bleota-c3.bin"
    return "bleota.bin"


def is_uf2_architecture(architecture: str) -> bool:
    return architecture.startswith(UF2_ARCHITECTURE_PREFIXES)


def is_serial_architecture(architecture: str) -> bool:
    return architecture.startswith(SERIAL_ARCHITECTURE_PREFIXES)


@dataclass
class FlashRequest:
    """
    One flashing job.

    Attributes:
        target: Hardware target being flashed
        firmware: Selected release (None when only a file is uploaded)
        uploaded_file: User-supplied archive or raw image
        clean_install: Erase and write factory, OTA loader and filesystem
        scheme: Partition scheme for clean installs
    """
    target: DeviceDescriptor
    firmware: Optional[FirmwareDescriptor] = None
    uploaded_file: Optional[Path] = None
    clean_install: bool = False
    scheme: PartitionScheme = PartitionScheme.DEFAULT

    @property
    def version(self) -> str:
        return firmware_version_pattern(self.firmware)

    @property
    def is_uf2(self) -> bool:
        return is_uf2_architecture(self.target.architecture)

    def uf2_name(self) -> str:
        return f"firmware-{self.target.platformio_target}-{self.version}.uf2"

    def artifact_names(self) -> List[str]:
        """Logical file names for this job, in placement order."""
        pio = self.target.platformio_target
        if self.is_uf2:
            return [self.uf2_name()]
        if not self.clean_install:
            return [f"firmware-{pio}-{self.version}-update.bin"]
        return [
            f"firmware-{pio}-{self.version}.factory.bin",
            ota_loader_name(self.target.architecture),
            f"littlefs-{pio}-{self.version}.bin",
        ]
