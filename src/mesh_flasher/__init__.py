"""
mesh-flasher - Firmware acquisition and flashing for mesh radio devices

Resolves firmware artifacts, computes partition layouts, and flashes
ESP32 targets over serial or nRF52/RP2040 targets via UF2 images.
"""

__version__ = "0.1.0"

from mesh_flasher.errors import FlasherError
from mesh_flasher.config import FlasherSettings
from mesh_flasher.artifacts import ArtifactLocator
from mesh_flasher.flash import FirmwareFlasher, FlashRequest

__all__ = [
    "ArtifactLocator",
    "FirmwareFlasher",
    "FlasherError",
    "FlasherSettings",
    "FlashRequest",
    "__version__",
]
