"""
UF2 bootloader drive discovery and copy.

nRF52 and RP2040/RP2350 bootloaders expose a small mass-storage drive that
contains an INFO_UF2.TXT marker file. Copying a .uf2 image onto it flashes
the chip and reboots it.
"""

import glob
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

UF2_MARKER = "INFO_UF2.TXT"

DEFAULT_MOUNT_PATTERNS = (
    "/media/*/*",
    "/run/media/*/*",
    "/mnt/*",
    "/Volumes/*",
)


def is_uf2_drive(path: Path) -> bool:
    return (Path(path) / UF2_MARKER).is_file()


def find_uf2_drives(candidates: Optional[Iterable[Path]] = None) -> List[Path]:
    """
    Mounted drives carrying the UF2 bootloader marker.

    Args:
        candidates: Directories to check (default: common mount points)
    """
    if candidates is None:
        candidates = [Path(p) for pattern in DEFAULT_MOUNT_PATTERNS for p in glob.glob(pattern)]
    drives = [Path(c) for c in candidates if is_uf2_drive(Path(c))]
    logger.debug(f"UF2 drives: {drives}")
    return drives


def read_drive_info(drive: Path) -> str:
    """Contents of the drive's INFO_UF2.TXT (bootloader and board id)."""
    return (Path(drive) / UF2_MARKER).read_text(encoding="utf-8", errors="replace")


def copy_to_drive(image: Path, drive: Path) -> Path:
    """
    Copy a UF2 image onto a bootloader drive and sync.

    Raises:
        FileNotFoundError: If ``drive`` is not a UF2 bootloader drive
    """
    drive = Path(drive)
    if not is_uf2_drive(drive):
        raise FileNotFoundError(f"{drive} is not a UF2 bootloader drive (no {UF2_MARKER})")
    destination = drive / Path(image).name
    shutil.copyfile(image, destination)
    if hasattr(os, "sync"):
        os.sync()
    logger.info(f"Copied {Path(image).name} to {drive}")
    return destination
