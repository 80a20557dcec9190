"""
Flash partition layout.

Maps (partition scheme, display capability, firmware version) to the
offsets of the OTA loader and filesystem partitions, and turns resolved
artifacts into the ordered placements of a flashing job.

Offsets (hex):

    scheme      condition                       ota        filesystem
    default     -                               0x260000   0x300000
    8MB         display + new partition table   0x5D0000   0x670000
    8MB         otherwise                       0x340000   0x670000
    16MB        -                               0x650000   0xC90000
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from mesh_flasher.catalog.types import FlashPlacement, PartitionScheme

if TYPE_CHECKING:
    from mesh_flasher.flash.request import FlashRequest

APP_OFFSET = 0x10000
FACTORY_OFFSET = 0x0

# First release shipping the 8MB table with the larger app partition
NEW_8MB_TABLE_VERSION = (2, 7, 0)

VersionPredicate = Callable[[str], bool]


@dataclass(frozen=True)
class PartitionLayout:
    """OTA and filesystem partition offsets."""
    ota_offset: int
    filesystem_offset: int

    def __repr__(self) -> str:
        return (
            f"PartitionLayout(ota=0x{self.ota_offset:06X}, "
            f"filesystem=0x{self.filesystem_offset:06X})"
        )


DEFAULT_LAYOUT = PartitionLayout(0x260000, 0x300000)
EIGHT_MB_LEGACY_LAYOUT = PartitionLayout(0x340000, 0x670000)
EIGHT_MB_DISPLAY_LAYOUT = PartitionLayout(0x5D0000, 0x670000)
SIXTEEN_MB_LAYOUT = PartitionLayout(0x650000, 0xC90000)


def parse_version(version: str) -> Optional[Tuple[int, int, int]]:
    """Leading major.minor.patch of a version string, or None."""
    match = re.match(r"v?(\d+)\.(\d+)\.(\d+)", version or "")
    if not match:
        return None
    return tuple(int(part) for part in match.groups())


def supports_new_8mb_partition_table(version: str) -> bool:
    """True for releases at or after the 8MB table change."""
    parsed = parse_version(version)
    return parsed is not None and parsed >= NEW_8MB_TABLE_VERSION


def resolve_partition_layout(
    scheme: PartitionScheme,
    has_display: bool,
    firmware_version: str,
    supports_new_table: VersionPredicate = supports_new_8mb_partition_table,
) -> PartitionLayout:
    """
    Offsets for one flashing job. Pure.

    Args:
        scheme: Partition scheme chosen for the target
        has_display: Target has the display UI build (only matters for 8MB)
        firmware_version: Version string of the firmware being flashed
        supports_new_table: Version predicate for the new 8MB table
    """
    if scheme is PartitionScheme.SIXTEEN_MB:
        return SIXTEEN_MB_LAYOUT
    if scheme is PartitionScheme.EIGHT_MB:
        if has_display and supports_new_table(firmware_version):
            return EIGHT_MB_DISPLAY_LAYOUT
        return EIGHT_MB_LEGACY_LAYOUT
    return DEFAULT_LAYOUT


def build_placements(
    request: "FlashRequest",
    artifacts: Dict[str, bytes],
    layout: PartitionLayout,
) -> List[FlashPlacement]:
    """
    Ordered placements for resolved artifacts.

    Args:
        request: Job whose artifact_names() key ``artifacts``
        artifacts: Resolved bytes keyed by logical name
        layout: Partition offsets

    Raises:
        KeyError: If an artifact of the job was not resolved
    """
    names = request.artifact_names()
    if not request.clean_install:
        return [FlashPlacement(artifacts[names[0]], APP_OFFSET)]

    factory, ota, filesystem = names
    return [
        FlashPlacement(artifacts[factory], FACTORY_OFFSET),
        FlashPlacement(artifacts[ota], layout.ota_offset),
        FlashPlacement(artifacts[filesystem], layout.filesystem_offset),
    ]
