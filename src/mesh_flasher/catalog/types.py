"""
Catalog types for hardware targets and firmware releases.

Provides the shared data definitions used by every other component:
- DeviceDescriptor: one hardware target from the device catalog
- FirmwareDescriptor: one firmware release/build and where to get its files
- PartitionScheme: named flash layouts
- FlashPlacement: one (data, address) pair of a flashing job

Descriptors are parsed from the JSON shapes published by the firmware API
and are immutable once loaded.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class PartitionScheme(Enum):
    """Flash partition layout variant."""
    DEFAULT = "default"
    EIGHT_MB = "8MB"
    SIXTEEN_MB = "16MB"


class SupportLevel:
    """Support-level ranks used by the catalog."""
    PRIMARY = 1
    SECONDARY = 2
    COMMUNITY = 3


# ============================================================================
# DEVICES
# ============================================================================

@dataclass(frozen=True)
class DeviceDescriptor:
    """Identity and capabilities of a hardware target."""
    hw_model: int
    hw_model_slug: str
    platformio_target: str
    architecture: str
    actively_supported: bool = True
    tags: Tuple[str, ...] = ()
    support_level: int = SupportLevel.COMMUNITY
    images: Tuple[str, ...] = ()
    has_mui: bool = False
    display_name: str = ""

    @property
    def name(self) -> str:
        """Best human-readable name."""
        return self.display_name or self.hw_model_slug or self.platformio_target

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceDescriptor":
        """
        Build a descriptor from the catalog JSON shape.

        Missing optional keys get catalog defaults; unknown keys are ignored.

        Raises:
            ValueError: If hwModel or architecture is missing
        """
        if "hwModel" not in data:
            raise ValueError(f"Device entry without hwModel: {data!r}")
        if not data.get("architecture"):
            raise ValueError(f"Device entry without architecture: {data!r}")

        support_level = data.get("supportLevel")
        return cls(
            hw_model=int(data["hwModel"]),
            hw_model_slug=data.get("hwModelSlug") or "",
            platformio_target=data.get("platformioTarget") or "",
            architecture=data["architecture"],
            actively_supported=bool(data.get("activelySupported", False)),
            tags=tuple(data.get("tags") or ()),
            support_level=SupportLevel.COMMUNITY if support_level is None else int(support_level),
            images=tuple(data.get("images") or ()),
            has_mui=data.get("hasMui") is True,
            display_name=data.get("displayName") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the catalog JSON shape."""
        return {
            "hwModel": self.hw_model,
            "hwModelSlug": self.hw_model_slug,
            "platformioTarget": self.platformio_target,
            "architecture": self.architecture,
            "activelySupported": self.actively_supported,
            "tags": list(self.tags),
            "supportLevel": self.support_level,
            "images": list(self.images),
            "hasMui": self.has_mui,
            "displayName": self.display_name,
        }


# ============================================================================
# FIRMWARE
# ============================================================================

@dataclass(frozen=True)
class FirmwareDescriptor:
    """
    One firmware release/build.

    bin_urls is keyed by role (update, factory, ota, littlefs), uf2_urls by
    role (update, full). At least one source must be present for any
    artifact to resolve.
    """
    id: str
    bin_urls: Dict[str, str] = field(default_factory=dict)
    uf2_urls: Dict[str, str] = field(default_factory=dict)
    zip_url: Optional[str] = None
    title: str = ""
    page_url: str = ""
    created_at: str = ""

    @property
    def version(self) -> str:
        """Version string without the leading 'v'."""
        return self.id.replace("v", "", 1) if self.id.startswith("v") else self.id

    @property
    def has_sources(self) -> bool:
        """True if at least one download source is present."""
        return bool(self.bin_urls) or bool(self.uf2_urls) or bool(self.zip_url)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirmwareDescriptor":
        """
        Build a descriptor from the firmware JSON shape.

        Null URL entries are dropped so role lookups only see usable URLs.

        Raises:
            ValueError: If the id is missing
        """
        if not data.get("id"):
            raise ValueError(f"Firmware entry without id: {data!r}")
        return cls(
            id=str(data["id"]),
            bin_urls={k: v for k, v in (data.get("bin_urls") or {}).items() if v},
            uf2_urls={k: v for k, v in (data.get("uf2_urls") or {}).items() if v},
            zip_url=data.get("zip_url") or None,
            title=data.get("title") or "",
            page_url=data.get("page_url") or "",
            created_at=data.get("created_at") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the firmware JSON shape."""
        return {
            "id": self.id,
            "title": self.title,
            "page_url": self.page_url,
            "created_at": self.created_at,
            "bin_urls": dict(self.bin_urls),
            "uf2_urls": dict(self.uf2_urls),
            "zip_url": self.zip_url,
        }


def firmware_version_pattern(firmware: Optional[FirmwareDescriptor]) -> str:
    """
    Version fragment used when building artifact names.

    Without a selected release (uploaded archive) the wildcard '.+' lets the
    name match any version inside the archive.
    """
    if firmware is None or not firmware.id:
        return ".+"
    return firmware.version


# ============================================================================
# FLASH JOBS
# ============================================================================

@dataclass(frozen=True)
class FlashPlacement:
    """Payload and flash address for one file of a flashing job."""
    data: bytes
    address: int

    def __repr__(self) -> str:
        return f"FlashPlacement(address=0x{self.address:06X}, size={len(self.data)})"

    def to_dict(self) -> Dict[str, Any]:
        """Format consumed by the flashing library."""
        return {"data": self.data, "address": self.address}


# ============================================================================
# LOADING
# ============================================================================

def _read_json(source: Union[str, Path]) -> Any:
    with open(source, "r", encoding="utf-8") as fh:
        return json.load(fh)


def load_device_catalog(source: Union[str, Path]) -> List[DeviceDescriptor]:
    """
    Load a hardware list JSON file.

    Entries that fail to parse are skipped.
    """
    targets = []
    for entry in _read_json(source):
        try:
            targets.append(DeviceDescriptor.from_dict(entry))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping catalog entry: {e}")
    return targets


def load_firmware(source: Union[str, Path]) -> FirmwareDescriptor:
    """Load a single firmware descriptor JSON file."""
    return FirmwareDescriptor.from_dict(_read_json(source))


def load_firmware_mapping(source: Union[str, Path]) -> Dict[str, List[FirmwareDescriptor]]:
    """
    Load a device-to-firmware mapping JSON file.

    The file maps a hardware slug (or build target) to the list of firmware
    releases built specifically for that device.
    """
    raw = _read_json(source)
    return {
        slug: [FirmwareDescriptor.from_dict(item) for item in releases]
        for slug, releases in raw.items()
    }
