"""
Target selection over the device catalog.

Pure filtering and ordering of DeviceDescriptor lists for presentation,
plus the small per-target facts the flashing flow needs (nRF detection,
DFU requirements, default firmware choice).
"""

from typing import Dict, List, Optional, Sequence

from .types import DeviceDescriptor, FirmwareDescriptor, SupportLevel

# Devices shipping SoftDevice 7.3 need a different bootloader update path
SOFTDEVICE_7_3_SLUGS = (
    "WIO_WM1110",
    "TRACKER_T1000_E",
    "XIAO_NRF52_KIT",
    "SEEED_SOLAR_NODE",
    "SEEED_WIO_TRACKER_L1",
    "SEEED_WIO_TRACKER_L1_EINK",
)

ALL_TAGS = "all"


def _level_key(target: DeviceDescriptor):
    return (target.hw_model, len(target.images))


def supported_targets(
    targets: Sequence[DeviceDescriptor],
    vendor_tag: str = "",
) -> List[DeviceDescriptor]:
    """
    Keep actively supported targets, optionally restricted to a vendor tag.
    """
    return [
        t for t in targets
        if t.actively_supported and (not vendor_tag or vendor_tag in t.tags)
    ]


def filter_targets(
    targets: Sequence[DeviceDescriptor],
    tag: Optional[str] = None,
) -> List[DeviceDescriptor]:
    """Keep targets carrying ``tag`` or whose architecture equals it."""
    if not tag:
        return list(targets)
    return [t for t in targets if tag in t.tags or t.architecture == tag]


def sort_targets(targets: Sequence[DeviceDescriptor]) -> List[DeviceDescriptor]:
    """
    Order targets for display.

    Primary targets first, then secondary, both by model id and image
    count; community targets last by model id. Targets with any other
    support level are left out.
    """
    primary = sorted(
        (t for t in targets if t.support_level == SupportLevel.PRIMARY), key=_level_key
    )
    secondary = sorted(
        (t for t in targets if t.support_level == SupportLevel.SECONDARY), key=_level_key
    )
    community = sorted(
        (t for t in targets if t.support_level == SupportLevel.COMMUNITY),
        key=lambda t: t.hw_model,
    )
    return primary + secondary + community


def _unique(values) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def is_nrf52(target: Optional[DeviceDescriptor]) -> bool:
    return bool(target) and target.architecture.startswith("nrf52")


def uses_softdevice_7_3(target: Optional[DeviceDescriptor]) -> bool:
    return bool(target) and target.hw_model_slug in SOFTDEVICE_7_3_SLUGS


def enter_dfu_version(target: Optional[DeviceDescriptor]) -> str:
    """Minimum firmware version able to switch into DFU mode on command."""
    return "2.2.17" if is_nrf52(target) else "2.2.18"


class TargetSelector:
    """
    Catalog view with an optional tag filter.

    Example:
        selector = TargetSelector(load_device_catalog("hardware-list.json"))
        selector.select_tag("esp32")
        for target in selector.sorted_targets:
            print(target.name)
    """

    def __init__(self, targets: Sequence[DeviceDescriptor], vendor_tag: str = ""):
        self.targets = supported_targets(targets, vendor_tag)
        self.tag: Optional[str] = None

    def select_tag(self, tag: str) -> Optional[str]:
        """
        Toggle the tag filter.

        "all" clears it; selecting the active tag again clears it too.
        """
        if tag == ALL_TAGS or tag == self.tag:
            self.tag = None
        else:
            self.tag = tag
        return self.tag

    @property
    def filtered_targets(self) -> List[DeviceDescriptor]:
        return filter_targets(self.targets, self.tag)

    @property
    def sorted_targets(self) -> List[DeviceDescriptor]:
        return sort_targets(self.filtered_targets)

    @property
    def all_tags(self) -> List[str]:
        return _unique(tag for t in self.targets for tag in t.tags)

    @property
    def all_architectures(self) -> List[str]:
        return _unique(t.architecture for t in self.targets)

    def find(self, name: str) -> Optional[DeviceDescriptor]:
        """Look up a target by slug, build target or model id."""
        for target in self.targets:
            if name in (target.hw_model_slug, target.platformio_target, str(target.hw_model)):
                return target
        return None


def select_default_firmware(
    target: DeviceDescriptor,
    device_firmware: Dict[str, List[FirmwareDescriptor]],
    stable: Sequence[FirmwareDescriptor] = (),
) -> Optional[FirmwareDescriptor]:
    """
    Pick the firmware preselected for a newly chosen target.

    Device-specific builds (keyed by slug, falling back to build target)
    win over the newest stable release.
    """
    key = target.hw_model_slug or target.platformio_target
    specific = device_firmware.get(key) or device_firmware.get(target.platformio_target) or []
    if specific:
        return specific[0]
    if stable:
        return stable[0]
    return None
