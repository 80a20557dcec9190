"""
Device and firmware catalog types and target selection.
"""

from .types import (
    DeviceDescriptor,
    FirmwareDescriptor,
    FlashPlacement,
    PartitionScheme,
    SupportLevel,
    firmware_version_pattern,
    load_device_catalog,
    load_firmware,
    load_firmware_mapping,
)
from .selector import (
    TargetSelector,
    enter_dfu_version,
    filter_targets,
    is_nrf52,
    select_default_firmware,
    sort_targets,
    supported_targets,
    uses_softdevice_7_3,
)

__all__ = [
    # Types
    "DeviceDescriptor",
    "FirmwareDescriptor",
    "FlashPlacement",
    "PartitionScheme",
    "SupportLevel",
    "firmware_version_pattern",
    # Loading
    "load_device_catalog",
    "load_firmware",
    "load_firmware_mapping",
    # Selection
    "TargetSelector",
    "enter_dfu_version",
    "filter_targets",
    "is_nrf52",
    "select_default_firmware",
    "sort_targets",
    "supported_targets",
    "uses_softdevice_7_3",
]
