"""Flash orchestration: layout, sessions, deadlines, dispatch, detection."""

from .layout import (
    APP_OFFSET,
    PartitionLayout,
    build_placements,
    resolve_partition_layout,
    supports_new_8mb_partition_table,
)
from .request import FlashRequest, ota_loader_name
from .session import FlashSession, FlashState, PortRegistry, default_port_registry
from .guard import ConnectionGuard
from .orchestrator import FlashOrchestrator, prepare_placements
from .detector import TargetAutoDetector, match_announcement
from .dispatch import FirmwareFlasher, FlashOutcome

__all__ = [
    # Layout
    "APP_OFFSET",
    "PartitionLayout",
    "build_placements",
    "resolve_partition_layout",
    "supports_new_8mb_partition_table",
    # Jobs and sessions
    "FlashRequest",
    "ota_loader_name",
    "FlashSession",
    "FlashState",
    "PortRegistry",
    "default_port_registry",
    # Engine
    "ConnectionGuard",
    "FlashOrchestrator",
    "prepare_placements",
    "TargetAutoDetector",
    "match_announcement",
    "FirmwareFlasher",
    "FlashOutcome",
]
