"""
Hardware auto-detection.

Opens a device link, starts its handshake and waits, under a deadline, for
the single identity announcement the device sends back. The announcement
is matched against the catalog by build target first, then by model id.
"""

import logging
from typing import Callable, Optional, Sequence

from mesh_flasher.catalog.types import DeviceDescriptor
from mesh_flasher.config import DEFAULT_DETECT_DEADLINE_MS
from mesh_flasher.errors import ConnectionTimeout, UnknownDeviceError
from mesh_flasher.flash.guard import ConnectionGuard
from mesh_flasher.protocol.transport import DeviceLink, IdentityAnnouncement

logger = logging.getLogger(__name__)

LinkFactory = Callable[[], DeviceLink]


def match_announcement(
    announcement: IdentityAnnouncement,
    targets: Sequence[DeviceDescriptor],
) -> Optional[DeviceDescriptor]:
    """Catalog entry for an announcement: build target first, then model id."""
    if announcement.platformio_target:
        for target in targets:
            if target.platformio_target == announcement.platformio_target:
                return target
    if announcement.hw_model is not None:
        for target in targets:
            if target.hw_model == announcement.hw_model:
                return target
    return None


class TargetAutoDetector:
    """
    Resolve the connected device to a catalog entry.

    Example:
        detector = TargetAutoDetector(lambda: MyLink("/dev/ttyACM0"), catalog)
        target = await detector.detect(deadline_ms=5000)
    """

    def __init__(
        self,
        link_factory: LinkFactory,
        targets: Sequence[DeviceDescriptor],
        deadline_ms: int = DEFAULT_DETECT_DEADLINE_MS,
    ):
        self.link_factory = link_factory
        self.targets = list(targets)
        self.deadline_ms = deadline_ms

    async def detect(
        self,
        deadline_ms: Optional[int] = None,
        preselected: Optional[DeviceDescriptor] = None,
    ) -> DeviceDescriptor:
        """
        Identify the connected device.

        Args:
            deadline_ms: Handshake deadline (default: the detector's)
            preselected: Target to keep if the device stays silent

        Returns:
            Matched catalog entry, or ``preselected`` after a timeout

        Raises:
            ConnectionTimeout: If the device stays silent and nothing is preselected
            UnknownDeviceError: If the announced identity is not in the catalog
            DeviceError: If the link fails
        """
        link = self.link_factory()
        guard = ConnectionGuard(self.deadline_ms)

        async def handshake() -> IdentityAnnouncement:
            await link.open()
            await link.configure()
            return await link.next_announcement()

        try:
            try:
                announcement = await guard.with_deadline(
                    handshake, deadline_ms, what="identity handshake"
                )
            except ConnectionTimeout:
                if preselected is not None:
                    logger.info(f"No identity announced, keeping {preselected.name}")
                    return preselected
                raise

            logger.debug(f"Announced identity: {announcement}")
            target = match_announcement(announcement, self.targets)
            if target is None:
                raise UnknownDeviceError(announcement.platformio_target, announcement.hw_model)

            logger.info(f"Detected {target.name} ({target.architecture})")
            if target.architecture.startswith("nrf"):
                await guard.with_deadline(link.enter_dfu_mode, deadline_ms, what="DFU request")
            return target
        finally:
            await guard.teardown(link.transport)

    async def enter_dfu_mode(self, deadline_ms: Optional[int] = None) -> None:
        """
        Switch the connected device into its DFU bootloader.

        Raises:
            ConnectionTimeout: If the device does not answer in time
            DeviceError: If the link fails
        """
        link = self.link_factory()
        guard = ConnectionGuard(self.deadline_ms)

        async def request_dfu() -> None:
            await link.open()
            await link.configure()
            await link.enter_dfu_mode()

        try:
            await guard.with_deadline(request_dfu, deadline_ms, what="DFU request")
            logger.info("DFU mode requested")
        finally:
            await guard.teardown(link.transport)
