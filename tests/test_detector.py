"""Tests for hardware auto-detection."""

import asyncio

import pytest

from mesh_flasher.errors import ConnectionTimeout, UnknownDeviceError
from mesh_flasher.flash.detector import TargetAutoDetector, match_announcement
from mesh_flasher.protocol.transport import IdentityAnnouncement

from conftest import FakeDeviceLink


class TestMatchAnnouncement:
    def test_build_target_wins_over_model_id(self, catalog, tbeam):
        """The announced build target is matched before the model id."""
        # hw_model 12 belongs to tbeam-s3-core, but the build target is checked first
        announcement = IdentityAnnouncement(platformio_target="tbeam", hw_model=12)
        assert match_announcement(announcement, catalog) is tbeam

    def test_model_id_fallback(self, catalog, rak4631):
        """An unknown build target falls back to the model id."""
        announcement = IdentityAnnouncement(platformio_target="unreleased-board", hw_model=9)
        assert match_announcement(announcement, catalog) is rak4631

    def test_no_match(self, catalog):
        """Nothing matches an unknown device."""
        assert match_announcement(IdentityAnnouncement("nope", 999), catalog) is None


class Links:
    """Link factory keeping each link it hands out."""

    def __init__(self, announcement=None):
        self.announcement = announcement
        self.created = []

    def __call__(self):
        link = FakeDeviceLink(self.announcement)
        self.created.append(link)
        return link

    @property
    def link(self):
        return self.created[0]


class TestDetect:
    def test_detects_esp32(self, catalog, tbeam_s3):
        """An ESP32 device is identified and the link configured."""
        links = Links(IdentityAnnouncement("tbeam-s3-core", 12))
        target = asyncio.run(TargetAutoDetector(links, catalog, 200).detect())

        assert target is tbeam_s3
        assert links.link.configured
        assert not links.link.dfu_requested
        assert links.link.transport.release_count == 1

    def test_nrf_target_enters_dfu(self, catalog, rak4631):
        """Detected nRF52 devices are sent into DFU mode."""
        links = Links(IdentityAnnouncement("rak4631", 9))
        target = asyncio.run(TargetAutoDetector(links, catalog, 200).detect())

        assert target is rak4631
        assert links.link.dfu_requested

    def test_unknown_device(self, catalog):
        """An announcement matching no target raises UnknownDeviceError."""
        links = Links(IdentityAnnouncement("mystery", 999))
        with pytest.raises(UnknownDeviceError) as ei:
            asyncio.run(TargetAutoDetector(links, catalog, 200).detect())
        assert ei.value.hw_model == 999
        assert links.link.transport.release_count == 1

    def test_silent_device_times_out(self, catalog):
        """A silent device times out after the deadline."""
        links = Links(None)
        with pytest.raises(ConnectionTimeout):
            asyncio.run(TargetAutoDetector(links, catalog, 5000).detect(deadline_ms=20))
        assert links.link.transport.release_count == 1

    def test_silent_device_keeps_preselected(self, catalog, tbeam):
        """A silent device keeps the user's selected target."""
        links = Links(None)
        target = asyncio.run(
            TargetAutoDetector(links, catalog, 20).detect(preselected=tbeam)
        )
        assert target is tbeam
        assert links.link.transport.release_count == 1


def test_standalone_dfu_request(catalog):
    links = Links()
    asyncio.run(TargetAutoDetector(links, catalog, 200).enter_dfu_mode())
    assert links.link.dfu_requested
    assert links.link.transport.steps()[0] == "open"
    assert links.link.transport.release_count == 1
