"""Tests for the synchronous workflow actions."""

import signal

from mesh_flasher.artifacts.locator import ArtifactLocator
from mesh_flasher.catalog.types import DeviceDescriptor, FirmwareDescriptor
from mesh_flasher.core.actions import detect_target, fetch_artifact, flash_target, plan_flash
from mesh_flasher.core.safety import SafetyContext
from mesh_flasher.flash.dispatch import FirmwareFlasher
from mesh_flasher.flash.orchestrator import FlashOrchestrator
from mesh_flasher.flash.request import FlashRequest
from mesh_flasher.flash.session import PortRegistry
from mesh_flasher.protocol.transport import IdentityAnnouncement

from conftest import FakeDeviceLink, FakeFetcher, FakeLoader, FakeTransport, make_zip

ALLOWED = SafetyContext(write_enabled=True, confirmation_token="FLASH", target_name="TBEAM")


def _archive(tmp_path):
    return make_zip(tmp_path / "firmware-esp32-2.5.0.zip", {
        "firmware-tbeam-2.5.0-update.bin": b"U" * 12,
        "firmware-tbeam-2.5.0.factory.bin": b"F" * 20,
        "bleota.bin": b"O" * 4,
        "littlefs-tbeam-2.5.0.bin": b"L" * 8,
        "firmware-rak4631-2.5.0.uf2": b"UF2",
    })


def _fake_flasher(settings, locator):
    orchestrator = FlashOrchestrator(
        transport_factory=FakeTransport,
        loader_factory=FakeLoader,
        locator=locator,
        settings=settings,
        registry=PortRegistry(),
    )
    return FirmwareFlasher(locator, settings, orchestrator=orchestrator)


class TestPlanFlash:
    def test_update_from_uploaded_archive(self, tmp_path, tbeam):
        """An update plan places only the app image at 0x10000."""
        request = FlashRequest(tbeam, uploaded_file=_archive(tmp_path))
        result = plan_flash(request, locator=ArtifactLocator(fetcher=FakeFetcher()))

        assert result.ok, result.errors
        assert result.bytes_len == 12
        assert result.placements[0].startswith("0x010000")
        assert result.metadata["method"] == "serial"
        assert any("Dry run" in w for w in result.warnings)

    def test_clean_install_from_uploaded_archive(self, tmp_path, tbeam):
        """A clean install plans factory, OTA and filesystem images in address order."""
        request = FlashRequest(tbeam, uploaded_file=_archive(tmp_path), clean_install=True)
        result = plan_flash(request, locator=ArtifactLocator(fetcher=FakeFetcher()))

        assert result.ok, result.errors
        assert result.bytes_len == 32
        assert [p.split()[0] for p in result.placements] == ["0x000000", "0x260000", "0x300000"]
        assert any("erase" in w for w in result.warnings)

    def test_uf2_target(self, tmp_path, rak4631):
        """nRF52 targets plan a single UF2 image."""
        request = FlashRequest(rak4631, uploaded_file=_archive(tmp_path))
        result = plan_flash(request, locator=ArtifactLocator(fetcher=FakeFetcher()))
        assert result.ok, result.errors
        assert result.metadata["method"] == "uf2"
        assert result.bytes_len == 3

    def test_missing_artifact_is_failure(self, tbeam):
        """A missing artifact becomes a failed result, not an exception."""
        request = FlashRequest(tbeam, FirmwareDescriptor(id="v2.5.0"))
        result = plan_flash(request, locator=ArtifactLocator(fetcher=FakeFetcher()))
        assert not result.ok
        assert result.metadata["error_code"] == "W_ARTIFACT_NOT_FOUND"
        assert result.metadata["category"] == "configuration"

    def test_unsupported_architecture(self):
        target = DeviceDescriptor(hw_model=1, hw_model_slug="X", platformio_target="x", architecture="stm32")
        result = plan_flash(FlashRequest(target), locator=ArtifactLocator(fetcher=FakeFetcher()))
        assert not result.ok
        assert result.metadata["error_code"] == "W_ARCH_UNSUPPORTED"


class TestFlashTarget:
    def test_write_disabled(self, tbeam, fast_settings):
        """Flashing without --write is refused before any I/O."""
        result = flash_target(FlashRequest(tbeam), "/dev/ttyUSB0", SafetyContext(target_name="TBEAM"))
        assert not result.ok
        assert result.metadata["error_code"] == "W_WRITE_DISABLED"

    def test_serial_flash(self, tmp_path, tbeam, fast_settings):
        """A serial flash reports progress and captures the engine's logs."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        progress = []
        result = flash_target(
            FlashRequest(tbeam, uploaded_file=_archive(tmp_path)),
            "/dev/ttyUSB0",
            ALLOWED,
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
            on_progress=lambda *args: progress.append(args),
        )
        assert result.ok, result.errors
        assert result.bytes_len == 12
        assert result.metadata["method"] == "serial"
        assert result.metadata["state"] == "done"
        assert progress[-1] == (0, 12, 12)
        assert any("Bootloader ready" in line for line in result.logs)

    def test_serial_flash_failure_is_result(self, tbeam, fast_settings):
        """Engine failures come back as a result with a stable code."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        result = flash_target(
            FlashRequest(tbeam, FirmwareDescriptor(id="v2.5.0")),
            "/dev/ttyUSB0",
            ALLOWED,
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
        )
        assert not result.ok
        assert result.metadata["error_code"] == "W_ARTIFACT_NOT_FOUND"

    def test_uf2_saved_with_manual_copy_warning(self, tmp_path, rak4631, fast_settings):
        """Without a drive the saved UF2 comes with a copy-it-yourself warning."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        result = flash_target(
            FlashRequest(rak4631, uploaded_file=_archive(tmp_path)),
            None,
            ALLOWED,
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
        )
        assert result.ok, result.errors
        assert result.metadata["method"] == "uf2"
        assert "saved_path" in result.metadata
        assert any("copy it" in w for w in result.warnings)

    def test_missing_port(self, tbeam, fast_settings):
        """Serial targets need a port."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        result = flash_target(
            FlashRequest(tbeam),
            None,
            ALLOWED,
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
        )
        assert not result.ok
        assert "port" in result.errors[0]

    def test_simulate_delegates_to_plan(self, tmp_path, tbeam, fast_settings):
        """Simulation plans the flash and writes nothing."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        result = flash_target(
            FlashRequest(tbeam, uploaded_file=_archive(tmp_path)),
            "/dev/ttyUSB0",
            SafetyContext(simulate=True),
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
        )
        assert result.ok
        assert result.operation == "flash"
        assert any("Dry run" in w for w in result.warnings)

    def test_interrupt_ends_monitoring_with_result(self, tmp_path, tbeam, fast_settings):
        """Ctrl-C while monitoring ends the output and the flash result still comes back."""
        locator = ArtifactLocator(fetcher=FakeFetcher())
        before = signal.getsignal(signal.SIGINT)
        output = []

        def monitor(text):
            output.append(text)
            signal.raise_signal(signal.SIGINT)

        result = flash_target(
            FlashRequest(tbeam, uploaded_file=_archive(tmp_path)),
            "/dev/ttyUSB0",
            ALLOWED,
            settings=fast_settings,
            flasher=_fake_flasher(fast_settings, locator),
            monitor=monitor,
            stop_on_interrupt=True,
        )
        assert result.ok, result.errors
        assert result.metadata["state"] == "done"
        assert output == ["boot ok\n"]
        assert any("Stopping device output" in line for line in result.logs)
        assert signal.getsignal(signal.SIGINT) is before


def test_fetch_artifact_to_directory(tmp_path):
    """Fetching into a directory keeps the artifact's name."""
    firmware = FirmwareDescriptor(id="v2.5.0", bin_urls={"ota": "https://example.org/bleota.bin"})
    locator = ArtifactLocator(fetcher=FakeFetcher({"https://example.org/bleota.bin": b"OTA"}))
    result = fetch_artifact(firmware, "bleota.bin", tmp_path, locator=locator)
    assert result.ok
    assert (tmp_path / "bleota.bin").read_bytes() == b"OTA"


def test_detect_target_action(catalog, fast_settings, tbeam):
    result = detect_target(
        lambda: FakeDeviceLink(IdentityAnnouncement("tbeam", 4)),
        catalog,
        settings=fast_settings,
    )
    assert result.ok
    assert result.metadata["target"] is tbeam
