"""Shared fakes for transport, flash loader, device link and HTTP fetching."""

import asyncio
import zipfile
from typing import Dict, List, Optional

import pytest
import requests

from mesh_flasher.catalog.types import DeviceDescriptor, FirmwareDescriptor
from mesh_flasher.config import FlasherSettings
from mesh_flasher.errors import DeviceError
from mesh_flasher.protocol.transport import IdentityAnnouncement


class FakeTransport:
    """Records every call; steps listed in ``fail`` raise."""

    def __init__(self, port: str = "/dev/fake0", fail=(), open_delay: float = 0.0):
        self.port = port
        self.fail = set(fail)
        self.open_delay = open_delay
        self.on_disconnect = None
        self.calls: List[tuple] = []
        self.observer = None
        self.written = bytearray()

    def _maybe_fail(self, step: str) -> None:
        if step in self.fail:
            raise RuntimeError(f"{step} failed")

    @property
    def release_count(self) -> int:
        return sum(1 for call in self.calls if call[0] == "release")

    def steps(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def open(self) -> None:
        self.calls.append(("open",))
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if "open" in self.fail:
            raise DeviceError(f"Cannot open port {self.port}")

    async def read(self, size: int = 1) -> bytes:
        self.calls.append(("read", size))
        return b""

    async def write(self, data: bytes) -> None:
        self.calls.append(("write", len(data)))
        self.written.extend(data)

    async def set_rts(self, level: bool) -> None:
        self.calls.append(("rts", level))

    def start_pipe(self, observer) -> None:
        self.calls.append(("start_pipe",))
        self.observer = observer
        observer("boot ok\n")

    async def cancel_inbound(self) -> None:
        self.calls.append(("cancel_inbound",))
        self._maybe_fail("cancel_inbound")

    async def close_outbound(self) -> None:
        self.calls.append(("close_outbound",))
        self._maybe_fail("close_outbound")

    async def drain_secondary(self) -> None:
        self.calls.append(("drain_secondary",))
        self._maybe_fail("drain_secondary")

    async def release(self) -> None:
        self.calls.append(("release",))
        self._maybe_fail("release")


class FakeLoader:
    """
    Flash loader reporting progress in fixed-size chunks.

    Options:
        connect_delay: seconds before connect() returns
        fail_at: placement index whose write raises
        skip_final: return without the last written == total report
        step_delay: seconds awaited before each chunk report
    """

    def __init__(
        self,
        transport,
        chunk: int = 4,
        connect_delay: float = 0.0,
        connect_error: Optional[Exception] = None,
        fail_at: Optional[int] = None,
        skip_final: bool = False,
        step_delay: float = 0.0,
    ):
        self.transport = transport
        self.chunk = chunk
        self.connect_delay = connect_delay
        self.connect_error = connect_error
        self.fail_at = fail_at
        self.skip_final = skip_final
        self.step_delay = step_delay
        self.erase_all = None
        self.written: List[tuple] = []

    async def connect(self) -> str:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        return "ESP32-S3"

    async def write_flash(self, placements, erase_all, on_progress) -> None:
        self.erase_all = erase_all
        last = len(placements) - 1
        for index, placement in enumerate(placements):
            if index == self.fail_at:
                raise RuntimeError("flash write timeout")
            total = len(placement.data)
            on_progress(index, 0, total)
            for offset in range(0, total, self.chunk):
                if self.step_delay:
                    await asyncio.sleep(self.step_delay)
                written = min(offset + self.chunk, total)
                if self.skip_final and index == last and written == total:
                    return
                on_progress(index, written, total)
            self.written.append((placement.address, placement.data))


class FakeDeviceLink:
    """Device link whose handshake answers with ``announcement`` (None stays silent)."""

    def __init__(self, announcement: Optional[IdentityAnnouncement] = None, transport=None):
        self.transport = transport or FakeTransport()
        self.announcement = announcement
        self.channel: "asyncio.Queue[IdentityAnnouncement]" = asyncio.Queue()
        self.configured = False
        self.dfu_requested = False

    async def open(self) -> None:
        await self.transport.open()

    async def configure(self) -> None:
        self.configured = True
        if self.announcement is not None:
            self.channel.put_nowait(self.announcement)

    async def next_announcement(self) -> IdentityAnnouncement:
        return await self.channel.get()

    async def enter_dfu_mode(self) -> None:
        self.dfu_requested = True


class FakeFetcher:
    """URL -> bytes map standing in for HTTP; records requested URLs."""

    def __init__(self, responses: Optional[Dict[str, bytes]] = None):
        self.responses = dict(responses or {})
        self.requested: List[str] = []

    def __call__(self, url: str) -> bytes:
        self.requested.append(url)
        if url not in self.responses:
            raise requests.HTTPError(f"404 Client Error: Not Found for url: {url}")
        return self.responses[url]


def make_zip(path, members: Dict[str, bytes]):
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return path


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def fast_settings(tmp_path):
    return FlasherSettings(
        connect_deadline_ms=200,
        detect_deadline_ms=200,
        reset_pulse_s=0.0,
        download_dir=tmp_path / "downloads",
    )


@pytest.fixture
def tbeam():
    return DeviceDescriptor(
        hw_model=4,
        hw_model_slug="TBEAM",
        platformio_target="tbeam",
        architecture="esp32",
        tags=("LilyGo",),
        support_level=1,
    )


@pytest.fixture
def tbeam_s3():
    return DeviceDescriptor(
        hw_model=12,
        hw_model_slug="LILYGO_TBEAM_S3_CORE",
        platformio_target="tbeam-s3-core",
        architecture="esp32-s3",
        tags=("LilyGo",),
        support_level=2,
        has_mui=True,
    )


@pytest.fixture
def rak4631():
    return DeviceDescriptor(
        hw_model=9,
        hw_model_slug="RAK4631",
        platformio_target="rak4631",
        architecture="nrf52840",
        tags=("RAK",),
        support_level=1,
    )


@pytest.fixture
def pico():
    return DeviceDescriptor(
        hw_model=47,
        hw_model_slug="RPI_PICO",
        platformio_target="pico",
        architecture="rp2040",
        tags=("Raspberry Pi",),
        support_level=3,
    )


@pytest.fixture
def catalog(tbeam, tbeam_s3, rak4631, pico):
    return [tbeam, tbeam_s3, rak4631, pico]


@pytest.fixture
def release():
    base = "https://example.org/releases/2.7.1"
    return FirmwareDescriptor(
        id="v2.7.1.abcdef",
        bin_urls={
            "update": f"{base}/firmware-tbeam-s3-core-2.7.1.abcdef-update.bin",
            "factory": f"{base}/firmware-tbeam-s3-core-2.7.1.abcdef.factory.bin",
            "ota": f"{base}/bleota-s3.bin",
            "littlefs": f"{base}/littlefs-tbeam-s3-core-2.7.1.abcdef.bin",
        },
        zip_url="https://example.org/firmware-esp32s3-2.7.1.abcdef.zip",
    )
