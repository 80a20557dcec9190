"""
Firmware artifact resolution.

Turns (firmware descriptor, logical file name, optional uploaded file) into
raw bytes. Resolution order, first match wins:

    1. Direct binary URL for the file's role (update/factory/ota/littlefs)
    2. Direct UF2 URL, or one derived from the update/factory binary URL
    3. File fetched relative to the unpacked release archive
    4. Member of an uploaded .zip archive, matched by pattern
    5. Uploaded raw file, returned verbatim

Artifact names of different roles share long prefixes
(``firmware-tbeam-2.5.0-update.bin`` vs ``firmware-tbeam-2.5.0.factory.bin``),
so archive matching applies two extra rules on top of the pattern match:
the update.bin suffix must agree, and silicon variant markers such as
``s3`` must not appear in the member unless they appear in the request.
"""

import asyncio
import logging
import re
import zipfile
from enum import Enum
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Union

import requests

from mesh_flasher.catalog.types import FirmwareDescriptor
from mesh_flasher.errors import AmbiguousArtifact, ArtifactNotFound

logger = logging.getLogger(__name__)

UPDATE_SUFFIX = "update.bin"
UF2_SUFFIX = ".uf2"
ARCHIVE_SUFFIX = ".zip"

# Silicon variant markers that share a name prefix with the base board
VARIANT_MARKERS = ("s3",)

Fetcher = Callable[[str], bytes]


class ArtifactRole(Enum):
    """Logical role of a binary inside a release. Values are bin_urls keys."""
    UPDATE = "update"
    FACTORY = "factory"
    OTA = "ota"
    FILESYSTEM = "littlefs"


class ArchiveEntry(NamedTuple):
    """Archive member name plus accessor for its data."""
    name: str
    read: Callable[[], bytes]


def classify_artifact_role(logical_name: str) -> Optional[ArtifactRole]:
    """
    Derive the role of a binary from its logical name.

    Returns:
        ArtifactRole, or None if the name does not denote a role binary
        (UF2 images, arbitrary patterns).
    """
    if "update.bin" in logical_name:
        return ArtifactRole.UPDATE
    if "factory.bin" in logical_name:
        return ArtifactRole.FACTORY
    if "ota.bin" in logical_name or logical_name.startswith("bleota"):
        return ArtifactRole.OTA
    if "littlefs" in logical_name or "filesystem" in logical_name:
        return ArtifactRole.FILESYSTEM
    return None


def is_uf2_name(logical_name: str) -> bool:
    return logical_name.lower().endswith(UF2_SUFFIX)


def is_archive(path: Union[str, Path]) -> bool:
    return str(path).lower().endswith(ARCHIVE_SUFFIX)


def archive_base_url(zip_url: str, mirror: Optional[str] = None) -> str:
    """
    Base URL under which the files of a release archive can be fetched.

    With a mirror the archive stem is placed under it; otherwise the
    archive URL itself, minus ``.zip``, is treated as a directory.
    """
    stem_url = zip_url[: -len(ARCHIVE_SUFFIX)] if is_archive(zip_url) else zip_url
    if mirror:
        stem = stem_url.rstrip("/").rsplit("/", 1)[-1]
        return f"{mirror.rstrip('/')}/{stem}"
    return stem_url


def _has_marker(name: str, marker: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(marker)}(?![a-z0-9])", name, re.IGNORECASE) is not None


def member_matches(logical_name: str, member_name: str) -> bool:
    """
    Check one archive member against a requested logical name.

    The logical name is a regular expression (search semantics).

    Raises:
        re.error: If the logical name is not a valid pattern
    """
    if re.search(logical_name, member_name) is None:
        return False
    if logical_name.endswith(UPDATE_SUFFIX) != member_name.endswith(UPDATE_SUFFIX):
        return False
    for marker in VARIANT_MARKERS:
        if _has_marker(member_name, marker) and not _has_marker(logical_name, marker):
            return False
    return True


def select_archive_member(entries: List[ArchiveEntry], logical_name: str) -> ArchiveEntry:
    """
    Pick the single archive entry matching ``logical_name``.

    Raises:
        ArtifactNotFound: If nothing matches or the pattern is invalid
        AmbiguousArtifact: If more than one entry matches
    """
    try:
        candidates = [e for e in entries if member_matches(logical_name, e.name)]
    except re.error as e:
        raise ArtifactNotFound(logical_name, f"invalid name pattern: {e}")

    if not candidates:
        raise ArtifactNotFound(logical_name, "no matching archive member")
    if len(candidates) > 1:
        raise AmbiguousArtifact(logical_name, [c.name for c in candidates])
    return candidates[0]


def http_fetch(url: str, timeout: float = 30.0) -> bytes:
    """Download a URL and return its body."""
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content


class ArtifactLocator:
    """
    Resolves firmware files to bytes.

    Example:
        locator = ArtifactLocator()
        data = await locator.resolve(firmware, "firmware-tbeam-2.5.0-update.bin")
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        archive_mirror: Optional[str] = None,
        http_timeout: float = 30.0,
    ):
        """
        Initialize locator.

        Args:
            fetcher: Callable downloading a URL to bytes (default: requests GET)
            archive_mirror: Base URL serving unpacked release archives
            http_timeout: Timeout in seconds for the default fetcher
        """
        self._fetcher = fetcher or (lambda url: http_fetch(url, timeout=http_timeout))
        self.archive_mirror = archive_mirror

    # ------------------------------------------------------------------
    # URL resolution (pure)
    # ------------------------------------------------------------------

    @staticmethod
    def direct_url(firmware: FirmwareDescriptor, logical_name: str) -> Optional[str]:
        """Binary URL for the role of ``logical_name``, if the release has one."""
        role = classify_artifact_role(logical_name)
        if role is None:
            return None
        url = firmware.bin_urls.get(role.value)
        if url is None and role is ArtifactRole.FILESYSTEM:
            url = firmware.bin_urls.get("filesystem")
        return url

    @staticmethod
    def uf2_url(firmware: FirmwareDescriptor) -> Optional[str]:
        """Direct UF2 URL, or one derived from the update/factory binary URL."""
        for key in ("update", "full"):
            url = firmware.uf2_urls.get(key)
            if url and url.lower().endswith(UF2_SUFFIX):
                return url
        for url in firmware.uf2_urls.values():
            if url.lower().endswith(UF2_SUFFIX):
                return url

        bin_url = firmware.bin_urls.get("update") or firmware.bin_urls.get("factory")
        if bin_url:
            return re.sub(r"\.[^./]+$", UF2_SUFFIX, bin_url)
        return None

    def archive_url(self, firmware: FirmwareDescriptor, logical_name: str) -> Optional[str]:
        if not firmware.zip_url:
            return None
        return f"{archive_base_url(firmware.zip_url, self.archive_mirror)}/{logical_name}"

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_url(self, url: str, logical_name: str = "") -> bytes:
        """
        Download a URL in a worker thread.

        Raises:
            ArtifactNotFound: On HTTP or connection failure
        """
        logger.info(f"Downloading {url}")
        try:
            data = await asyncio.to_thread(self._fetcher, url)
        except (requests.RequestException, OSError) as e:
            raise ArtifactNotFound(logical_name or url, f"{url}: {e}")
        logger.debug(f"Downloaded {len(data)} bytes from {url}")
        return data

    @staticmethod
    def _archive_entries(archive: zipfile.ZipFile) -> List[ArchiveEntry]:
        return [
            ArchiveEntry(info.filename, lambda info=info: archive.read(info))
            for info in archive.infolist()
            if not info.is_dir()
        ]

    def read_archive_member(self, archive_path: Union[str, Path], logical_name: str) -> bytes:
        """
        Extract the member matching ``logical_name`` from a local archive.

        Raises:
            ArtifactNotFound: If the archive is unreadable or has no unique match
        """
        try:
            with zipfile.ZipFile(archive_path) as archive:
                entries = self._archive_entries(archive)
                logger.debug(f"Archive entries: {[e.name for e in entries]}")
                entry = select_archive_member(entries, logical_name)
                logger.info(f"Found archive member {entry.name}")
                return entry.read()
        except (zipfile.BadZipFile, OSError) as e:
            raise ArtifactNotFound(logical_name, f"cannot read archive {archive_path}: {e}")

    async def resolve(
        self,
        firmware: Optional[FirmwareDescriptor],
        logical_name: str,
        uploaded_file: Optional[Union[str, Path]] = None,
    ) -> bytes:
        """
        Resolve one logical file name to bytes.

        Args:
            firmware: Selected release, or None when only a file was uploaded
            logical_name: File name or pattern (e.g. firmware-tbeam-.+-update.bin)
            uploaded_file: User-supplied firmware file (.zip archive or raw image)

        Returns:
            Raw file contents

        Raises:
            ArtifactNotFound: If no resolution path applies or the fetch fails
        """
        if firmware is not None:
            url = self.direct_url(firmware, logical_name)
            if url:
                logger.debug(f"{logical_name}: direct {classify_artifact_role(logical_name).value} URL")
                return await self.fetch_url(url, logical_name)

            if is_uf2_name(logical_name):
                url = self.uf2_url(firmware)
                if url:
                    logger.debug(f"{logical_name}: UF2 URL")
                    return await self.fetch_url(url, logical_name)

            url = self.archive_url(firmware, logical_name)
            if url:
                logger.debug(f"{logical_name}: release archive URL")
                return await self.fetch_url(url, logical_name)

        if uploaded_file is not None:
            path = Path(uploaded_file)
            if is_archive(path):
                logger.debug(f"{logical_name}: searching uploaded archive {path.name}")
                return await asyncio.to_thread(self.read_archive_member, path, logical_name)
            logger.debug(f"{logical_name}: using uploaded file {path.name} verbatim")
            try:
                return await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                raise ArtifactNotFound(logical_name, f"cannot read {path}: {e}")

        if firmware is not None and not firmware.has_sources:
            raise ArtifactNotFound(logical_name, f"release {firmware.id} has no download sources")
        raise ArtifactNotFound(logical_name, "no firmware or file selected")
