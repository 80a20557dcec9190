"""Firmware artifact resolution: direct URLs, release archives, uploads."""

from .locator import (
    ArchiveEntry,
    ArtifactLocator,
    ArtifactRole,
    archive_base_url,
    classify_artifact_role,
    http_fetch,
    is_archive,
    is_uf2_name,
    member_matches,
    select_archive_member,
)

__all__ = [
    "ArchiveEntry",
    "ArtifactLocator",
    "ArtifactRole",
    "archive_base_url",
    "classify_artifact_role",
    "http_fetch",
    "is_archive",
    "is_uf2_name",
    "member_matches",
    "select_archive_member",
]
