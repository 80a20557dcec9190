"""
Parsing helpers for user-supplied option values.

The CLI wraps the ValueError these raise into typer.BadParameter.
"""

from typing import List, Optional

from mesh_flasher.catalog.types import PartitionScheme

SCHEME_ALIASES = {
    "default": PartitionScheme.DEFAULT,
    "4mb": PartitionScheme.DEFAULT,
    "8mb": PartitionScheme.EIGHT_MB,
    "8": PartitionScheme.EIGHT_MB,
    "16mb": PartitionScheme.SIXTEEN_MB,
    "16": PartitionScheme.SIXTEEN_MB,
}


def parse_partition_scheme(value: Optional[str]) -> PartitionScheme:
    """
    Parse a partition scheme name.

    Accepts "default", "8MB", "16MB" (case-insensitive) and the bare
    sizes "8"/"16". Empty means the default scheme.

    Raises:
        ValueError: If the scheme is not recognized
    """
    if value is None or not value.strip():
        return PartitionScheme.DEFAULT
    key = value.strip().lower()
    if key not in SCHEME_ALIASES:
        raise ValueError(
            f"Invalid partition scheme '{value}'. Use one of: {', '.join(get_valid_schemes())}."
        )
    return SCHEME_ALIASES[key]


def get_valid_schemes() -> List[str]:
    return [scheme.value for scheme in PartitionScheme]

