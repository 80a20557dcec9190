"""
Runtime settings for the flasher.

Defaults suit Meshtastic-class devices. CLI options map one-to-one onto
these fields.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

DEFAULT_BAUD_RATE = 115200
DEFAULT_CONNECT_DEADLINE_MS = 5000
DEFAULT_DETECT_DEADLINE_MS = 5000


@dataclass(frozen=True)
class FlasherSettings:
    """
    Tunables shared by the locator, guard and orchestrator.

    Attributes:
        baud_rate: Serial speed used by the flash loader and output monitor
        connect_deadline_ms: Deadline for opening the port and the loader handshake
        detect_deadline_ms: Deadline for the identity handshake during auto-detection
        reset_pulse_s: How long RTS is held high when resetting the chip
        stream_poll_s: Pause between reads while streaming device output
        http_timeout_s: Timeout for each artifact download
        write_chunk_size: Bytes per flash write call (progress granularity)
        archive_mirror: Base URL serving unpacked release archives, if any
        download_dir: Where UF2 images are saved
        vendor_tag: When set, only catalog entries carrying this tag are offered
    """
    baud_rate: int = DEFAULT_BAUD_RATE
    connect_deadline_ms: int = DEFAULT_CONNECT_DEADLINE_MS
    detect_deadline_ms: int = DEFAULT_DETECT_DEADLINE_MS
    reset_pulse_s: float = 0.1
    stream_poll_s: float = 0.005
    http_timeout_s: float = 30.0
    write_chunk_size: int = 0x10000
    archive_mirror: Optional[str] = None
    download_dir: Path = field(default_factory=lambda: Path("."))
    vendor_tag: str = ""

    def with_overrides(self, **changes) -> "FlasherSettings":
        """
        Return a copy with selected fields replaced.

        None values are skipped so CLI options left unset keep the default.

        Raises:
            TypeError: If a key is not a settings field
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        applied = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **applied)
