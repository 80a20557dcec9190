"""
Structured warnings with stable codes and remediation hints.

Flasher errors map onto codes by class, so every failure the CLI shows
comes with a concrete next step.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from mesh_flasher.errors import (
    AmbiguousArtifact,
    ArtifactNotFound,
    ConnectionTimeout,
    DeviceError,
    FlasherError,
    FlashWriteError,
    PortBusyError,
    UnknownDeviceError,
    UnsupportedArchitecture,
)

if TYPE_CHECKING:
    from .results import OperationResult


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device
    W_DEVICE_TIMEOUT = "W_DEVICE_TIMEOUT"
    W_DEVICE_ERROR = "W_DEVICE_ERROR"
    W_PORT_BUSY = "W_PORT_BUSY"
    W_DEVICE_UNKNOWN = "W_DEVICE_UNKNOWN"

    # Configuration
    W_ARTIFACT_NOT_FOUND = "W_ARTIFACT_NOT_FOUND"
    W_ARTIFACT_AMBIGUOUS = "W_ARTIFACT_AMBIGUOUS"
    W_ARCH_UNSUPPORTED = "W_ARCH_UNSUPPORTED"

    # Flashing
    W_FLASH_FAILED = "W_FLASH_FAILED"
    W_ERASE_ALL = "W_ERASE_ALL"

    # Safety
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_CONFIRMATION_REQUIRED = "W_CONFIRMATION_REQUIRED"

    # Operation
    W_DRY_RUN = "W_DRY_RUN"
    W_UF2_MANUAL_COPY = "W_UF2_MANUAL_COPY"

    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_TIMEOUT:
        "Unplug and reconnect the device, then hold BOOT while plugging in if it still does not answer.",
    WarningCode.W_DEVICE_ERROR:
        "Reconnect the device and check the USB cable supports data.",
    WarningCode.W_PORT_BUSY:
        "Close other programs using the port (serial monitors, other flashers).",
    WarningCode.W_DEVICE_UNKNOWN:
        "Select the target manually with --target.",
    WarningCode.W_ARTIFACT_NOT_FOUND:
        "Check the firmware release contains a build for this target, or pass the file with --file.",
    WarningCode.W_ARTIFACT_AMBIGUOUS:
        "The archive holds several matching files. Pick a specific firmware version.",
    WarningCode.W_ARCH_UNSUPPORTED:
        "This target cannot be flashed by this tool. Use the vendor's flashing method.",
    WarningCode.W_FLASH_FAILED:
        "Reconnect the device and retry. A clean install can recover a half-written chip.",
    WarningCode.W_ERASE_ALL:
        "A clean install erases all settings and messages stored on the device.",
    WarningCode.W_WRITE_DISABLED:
        "Add --write to flash the device.",
    WarningCode.W_CONFIRMATION_REQUIRED:
        "Type 'FLASH' to confirm the operation.",
    WarningCode.W_DRY_RUN:
        "Dry run complete. Add --write to flash the device.",
    WarningCode.W_UF2_MANUAL_COPY:
        "Double-press reset to mount the bootloader drive and copy the .uf2 file onto it.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details (--verbose).",
}

# Most specific classes first
_ERROR_CODES = (
    (PortBusyError, WarningCode.W_PORT_BUSY),
    (UnknownDeviceError, WarningCode.W_DEVICE_UNKNOWN),
    (ConnectionTimeout, WarningCode.W_DEVICE_TIMEOUT),
    (DeviceError, WarningCode.W_DEVICE_ERROR),
    (AmbiguousArtifact, WarningCode.W_ARTIFACT_AMBIGUOUS),
    (ArtifactNotFound, WarningCode.W_ARTIFACT_NOT_FOUND),
    (UnsupportedArchitecture, WarningCode.W_ARCH_UNSUPPORTED),
    (FlashWriteError, WarningCode.W_FLASH_FAILED),
)


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        return cls(MessageLevel.ERROR, code, title, detail, remediation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        icons = {
            MessageLevel.INFO: "ℹ️ ",
            MessageLevel.WARN: "⚠️ ",
            MessageLevel.ERROR: "❌",
        }
        icon = icons.get(self.level, "")

        if not verbose:
            return f"{icon} {self.title}"
        lines = [f"{icon} [{self.code.value}] {self.title}"]
        if self.detail:
            lines.append(f"   {self.detail}")
        if self.remediation:
            lines.append(f"   → {self.remediation}")
        return "\n".join(lines)


def code_for_error(error: BaseException) -> WarningCode:
    for cls, code in _ERROR_CODES:
        if isinstance(error, cls):
            return code
    return WarningCode.W_UNKNOWN


def warning_for_error(error: BaseException) -> WarningItem:
    """
    WarningItem describing an exception.

    User-actionable flasher errors are reported at WARN level with
    reconnect guidance; everything else is an ERROR.
    """
    level = MessageLevel.ERROR
    if isinstance(error, FlasherError) and error.category == "user-actionable":
        level = MessageLevel.WARN
    category = getattr(error, "category", "fatal")
    return WarningItem(level, code_for_error(error), str(error), detail=f"category: {category}")


def warnings_from_strings(
    warning_strings: List[str],
    default_level: MessageLevel = MessageLevel.WARN,
) -> List[WarningItem]:
    """
    Convert plain warning strings to WarningItem list.

    Known phrasings get their stable code; the rest are W_UNKNOWN.
    """
    items = []
    for msg in warning_strings:
        msg_lower = msg.lower()
        if "dry run" in msg_lower:
            code = WarningCode.W_DRY_RUN
        elif "erase" in msg_lower:
            code = WarningCode.W_ERASE_ALL
        elif "uf2" in msg_lower and "copy" in msg_lower:
            code = WarningCode.W_UF2_MANUAL_COPY
        elif "timed out" in msg_lower or "timeout" in msg_lower:
            code = WarningCode.W_DEVICE_TIMEOUT
        else:
            code = WarningCode.W_UNKNOWN
        items.append(WarningItem(level=default_level, code=code, title=msg))
    return items


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert a result's warnings and errors to WarningItem list.

    Errors carrying a ``metadata["error_code"]`` keep that code.
    """
    items = warnings_from_strings(result.warnings, MessageLevel.WARN)

    stored = result.metadata.get("error_code")
    for err in result.errors:
        err_lower = err.lower()
        if stored:
            code = WarningCode(stored)
        elif "timed out" in err_lower:
            code = WarningCode.W_DEVICE_TIMEOUT
        elif "permission" in err_lower or "--write" in err_lower:
            code = WarningCode.W_WRITE_DISABLED
        elif "not found" in err_lower:
            code = WarningCode.W_ARTIFACT_NOT_FOUND
        else:
            code = WarningCode.W_UNKNOWN
        items.append(WarningItem.error(code, err))

    return items

