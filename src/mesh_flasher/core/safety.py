"""
Write gating for flashing.

Every path that writes a device goes through require_write_permission,
so the CLI and library callers enforce identical rules.
"""

import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional

# Confirmation token required for non-interactive flashing
CONFIRMATION_TOKEN = "FLASH"


class WritePermissionError(Exception):
    """
    Raised when flashing is not permitted.

    Attributes:
        reason: Human-readable explanation of why the write was denied
        details: Additional context (target, placements, size)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Everything needed to decide whether a flash may proceed.

    Attributes:
        write_enabled: Whether --write was given
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the user can be prompted
        target_name: Name of the hardware target being flashed
        erase_all: Clean install (whole chip is erased first)
        simulate: Dry run; nothing is written
        warnings: Warnings accumulated while preparing the flash
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    target_name: str = ""
    erase_all: bool = False
    simulate: bool = False
    warnings: List[str] = field(default_factory=list)

    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def is_target_unknown(self) -> bool:
        return not self.target_name or self.target_name.lower() == "unknown"

    def to_details_dict(self, placements_desc: str = "", bytes_length: int = 0) -> dict:
        """Details shown before asking for confirmation."""
        details = {
            "target": self.target_name or "Unknown",
            "placements": placements_desc,
            "bytes_length": bytes_length,
        }
        warnings = list(self.warnings)
        if self.erase_all:
            warnings.append("Clean install erases the entire flash, including device settings")
        if warnings:
            details["warnings"] = warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    placements_desc: str = "",
    bytes_length: int = 0,
) -> None:
    """
    Enforce flash permission rules.

    Rules enforced, in order:
    1. Simulation: always allowed (nothing is written)
    2. Write must be enabled
    3. Unknown target: denied
    4. Confirmation token, if given, must match exactly
    5. Interactive: prompt for the token

    Raises:
        WritePermissionError: If flashing is not permitted
    """
    details = ctx.to_details_dict(placements_desc, bytes_length)

    if ctx.simulate:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Flashing requires explicit permission. CLI: use --write flag.",
            details=details,
        )

    if ctx.is_target_unknown:
        raise WritePermissionError(
            "Cannot flash without a known hardware target. Select one with --target.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError("Confirmation failed. Flash aborted by user.", details=details)


def create_cli_safety_context(
    write_flag: bool,
    target_name: str = "",
    erase_all: bool = False,
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    SafetyContext for CLI usage.

    Interactive when no token was given and stdin is a terminal.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None
    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        target_name=target_name,
        erase_all=erase_all,
        simulate=simulate,
    )
