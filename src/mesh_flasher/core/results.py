"""
Result objects for flasher workflows.

The CLI renders these; library callers that prefer exceptions use the
flash package directly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class OperationResult:
    """
    Outcome of one high-level workflow.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "flash", "plan_flash")
        target: Hardware target name
        firmware: Firmware id, or the uploaded file name
        bytes_len: Total bytes written or resolved
        placements: Human-readable "0xADDR name (size)" lines
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Operation-specific data (chip, saved path, error category)
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    target: str = ""
    firmware: str = ""
    bytes_len: int = 0
    placements: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Readable multi-line summary for the CLI."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.target:
            lines.append(f"  Target: {self.target}")
        if self.firmware:
            lines.append(f"  Firmware: {self.firmware}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        if self.placements:
            lines.append("  Placements:")
            for placement in self.placements:
                lines.append(f"    {placement}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "target": self.target,
            "firmware": self.firmware,
            "bytes_len": self.bytes_len,
            "placements": self.placements,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        target: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        return cls(ok=True, operation=operation, target=target, bytes_len=bytes_len, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        target: str = "",
        **kwargs,
    ) -> "OperationResult":
        result = cls(ok=False, operation=operation, target=target, **kwargs)
        result.errors.append(error)
        return result
