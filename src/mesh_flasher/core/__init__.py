"""
Core workflows shared by the CLI: results, messages, safety gating, actions.
"""

from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    code_for_error,
    result_to_warnings,
    warning_for_error,
    warnings_from_strings,
)
from .safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    WritePermissionError,
    create_cli_safety_context,
    require_write_permission,
)
from .parsing import get_valid_schemes, parse_partition_scheme
from .actions import detect_target, fetch_artifact, flash_target, plan_flash

__all__ = [
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "code_for_error",
    "result_to_warnings",
    "warning_for_error",
    "warnings_from_strings",
    # Safety
    "CONFIRMATION_TOKEN",
    "SafetyContext",
    "WritePermissionError",
    "create_cli_safety_context",
    "require_write_permission",
    # Parsing
    "get_valid_schemes",
    "parse_partition_scheme",
    # Actions
    "detect_target",
    "fetch_artifact",
    "flash_target",
    "plan_flash",
]
