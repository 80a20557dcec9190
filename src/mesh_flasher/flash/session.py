"""
Flash session state and port ownership.

FlashSession is the live record of one flashing attempt: its state in the
connect/prepare/write/reset/stream machine, the transport it exclusively
owns, progress counters and the last classified error. A session is
created per job and passed explicitly; nothing here is global except the
PortRegistry, because port exclusivity is process-wide.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from mesh_flasher.errors import FlasherError, PortBusyError
from mesh_flasher.protocol.transport import Transport

logger = logging.getLogger(__name__)


class FlashState(Enum):
    """States of a flashing attempt."""
    IDLE = "idle"
    CONNECTING = "connecting"
    PREPARING = "preparing"
    WRITING = "writing"
    RESETTING = "resetting"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FlashState.DONE, FlashState.FAILED})

_FORWARD: Dict[FlashState, FlashState] = {
    FlashState.IDLE: FlashState.CONNECTING,
    FlashState.CONNECTING: FlashState.PREPARING,
    FlashState.PREPARING: FlashState.WRITING,
    FlashState.WRITING: FlashState.RESETTING,
    FlashState.RESETTING: FlashState.STREAMING,
    FlashState.STREAMING: FlashState.DONE,
}


def is_valid_transition(current: FlashState, new: FlashState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if new is FlashState.FAILED:
        return True
    return _FORWARD.get(current) is new


@dataclass
class FlashSession:
    """Live state of one flashing attempt."""
    port: str
    transport: Optional[Transport] = None
    state: FlashState = FlashState.IDLE
    bytes_written: int = 0
    file_index: int = 0
    error: Optional[FlasherError] = None
    history: List[FlashState] = field(default_factory=lambda: [FlashState.IDLE])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new: FlashState) -> None:
        """
        Move to ``new``.

        Raises:
            RuntimeError: If the transition is not allowed
        """
        if not is_valid_transition(self.state, new):
            raise RuntimeError(
                f"Invalid flash state transition {self.state.value} -> {new.value}"
            )
        logger.debug(f"[{self.port}] {self.state.value} -> {new.value}")
        self.state = new
        self.history.append(new)

    def record_progress(self, file_index: int, written: int, completed_before: int) -> None:
        self.file_index = file_index
        self.bytes_written = completed_before + written

    def record_error(self, error: FlasherError) -> None:
        self.error = error


class PortRegistry:
    """
    Single-owner claims on physical ports.

    A second claim on a held port is refused, not queued.
    """

    def __init__(self):
        self._held: Set[str] = set()

    def claim(self, port: str) -> None:
        """
        Raises:
            PortBusyError: If the port is already held
        """
        if port in self._held:
            raise PortBusyError(port)
        self._held.add(port)
        logger.debug(f"Claimed port {port}")

    def release(self, port: str) -> None:
        if port in self._held:
            self._held.discard(port)
            logger.debug(f"Released port {port}")

    def is_held(self, port: str) -> bool:
        return port in self._held


default_port_registry = PortRegistry()
