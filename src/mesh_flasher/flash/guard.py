"""
Deadline-bounded operations and transport teardown.

ConnectionGuard races a device operation against a deadline and owns the
ordered release of a transport. The losing side of a race is cancelled,
never left running, so a late handshake result cannot leak into a new
session.
"""

import asyncio
import logging
import weakref
from typing import Awaitable, Callable, Optional, TypeVar

from mesh_flasher.config import DEFAULT_CONNECT_DEADLINE_MS
from mesh_flasher.errors import ConnectionTimeout, DeviceError, FlasherError
from mesh_flasher.protocol.transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionGuard:
    """
    Deadline race plus best-effort teardown.

    Example:
        guard = ConnectionGuard(deadline_ms=5000)
        chip = await guard.with_deadline(loader.connect)
        ...
        await guard.teardown(transport)
    """

    def __init__(self, deadline_ms: int = DEFAULT_CONNECT_DEADLINE_MS):
        self.deadline_ms = deadline_ms
        self._torn_down: "weakref.WeakSet[Transport]" = weakref.WeakSet()

    async def with_deadline(
        self,
        operation: Callable[[], Awaitable[T]],
        deadline_ms: Optional[int] = None,
        what: str = "device handshake",
    ) -> T:
        """
        Run ``operation`` with a deadline.

        Args:
            operation: Zero-argument coroutine function
            deadline_ms: Override for the guard's default deadline
            what: Description used in the timeout message

        Raises:
            ConnectionTimeout: If the deadline fires first
            DeviceError: If the operation fails with a non-flasher error
            FlasherError: Flasher errors from the operation pass through
        """
        deadline = self.deadline_ms if deadline_ms is None else deadline_ms
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=deadline / 1000)
        except asyncio.CancelledError:
            await self._cancel(task)
            raise

        if task not in done:
            await self._cancel(task)
            logger.warning(f"{what} timed out after {deadline} ms")
            raise ConnectionTimeout(deadline, what)

        error = task.exception()
        if error is None:
            return task.result()
        if isinstance(error, FlasherError):
            raise error
        raise DeviceError(f"{what} failed: {error}") from error

    @staticmethod
    async def _cancel(task: asyncio.Future) -> None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled operation ended with {e!r}")

    async def teardown(self, transport: Optional[Transport]) -> None:
        """
        Release a transport. Never raises.

        Steps run in order, each logged on failure: cancel inbound,
        close outbound, drain the secondary task, release the port. If
        draining fails the release is retried once.
        """
        if transport is None:
            return
        if transport in self._torn_down:
            logger.debug(f"Teardown of {getattr(transport, 'port', transport)} already done")
            return
        self._torn_down.add(transport)

        name = getattr(transport, "port", repr(transport))
        await self._step(name, "cancel inbound", transport.cancel_inbound)
        await self._step(name, "close outbound", transport.close_outbound)
        drained = await self._step(name, "drain secondary", transport.drain_secondary)
        released = await self._step(name, "release", transport.release)
        if not drained and not released:
            await self._step(name, "release retry", transport.release)

    @staticmethod
    async def _step(name: str, label: str, step: Callable[[], Awaitable[None]]) -> bool:
        try:
            await step()
            return True
        except Exception as e:
            logger.warning(f"Teardown of {name}: {label} failed: {e}")
            return False
