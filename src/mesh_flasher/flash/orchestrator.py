"""
Serial flashing state machine.

One run walks a FlashSession through

    IDLE -> CONNECTING -> PREPARING -> WRITING -> RESETTING -> STREAMING -> DONE

with FAILED reachable from any non-terminal state. The transport is torn
down exactly once when the session reaches a terminal state, whatever
the path, and the port claim is released after it.

Cancelling a run during WRITING does not abort the image. The write
completes and the chip is reset before the cancellation propagates, so
the session still ends DONE.

The completion callback fires once, when the last placement reports
written == total. A loader that returns without that report has not
finished the job and the run fails with FlashWriteError.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from mesh_flasher.artifacts.locator import ArtifactLocator
from mesh_flasher.catalog.types import FlashPlacement
from mesh_flasher.config import FlasherSettings
from mesh_flasher.errors import DeviceError, FlasherError, FlashWriteError
from mesh_flasher.flash.guard import ConnectionGuard
from mesh_flasher.flash.layout import build_placements, resolve_partition_layout
from mesh_flasher.flash.request import FlashRequest
from mesh_flasher.flash.session import (
    FlashSession,
    FlashState,
    PortRegistry,
    default_port_registry,
)
from mesh_flasher.protocol.transport import (
    FlashLoader,
    OutputObserver,
    ProgressCallback,
    Transport,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]
LoaderFactory = Callable[[Transport], FlashLoader]


async def prepare_placements(
    locator: ArtifactLocator,
    request: FlashRequest,
) -> List[FlashPlacement]:
    """
    Resolve the artifacts of a serial job and compute its placements.

    Does no device I/O.

    Raises:
        ArtifactNotFound: If any file of the job cannot be resolved
    """
    artifacts = {}
    for name in request.artifact_names():
        artifacts[name] = await locator.resolve(request.firmware, name, request.uploaded_file)

    version = request.firmware.version if request.firmware else ""
    layout = resolve_partition_layout(request.scheme, request.target.has_mui, version)
    placements = build_placements(request, artifacts, layout)
    logger.debug(f"Placements: {placements} ({layout!r})")
    return placements


def flash_record(request: FlashRequest) -> Dict[str, object]:
    """Structured record of a finished flash."""
    target = request.target
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "hwModelSlug": target.hw_model_slug,
        "hwModel": target.hw_model,
        "platformioTarget": target.platformio_target,
        "architecture": target.architecture,
        "firmware": request.firmware.id if request.firmware else None,
        "cleanInstall": request.clean_install,
        "partitionScheme": request.scheme.value,
    }


class FlashOrchestrator:
    """
    Drives one serial flashing job per run().

    Example:
        orchestrator = FlashOrchestrator(
            transport_factory=lambda port: SerialTransport(port),
            loader_factory=lambda transport: EsptoolLoader(transport),
            locator=ArtifactLocator(),
        )
        session = await orchestrator.run(request, "/dev/ttyUSB0")
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        loader_factory: LoaderFactory,
        locator: ArtifactLocator,
        settings: Optional[FlasherSettings] = None,
        registry: Optional[PortRegistry] = None,
    ):
        self.transport_factory = transport_factory
        self.loader_factory = loader_factory
        self.locator = locator
        self.settings = settings or FlasherSettings()
        self.registry = registry or default_port_registry

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    async def prepare(self, request: FlashRequest) -> List[FlashPlacement]:
        return await prepare_placements(self.locator, request)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        request: FlashRequest,
        port: str,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[Callable[[], None]] = None,
        monitor: Optional[OutputObserver] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> FlashSession:
        """
        Flash one job over ``port``.

        Args:
            request: Job to flash
            port: Serial port name
            on_progress: Called with (file_index, written, total) per chunk
            on_complete: Called once after the last placement is written
            monitor: Receives device output after reset; None skips streaming
            stop_event: Ends streaming when set (task cancellation also ends it)

        Returns:
            The finished session (state DONE)

        Raises:
            PortBusyError: If another session holds the port
            FlasherError: Any failure, after the session reached FAILED
        """
        self.registry.claim(port)
        session = FlashSession(port)
        guard = ConnectionGuard(self.settings.connect_deadline_ms)
        try:
            await self._run(session, guard, request, on_progress, on_complete, monitor, stop_event)
        except asyncio.CancelledError:
            if session.state is FlashState.STREAMING:
                self._finish(session, request)
            elif not session.is_terminal:
                session.transition(FlashState.FAILED)
            raise
        except FlasherError as e:
            logger.error(f"Flash on {port} failed in {session.state.value}: {e}")
            session.record_error(e)
            if not session.is_terminal:
                session.transition(FlashState.FAILED)
            raise
        except Exception:
            logger.exception(f"Flash on {port} failed in {session.state.value}")
            if not session.is_terminal:
                session.transition(FlashState.FAILED)
            raise
        finally:
            await guard.teardown(session.transport)
            self.registry.release(port)
        return session

    async def _run(self, session, guard, request, on_progress, on_complete, monitor, stop_event):
        session.transition(FlashState.CONNECTING)
        transport = self.transport_factory(session.port)
        session.transport = transport
        transport.on_disconnect = lambda error: self._on_disconnect(session, error)
        loader = self.loader_factory(transport)

        async def connect() -> str:
            await transport.open()
            return await loader.connect()

        chip = await guard.with_deadline(connect, what=f"connect to {session.port}")
        logger.info(f"Bootloader ready on {session.port}: {chip}")

        session.transition(FlashState.PREPARING)
        placements = await self.prepare(request)

        session.transition(FlashState.WRITING)
        interrupted = await self._write(
            session, loader, placements, request.clean_install, on_progress, on_complete
        )

        session.transition(FlashState.RESETTING)
        await self._reset(transport)

        session.transition(FlashState.STREAMING)
        if interrupted:
            raise asyncio.CancelledError()
        await self._stream(transport, monitor, stop_event)

        self._finish(session, request)

    def _finish(self, session: FlashSession, request: FlashRequest) -> None:
        session.transition(FlashState.DONE)
        logger.info("[FLASH] " + json.dumps(flash_record(request)))

    def _on_disconnect(self, session: FlashSession, error: Exception) -> None:
        wrapped = error if isinstance(error, DeviceError) else DeviceError(str(error))
        logger.warning(f"Device on {session.port} disconnected: {wrapped}")
        session.record_error(wrapped)

    async def _write(
        self,
        session: FlashSession,
        loader: FlashLoader,
        placements: List[FlashPlacement],
        erase_all: bool,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[Callable[[], None]],
    ) -> bool:
        """
        Write every placement; returns True if cancellation arrived meanwhile.

        The write itself is shielded: a cancelled run waits for the image to
        finish before the chip is reset and the port torn down.
        """
        last_index = len(placements) - 1
        starts = []
        offset = 0
        for placement in placements:
            starts.append(offset)
            offset += len(placement.data)
        completed = False

        def progress(index: int, written: int, total: int) -> None:
            nonlocal completed
            session.record_progress(index, written, starts[index])
            if on_progress is not None:
                on_progress(index, written, total)
            if index == last_index and written == total and not completed:
                completed = True
                logger.info(f"Wrote {offset} bytes in {len(placements)} file(s)")
                if on_complete is not None:
                    on_complete()

        write = asyncio.ensure_future(loader.write_flash(placements, erase_all, progress))
        interrupted = False
        try:
            while True:
                try:
                    await asyncio.shield(write)
                    break
                except asyncio.CancelledError:
                    if write.cancelled():
                        raise
                    if not interrupted and not write.done():
                        logger.warning(f"Cancel requested on {session.port}; finishing the flash write first")
                    interrupted = True
        except (FlasherError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise FlashWriteError(f"Flash write failed: {e}") from e

        if not completed:
            raise FlashWriteError("Flash loader finished without writing the final file")
        return interrupted

    async def _reset(self, transport: Transport) -> None:
        await transport.set_rts(True)
        await asyncio.sleep(self.settings.reset_pulse_s)
        await transport.set_rts(False)

    async def _stream(
        self,
        transport: Transport,
        monitor: Optional[OutputObserver],
        stop_event: Optional[asyncio.Event],
    ) -> None:
        if monitor is None:
            return
        transport.start_pipe(monitor)
        if stop_event is not None:
            await stop_event.wait()
        else:
            await asyncio.get_running_loop().create_future()
