"""
Core workflow actions.

Synchronous entry points the CLI calls. Each runs the async engine to
completion, captures the package's log output, and converts failures into
an OperationResult instead of raising. Flashing goes through the safety
context for gating.
"""

import asyncio
import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence

from mesh_flasher.artifacts.locator import ArtifactLocator
from mesh_flasher.catalog.types import DeviceDescriptor, FirmwareDescriptor, FlashPlacement
from mesh_flasher.config import FlasherSettings
from mesh_flasher.errors import FlasherError, UnsupportedArchitecture
from mesh_flasher.flash.detector import LinkFactory, TargetAutoDetector
from mesh_flasher.flash.dispatch import FirmwareFlasher
from mesh_flasher.flash.orchestrator import prepare_placements
from mesh_flasher.flash.request import FlashRequest, is_serial_architecture
from mesh_flasher.protocol.transport import OutputObserver, ProgressCallback

from .messages import WarningCode, code_for_error
from .results import OperationResult
from .safety import SafetyContext, WritePermissionError, require_write_permission

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "mesh_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def describe_placements(placements: Sequence[FlashPlacement], names: Sequence[str]) -> List[str]:
    return [
        f"0x{p.address:06X}  {name}  ({len(p.data):,} bytes)"
        for p, name in zip(placements, names)
    ]


def _firmware_label(request: FlashRequest) -> str:
    if request.firmware is not None:
        return request.firmware.id
    if request.uploaded_file is not None:
        return Path(request.uploaded_file).name
    return ""


async def _flash_until_interrupted(flasher: FirmwareFlasher, request: FlashRequest, **kwargs):
    """
    Run a flash with Ctrl-C ending device output instead of the run.

    The first SIGINT sets the stop event, so streaming ends and the run
    finishes DONE. A second SIGINT goes to the previous handler.
    """
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    if threading.current_thread() is not threading.main_thread():
        return await flasher.flash(request, stop_event=stop_event, **kwargs)

    previous = signal.getsignal(signal.SIGINT)
    interrupts = []

    def stop() -> None:
        logger.info("Stopping device output (Ctrl-C again aborts)")
        stop_event.set()

    def on_interrupt(signum, frame) -> None:
        interrupts.append(signum)
        if len(interrupts) == 1:
            loop.call_soon_threadsafe(stop)
        elif callable(previous):
            previous(signum, frame)
        elif previous != signal.SIG_IGN:
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, on_interrupt)
    try:
        return await flasher.flash(request, stop_event=stop_event, **kwargs)
    finally:
        signal.signal(signal.SIGINT, previous)


def _failure(operation: str, error: BaseException, request: Optional[FlashRequest] = None) -> OperationResult:
    result = OperationResult.failure(
        operation=operation,
        error=str(error),
        target=request.target.name if request else "",
    )
    if request is not None:
        result.firmware = _firmware_label(request)
    if isinstance(error, FlasherError):
        result.metadata["error_code"] = code_for_error(error).value
        result.metadata["category"] = error.category
    elif isinstance(error, WritePermissionError):
        result.metadata["error_code"] = WarningCode.W_WRITE_DISABLED.value
        result.metadata["details"] = error.details
    return result


def plan_flash(
    request: FlashRequest,
    settings: Optional[FlasherSettings] = None,
    locator: Optional[ArtifactLocator] = None,
) -> OperationResult:
    """
    Dry run: resolve artifacts and placements without touching a device.

    Returns:
        OperationResult with:
            - placements: "0xADDR  name  (size)" per file
            - bytes_len: total bytes that would be written
            - metadata["method"]: "serial" or "uf2"
    """
    settings = settings or FlasherSettings()
    locator = locator or ArtifactLocator(
        archive_mirror=settings.archive_mirror, http_timeout=settings.http_timeout_s
    )

    with _capture_logs() as logs:
        try:
            names = request.artifact_names()
            if request.is_uf2:
                data = asyncio.run(locator.resolve(request.firmware, names[0], request.uploaded_file))
                placements_desc = [f"UF2  {names[0]}  ({len(data):,} bytes)"]
                total = len(data)
                method = "uf2"
            elif is_serial_architecture(request.target.architecture):
                placements = asyncio.run(prepare_placements(locator, request))
                placements_desc = describe_placements(placements, names)
                total = sum(len(p.data) for p in placements)
                method = "serial"
            else:
                raise UnsupportedArchitecture(request.target.architecture)

            result = OperationResult.success(
                operation="plan_flash",
                target=request.target.name,
                bytes_len=total,
                firmware=_firmware_label(request),
                placements=placements_desc,
            )
            result.metadata["method"] = method
            result.add_warning("Dry run - device was not written")
            if request.clean_install and method == "serial":
                result.add_warning("Clean install will erase the entire flash")
        except FlasherError as e:
            logger.error(f"plan_flash failed: {e}")
            result = _failure("plan_flash", e, request)
        except Exception as e:
            logger.exception("plan_flash failed")
            result = _failure("plan_flash", e, request)
        result.logs = logs
        return result


def flash_target(
    request: FlashRequest,
    port: Optional[str],
    safety_ctx: SafetyContext,
    settings: Optional[FlasherSettings] = None,
    flasher: Optional[FirmwareFlasher] = None,
    on_progress: Optional[ProgressCallback] = None,
    monitor: Optional[OutputObserver] = None,
    uf2_drive: Optional[Path] = None,
    copy_to_uf2_drive: bool = False,
    stop_on_interrupt: bool = False,
) -> OperationResult:
    """
    Flash a target after passing the safety gate.

    Args:
        request: Job to flash
        port: Serial port (serial targets only)
        safety_ctx: Write permission and confirmation state
        settings: Runtime settings
        flasher: Preconfigured flasher (default: pyserial + esptool)
        on_progress: Progress callback (file_index, written, total)
        monitor: Device output observer after reset
        uf2_drive: Bootloader drive to copy UF2 images onto
        copy_to_uf2_drive: Search for a mounted bootloader drive
        stop_on_interrupt: Ctrl-C ends device output and the result is still
            returned (main thread only)

    Returns:
        OperationResult with:
            - ok: True if the image was written (or saved, for UF2 targets)
            - bytes_len: bytes written
            - metadata["method"], metadata["saved_path"], metadata["copied_to"]
    """
    settings = settings or FlasherSettings()

    with _capture_logs() as logs:
        try:
            require_write_permission(
                safety_ctx,
                placements_desc=", ".join(request.artifact_names()),
            )
        except WritePermissionError as e:
            result = _failure("flash", e, request)
            result.logs = logs
            return result

        if safety_ctx.simulate:
            result = plan_flash(request, settings, flasher.locator if flasher else None)
            result.operation = "flash"
            return result

        if flasher is None:
            flasher = FirmwareFlasher(
                ArtifactLocator(archive_mirror=settings.archive_mirror, http_timeout=settings.http_timeout_s),
                settings,
            )

        try:
            flash_kwargs = dict(
                port=port,
                on_progress=on_progress,
                monitor=monitor,
                uf2_drive=uf2_drive,
                copy_to_uf2_drive=copy_to_uf2_drive,
            )
            if stop_on_interrupt:
                run = _flash_until_interrupted(flasher, request, **flash_kwargs)
            else:
                run = flasher.flash(request, **flash_kwargs)
            outcome = asyncio.run(run)
            result = OperationResult.success(
                operation="flash",
                target=request.target.name,
                bytes_len=outcome.bytes_written,
                firmware=_firmware_label(request),
            )
            result.metadata["method"] = outcome.method
            if outcome.session is not None:
                result.metadata["state"] = outcome.session.state.value
            if outcome.saved_path is not None:
                result.metadata["saved_path"] = str(outcome.saved_path)
            if outcome.copied_to is not None:
                result.metadata["copied_to"] = str(outcome.copied_to)
            elif outcome.method == "uf2":
                result.add_warning(f"UF2 image saved to {outcome.saved_path}; copy it to the bootloader drive")
            if request.clean_install and outcome.method == "serial":
                result.add_warning("Clean install erased the entire flash; device settings were reset")
        except FlasherError as e:
            result = _failure("flash", e, request)
        except ValueError as e:
            result = _failure("flash", e, request)
        except Exception as e:
            logger.exception("flash failed")
            result = _failure("flash", e, request)
        result.logs = logs
        return result


def fetch_artifact(
    firmware: Optional[FirmwareDescriptor],
    logical_name: str,
    destination: Path,
    uploaded_file: Optional[Path] = None,
    settings: Optional[FlasherSettings] = None,
    locator: Optional[ArtifactLocator] = None,
) -> OperationResult:
    """
    Resolve one artifact and save it.

    Returns:
        OperationResult with metadata["saved_path"] on success
    """
    settings = settings or FlasherSettings()
    locator = locator or ArtifactLocator(
        archive_mirror=settings.archive_mirror, http_timeout=settings.http_timeout_s
    )

    with _capture_logs() as logs:
        try:
            data = asyncio.run(locator.resolve(firmware, logical_name, uploaded_file))
            destination = Path(destination)
            if destination.is_dir():
                destination = destination / logical_name
            destination.write_bytes(data)
            result = OperationResult.success(
                operation="fetch",
                bytes_len=len(data),
                firmware=firmware.id if firmware else "",
            )
            result.metadata["saved_path"] = str(destination)
        except FlasherError as e:
            logger.error(f"fetch failed: {e}")
            result = _failure("fetch", e)
        except OSError as e:
            logger.error(f"fetch failed: {e}")
            result = _failure("fetch", e)
        result.logs = logs
        return result


def detect_target(
    link_factory: LinkFactory,
    targets: Sequence[DeviceDescriptor],
    settings: Optional[FlasherSettings] = None,
    preselected: Optional[DeviceDescriptor] = None,
) -> OperationResult:
    """
    Identify the connected device against the catalog.

    Returns:
        OperationResult with metadata["target"] (DeviceDescriptor) on success
    """
    settings = settings or FlasherSettings()
    detector = TargetAutoDetector(link_factory, targets, settings.detect_deadline_ms)

    with _capture_logs() as logs:
        try:
            target = asyncio.run(detector.detect(preselected=preselected))
            result = OperationResult.success(operation="detect", target=target.name)
            result.metadata["target"] = target
            if target is preselected:
                result.add_warning("Device did not announce itself; keeping the selected target")
        except FlasherError as e:
            logger.error(f"detect failed: {e}")
            result = _failure("detect", e)
        result.logs = logs
        return result
