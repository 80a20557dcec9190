"""
Serial transport on pyserial.

Wraps a ``serial.Serial`` port behind the async Transport contract. Every
blocking pyserial call runs in a worker thread so the event loop stays
free for deadline races and progress reporting.

Teardown is split into the four steps the ConnectionGuard drives:
cancel inbound, close outbound, drain the output pipe task, release.
"""

import asyncio
import codecs
import logging
import time
from typing import Optional

import serial
import serial.tools.list_ports

from mesh_flasher.errors import DeviceError
from mesh_flasher.protocol.transport import DisconnectCallback, OutputObserver

logger = logging.getLogger(__name__)

TOUCH_BAUD_RATE = 1200
TOUCH_HOLD_S = 0.5


class SerialTransport:
    """
    Async serial transport for one port.

    Example:
        transport = SerialTransport("/dev/ttyACM0", baudrate=115200)
        await transport.open()
        await transport.write(b"\\xc0")
        data = await transport.read(64)
        await transport.release()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        timeout: float = 0.1,
        poll_interval: float = 0.005,
    ):
        """
        Initialize transport.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            baudrate: Serial baud rate
            timeout: Read timeout in seconds for a single read call
            poll_interval: Pause between reads while piping device output
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.ser: Optional[serial.Serial] = None
        self.on_disconnect: Optional[DisconnectCallback] = None
        self._pipe_task: Optional[asyncio.Task] = None
        self._released = False

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    @property
    def serial_port(self) -> serial.Serial:
        """Underlying pyserial port, for loaders that drive it directly."""
        if not self.is_open:
            raise DeviceError(f"Serial port {self.port} not open")
        return self.ser

    def _open_blocking(self) -> serial.Serial:
        ser = serial.Serial(
            port=self.port,
            baudrate=self.baudrate,
            bytesize=8,
            parity="N",
            stopbits=1,
            timeout=self.timeout,
            write_timeout=self.timeout,
        )
        ser.reset_input_buffer()
        ser.reset_output_buffer()
        return ser

    async def open(self) -> None:
        """
        Open the port.

        Raises:
            DeviceError: If the port cannot be opened
        """
        try:
            ser = await asyncio.to_thread(self._open_blocking)
        except serial.SerialException as e:
            raise DeviceError(f"Cannot open port {self.port}: {e}")

        # Released while the open was in flight (deadline fired)
        if self._released:
            ser.close()
            raise DeviceError(f"Port {self.port} released during open")

        self.ser = ser
        logger.debug(f"Opened {self.port} at {self.baudrate} bps")

    def _lost(self, error: Exception) -> DeviceError:
        wrapped = DeviceError(f"Serial error on {self.port}: {error}")
        if self.on_disconnect is not None:
            self.on_disconnect(wrapped)
        return wrapped

    async def read(self, size: int = 1) -> bytes:
        """
        Read up to ``size`` bytes; returns b"" when nothing arrived in time.

        Raises:
            DeviceError: If the port fails or was never opened
        """
        ser = self.serial_port
        try:
            data = await asyncio.to_thread(ser.read, size)
        except (serial.SerialException, OSError) as e:
            raise self._lost(e)
        if data:
            logger.debug(f"<<< {data.hex().upper()}")
        return data

    async def write(self, data: bytes) -> None:
        """
        Write all of ``data``.

        Raises:
            DeviceError: If the write fails or is incomplete
        """
        ser = self.serial_port
        try:
            written = await asyncio.to_thread(ser.write, data)
        except (serial.SerialException, OSError) as e:
            raise self._lost(e)
        if written != len(data):
            raise DeviceError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data.hex().upper()}")

    async def set_rts(self, level: bool) -> None:
        ser = self.serial_port
        try:
            await asyncio.to_thread(setattr, ser, "rts", level)
        except (serial.SerialException, OSError) as e:
            raise self._lost(e)
        logger.debug(f"RTS {'high' if level else 'low'} on {self.port}")

    # ------------------------------------------------------------------
    # Output piping
    # ------------------------------------------------------------------

    async def _pipe(self, observer: OutputObserver) -> None:
        # Multi-byte characters may straddle two reads
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while self.is_open:
                data = await self.read(256)
                if data:
                    text = decoder.decode(data)
                    if text:
                        observer(text)
                else:
                    await asyncio.sleep(self.poll_interval)
        finally:
            tail = decoder.decode(b"", final=True)
            if tail:
                observer(tail)

    def start_pipe(self, observer: OutputObserver) -> None:
        """
        Forward decoded device output to ``observer`` until drained.

        Output is decoded as a UTF-8 stream; an incomplete trailing
        character is flushed as U+FFFD when the pipe ends.
        """
        if self._pipe_task is not None and not self._pipe_task.done():
            raise RuntimeError(f"Output pipe already running on {self.port}")
        self._pipe_task = asyncio.get_running_loop().create_task(self._pipe(observer))

    # ------------------------------------------------------------------
    # Teardown steps
    # ------------------------------------------------------------------

    async def cancel_inbound(self) -> None:
        if self.is_open:
            self.ser.cancel_read()

    async def close_outbound(self) -> None:
        if self.is_open:
            self.ser.cancel_write()
            await asyncio.to_thread(self.ser.flush)

    async def drain_secondary(self) -> None:
        """Cancel the output pipe task and wait for it to finish."""
        task, self._pipe_task = self._pipe_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def release(self) -> None:
        """Close the port. Safe to call more than once."""
        self._released = True
        if self.ser is not None:
            ser, self.ser = self.ser, None
            if ser.is_open:
                await asyncio.to_thread(ser.close)
                logger.debug(f"Closed {self.port}")


def list_serial_ports():
    """Available serial ports as pyserial ListPortInfo objects."""
    return list(serial.tools.list_ports.comports())


def touch_1200bps(port: str, hold_s: float = TOUCH_HOLD_S) -> None:
    """
    Request bootloader mode by opening the port at 1200 baud.

    nRF52 and RP2040 bootloaders reboot into their UF2 drive when the
    port is opened at 1200 baud and closed again.

    Raises:
        DeviceError: If the port cannot be opened
    """
    try:
        ser = serial.Serial(port=port, baudrate=TOUCH_BAUD_RATE)
    except serial.SerialException as e:
        raise DeviceError(f"Cannot open port {port}: {e}")
    try:
        logger.info(f"Opened {port} at {TOUCH_BAUD_RATE} bps for bootloader request")
        time.sleep(hold_s)
    finally:
        ser.close()
