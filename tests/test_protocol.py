"""Tests for the pyserial transport and the esptool flash loader."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import serial
from esptool.util import FatalError

from mesh_flasher.catalog.types import FlashPlacement
from mesh_flasher.errors import DeviceError, FlashWriteError
from mesh_flasher.flash.guard import ConnectionGuard
from mesh_flasher.protocol.esp_loader import EsptoolLoader
from mesh_flasher.protocol.serial_transport import SerialTransport, touch_1200bps


def _mock_serial(read_data=b""):
    ser = MagicMock()
    ser.is_open = True
    ser.read.return_value = read_data
    ser.write.side_effect = lambda data: len(data)
    return ser


def _reads(*chunks):
    """read() side effect returning ``chunks`` in order, then nothing."""
    pending = list(chunks)
    return lambda size: pending.pop(0) if pending else b""


async def _piped_output(transport, until):
    output = []
    transport.start_pipe(output.append)
    for _ in range(200):
        if until("".join(output)):
            break
        await asyncio.sleep(0.005)
    await transport.drain_secondary()
    return "".join(output)


class TestSerialTransport:
    def test_serial_port_only_while_open(self):
        """The raw pyserial port is handed out only once the port is open."""
        transport = SerialTransport("/dev/ttyUSB0")
        with pytest.raises(DeviceError):
            transport.serial_port
        transport.ser = _mock_serial()
        assert transport.serial_port is transport.ser

    def test_open_read_write(self):
        """Opening clears stale input; reads and writes go to the port."""
        ser = _mock_serial(b"\xc0\x01")

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0")
            with patch("mesh_flasher.protocol.serial_transport.serial.Serial", return_value=ser):
                await transport.open()
            await transport.write(b"\xc0")
            return await transport.read(2)

        assert asyncio.run(scenario()) == b"\xc0\x01"
        ser.reset_input_buffer.assert_called_once()
        ser.write.assert_called_once_with(b"\xc0")

    def test_open_failure(self):
        """pyserial open errors surface as DeviceError."""
        with patch(
            "mesh_flasher.protocol.serial_transport.serial.Serial",
            side_effect=serial.SerialException("could not open port"),
        ):
            with pytest.raises(DeviceError):
                asyncio.run(SerialTransport("/dev/ttyUSB9").open())

    def test_read_before_open(self):
        with pytest.raises(DeviceError):
            asyncio.run(SerialTransport("/dev/ttyUSB0").read())

    def test_read_error_reports_disconnect(self):
        """A failing read raises and reports the disconnect once."""
        ser = _mock_serial()
        ser.read.side_effect = serial.SerialException("device disconnected")
        lost = []

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0")
            transport.on_disconnect = lost.append
            transport.ser = ser
            await transport.read()

        with pytest.raises(DeviceError):
            asyncio.run(scenario())
        assert len(lost) == 1

    def test_incomplete_write(self):
        """A short write is an error, not a silent truncation."""
        ser = _mock_serial()
        ser.write.side_effect = lambda data: len(data) - 1

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0")
            transport.ser = ser
            await transport.write(b"abc")

        with pytest.raises(DeviceError):
            asyncio.run(scenario())

    def test_pipe_and_teardown(self):
        """Piped output reaches the observer and teardown closes the port."""
        ser = _mock_serial(b"boot ok\n")
        output = []

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0", poll_interval=0.001)
            transport.ser = ser
            transport.start_pipe(output.append)
            while not output:
                await asyncio.sleep(0.005)
            await ConnectionGuard().teardown(transport)
            return transport

        transport = asyncio.run(scenario())
        assert output[0] == "boot ok\n"
        ser.cancel_read.assert_called()
        ser.cancel_write.assert_called()
        ser.close.assert_called_once()
        assert not transport.is_open

    def test_pipe_decodes_characters_split_across_reads(self):
        """A multi-byte character split between two reads arrives intact."""
        text = "Knoten üüü ✓\n"
        encoded = text.encode("utf-8")
        ser = _mock_serial()
        ser.read.side_effect = _reads(encoded[:8], encoded[8:])

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0", poll_interval=0.001)
            transport.ser = ser
            return await _piped_output(transport, lambda seen: seen.endswith("\n"))

        assert asyncio.run(scenario()) == text

    def test_pipe_flushes_truncated_character(self):
        """An incomplete trailing character is flushed as U+FFFD when the pipe ends."""
        ser = _mock_serial()
        ser.read.side_effect = _reads(b"ok \xe2\x9c")

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0", poll_interval=0.001)
            transport.ser = ser
            return await _piped_output(transport, lambda seen: seen.startswith("ok"))

        assert asyncio.run(scenario()) == "ok \ufffd"

    def test_release_is_idempotent(self):
        """Releasing twice closes the port once."""
        ser = _mock_serial()

        async def scenario():
            transport = SerialTransport("/dev/ttyUSB0")
            transport.ser = ser
            await transport.release()
            await transport.release()

        asyncio.run(scenario())
        ser.close.assert_called_once()

    def test_touch_1200bps(self):
        """The bootloader request opens the port at 1200 baud and closes it."""
        ser = MagicMock()
        with patch("mesh_flasher.protocol.serial_transport.serial.Serial", return_value=ser) as ctor:
            touch_1200bps("/dev/ttyACM0", hold_s=0)
        ctor.assert_called_once_with(port="/dev/ttyACM0", baudrate=1200)
        ser.close.assert_called_once()


def _connected_transport():
    transport = SerialTransport("/dev/ttyUSB0")
    transport.ser = _mock_serial()
    return transport


class TestEsptoolLoader:
    def test_connect(self):
        """Connect detects the chip on the open port and loads the stub."""
        esp = MagicMock(CHIP_NAME="ESP32-S3")
        transport = _connected_transport()
        with patch("mesh_flasher.protocol.esp_loader.detect_chip", return_value=esp) as detect, \
                patch("mesh_flasher.protocol.esp_loader.run_stub", return_value=esp):
            chip = asyncio.run(EsptoolLoader(transport, baudrate=921600).connect())
        assert chip == "ESP32-S3"
        assert detect.call_args.args[0] is transport.ser
        assert detect.call_args.kwargs["baud"] == 921600

    def test_connect_failure(self):
        """esptool connect errors surface as DeviceError."""
        with patch(
            "mesh_flasher.protocol.esp_loader.detect_chip",
            side_effect=FatalError("Failed to connect to Espressif device"),
        ):
            with pytest.raises(DeviceError):
                asyncio.run(EsptoolLoader(_connected_transport()).connect())

    def test_chunked_write_with_erase(self):
        """Images are erased, then written in chunks with progress per chunk."""
        loader = EsptoolLoader(_connected_transport(), chunk_size=4)
        loader.esp = MagicMock()
        progress = []
        placements = [FlashPlacement(b"A" * 6, 0x0), FlashPlacement(b"B" * 3, 0x260000)]

        with patch("mesh_flasher.protocol.esp_loader.erase_flash") as erase, \
                patch("mesh_flasher.protocol.esp_loader.write_flash") as write:
            asyncio.run(loader.write_flash(placements, True, lambda *a: progress.append(a)))

        erase.assert_called_once_with(loader.esp)
        assert [c.args[1] for c in write.call_args_list] == [
            [(0x0, b"AAAA")],
            [(0x4, b"AA")],
            [(0x260000, b"BBB")],
        ]
        assert progress == [(0, 0, 6), (0, 4, 6), (0, 6, 6), (1, 0, 3), (1, 3, 3)]

    def test_write_failure(self):
        """esptool write errors surface as FlashWriteError."""
        loader = EsptoolLoader(_connected_transport())
        loader.esp = MagicMock()
        with patch(
            "mesh_flasher.protocol.esp_loader.write_flash",
            side_effect=FatalError("Timed out waiting for packet header"),
        ):
            with pytest.raises(FlashWriteError):
                asyncio.run(loader.write_flash([FlashPlacement(b"x", 0x10000)], False, lambda *a: None))

    def test_write_requires_connect(self):
        with pytest.raises(FlashWriteError):
            asyncio.run(EsptoolLoader(_connected_transport()).write_flash([], False, lambda *a: None))
