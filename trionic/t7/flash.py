"""Loading and flashing of Trionic 7 firmware images."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from ..ecu import CANClient, Config, ECUError, Frame, FrameType

logger = logging.getLogger(__name__)

REQUEST_ID = 0x240
RESPONSE_ID = 0x258

FLASH_SIZE = 0x80000
_T5_SIZE = 256 * 1024
_VALID_SIZES = (512 * 1024, 0x70100)
_MOTOROLA_MAGIC = b"\xff\xff\xfc\xef"
_T7_MAGIC = b"\xff\xff\xef\xfc"
_CHUNK = 60

# (position in the image, flash offset, end position)
T7_OFFSETS = (
    (0x000000, 0x000000, 0x07B000),
    (0x07FF00, 0x07FF00, 0x080000),
)


class FlashMixin:
    """Flash programming for a Trionic 7 client.

    The host class provides ``can``, ``cfg``, ``default_timeout``, ``ack``,
    ``data_initialization``, ``knock_knock`` and ``erase_ecu``.
    """

    retry_delay = 0.15

    can: CANClient
    cfg: Config
    default_timeout: float

    def load_bin_file(self, filename: str) -> bytes:
        """Read a firmware image, converting Motorola byte order if found."""
        try:
            data = bytearray(Path(filename).read_bytes())
        except OSError as err:
            raise ECUError(f"failed to read bin file: {err}") from err

        if len(data) == _T5_SIZE:
            raise ECUError("error: is this a Trionic 5 ECU binary?")
        if len(data) not in _VALID_SIZES:
            raise ECUError("invalid bin size")
        if bytes(data[:4]) == _MOTOROLA_MAGIC:
            logger.info("note: Motorola byte-order detected.")
            data[0::2], data[1::2] = data[1::2], data[0::2]
        return bytes(data)

    def flash_ecu(self, data: bytes) -> None:
        """Erase the ECU and write the image to it."""
        head = bytes(data[:4])
        if head != _T7_MAGIC:
            raise ECUError(
                f"error: bin doesn't appear to be for a Trionic 7 ECU! ({head.hex().upper()})"
            )
        if len(data) < FLASH_SIZE:
            raise ECUError(f"bin too short to flash: 0x{len(data):X} bytes")

        self.data_initialization()  # type: ignore[attr-defined]
        try:
            ok = self.knock_knock()  # type: ignore[attr-defined]
        except Exception as err:
            raise ECUError(f"failed to authenticate: {err}") from err
        if not ok:
            raise ECUError("failed to authenticate")

        self.erase_ecu()  # type: ignore[attr-defined]

        try:
            self.can.set_filter([RESPONSE_ID])
        except Exception as err:  # noqa: BLE001 - reported, not fatal
            self.cfg.on_error(err)  # type: ignore[misc]

        self.cfg.on_progress(-float(FLASH_SIZE))  # type: ignore[misc]
        self.cfg.on_message("Flashing ECU")  # type: ignore[misc]

        started = time.monotonic()
        for bin_pos, offset, end in T7_OFFSETS:
            pos = bin_pos
            for attempt in range(3):
                try:
                    self._write_jump(offset, end - pos)
                    while pos < end:
                        count = min(_CHUNK, end - pos)
                        self._write_range(pos, pos + count, data)
                        pos += count
                        self.cfg.on_progress(float(pos))  # type: ignore[misc]
                    break
                except Exception as err:
                    self.cfg.on_message(f"retrying writeRange: {err}")  # type: ignore[misc]
                    if attempt == 2:
                        raise
                    if self.retry_delay > 0:
                        time.sleep(self.retry_delay)

        exit_frame = Frame(
            REQUEST_ID,
            bytes((0x40, 0xA1, 0x01, 0x37, 0, 0, 0, 0)),
            FrameType.RESPONSE_REQUIRED,
        )
        try:
            resp = self.can.send_and_poll(exit_frame, self.default_timeout, RESPONSE_ID)
        except Exception as err:
            raise ECUError(f"error waiting for data transfer exit reply: {err}") from err
        d = resp.data
        self.ack(d[0], FrameType.OUTGOING)  # type: ignore[attr-defined]
        if len(d) < 4 or d[3] != 0x77:
            raise ECUError("exit download mode failed")

        self.cfg.on_message(f"Done, took: {round(time.monotonic() - started)}s")  # type: ignore[misc]

    def _write_jump(self, offset: int, length: int) -> None:
        """Request a download of ``length`` bytes to flash at ``offset``."""
        jump = bytes((0x41, 0xA1, 0x08, 0x34)) + (offset & 0xFFFFFF).to_bytes(3, "big") + b"\x00"
        jump2 = bytes((0x00, 0xA1)) + (length & 0xFFFFFF).to_bytes(3, "big") + bytes(3)
        logger.debug("writeJump: offset=%d, length=%d", offset, length)
        try:
            self.can.send_frame(REQUEST_ID, jump, FrameType.OUTGOING)
        except Exception as err:
            raise ECUError("failed to enable request download #1") from err
        try:
            resp = self.can.send_and_poll(
                Frame(REQUEST_ID, jump2, FrameType.RESPONSE_REQUIRED),
                self.default_timeout,
                RESPONSE_ID,
            )
        except Exception as err:
            raise ECUError("failed to enable request download #2") from err
        d = resp.data
        self.ack(d[0], FrameType.OUTGOING)  # type: ignore[attr-defined]
        if len(d) < 4 or d[3] != 0x74:
            logger.warning("%s", resp)
            raise ECUError("invalid response enabling download mode")

    def _write_range(self, start: int, end: int, data: bytes) -> None:
        """Send the bytes ``data[start:end]`` as one data transfer."""
        length = end - start
        pos = start
        rows = (length + 3) // 6
        frame = bytearray(8)
        first = True
        for row in range(rows, -1, -1):
            frame[1] = 0xA1
            frame[0] = row & 0xFF
            if first:
                frame[0] |= 0x40
                frame[2] = (length + 1) & 0xFF
                frame[3] = 0x36
                frame[4:8] = data[pos : pos + 4]
                pos += 4
                first = False
            elif row == 0:
                left = end - pos
                if not 0 <= left <= 6:
                    raise ECUError("data transfer sequence out of step")
                frame[2 : 2 + left] = data[pos : pos + left]
                pos += left
                if left < 8 - left:
                    frame[left + 2] = 0x00
            else:
                frame[2:8] = data[pos : pos + 6]
                pos += 6
            frame_type = FrameType.OUTGOING if row > 0 else FrameType.RESPONSE_REQUIRED
            self.can.send_frame(REQUEST_ID, bytes(frame), frame_type)

        try:
            resp = self.can.poll(self.default_timeout, RESPONSE_ID)
        except Exception as err:
            raise ECUError(
                f"error writing 0x{start:X} - 0x{end:X} was at pos 0x{pos:X}: {err}"
            ) from err
        d = resp.data
        self.ack(d[0], FrameType.OUTGOING)  # type: ignore[attr-defined]
        if len(d) < 4 or d[3] != 0x76:
            raise ECUError("ECU did not confirm write")