"""Trionic 5 protocol: bootloader upload, memory reads, footer and ECU detection."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, TypeVar

from ..ecu import (
    CANClient,
    Config,
    ECUError,
    Frame,
    FrameType,
    Header,
    HeaderResult,
    load_config,
)
from .footer import get_identifier_from_footer

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_ID = 0x005
RESPONSE_ID = 0x00C

PARTNUMBER = 0x01
SOFTWARE_ID = 0x02
DATANAME = 0x03  # SW version
ENGINE_TYPE = 0x04
IMMO_CODE = 0x05
UNKNOWN = 0x06
ROM_END = 0xFC  # Always 07FFFF
ROM_OFFSET = 0xFD  # T5.5 = 040000, T5.2 = 020000
CODE_END = 0xFE

T5_HEADERS = [
    Header(desc="Part Number", id=0x01),
    Header(desc="Software ID", id=0x02),
    Header(desc="SW Version", id=0x03),
    Header(desc="Engine Type", id=0x04),
    Header(desc="IMMO Code", id=0x05),
    Header(desc="Other Info", id=0x06),
    Header(desc="ROM Start", id=0xFD),
    Header(desc="Code End", id=0xFC),
    Header(desc="ROM End", id=0xFE),
]

_FLASH_128K = {
    0xB8,  # Intel/CSI/OnSemi 28F512
    0x5D,  # Atmel 29C512
    0x25,  # AMD 28F512
}
_FLASH_256K = {
    0xD5,  # Atmel 29C010
    0xB5,  # SST 39F010
    0xB4,  # Intel/CSI/OnSemi 28F010
    0xA7,  # AMD 28F010
    0xA4,  # AMIC 29F010
    0x20,  # AMD/ST 29F010
}

_BOOTLOADER_SIZE = 1884
_FOOTER_ADDRESS = 0x7FF80
_FOOTER_SIZE = 0x80


class ECUType(IntEnum):
    T52ECU = 0
    T55ECU16MHZ_AMD_INTEL = 1
    T55ECU16MHZ_CATALYST = 2
    T55ECU20MHZ = 3
    AUTODETECT = 4
    UNKNOWN = 5
    T55ECU = 6
    T55AST52 = 7


_ADDRESS_WIDTH = {
    "S0": 2, "S1": 2, "S2": 3, "S3": 4, "S5": 2,
    "S6": 3, "S7": 4, "S8": 3, "S9": 2,
}


@dataclass(frozen=True)
class _SRecord:
    kind: str
    count: int
    address: int
    data: bytes
    checksum: int

    def calc_checksum(self) -> int:
        width = _ADDRESS_WIDTH[self.kind]
        total = self.count + sum(self.address.to_bytes(width, "big")) + sum(self.data)
        return ~total & 0xFF


def _parse_srec(text: str) -> list[_SRecord]:
    records = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        kind = line[:2]
        if kind not in _ADDRESS_WIDTH:
            raise ECUError(f"invalid srec record: {line}")
        try:
            raw = bytes.fromhex(line[2:])
        except ValueError as err:
            raise ECUError(f"invalid srec record: {line}") from err
        if not raw or len(raw) != raw[0] + 1:
            raise ECUError(f"invalid srec record length: {line}")
        width = _ADDRESS_WIDTH[kind]
        if len(raw) < width + 2:
            raise ECUError(f"invalid srec record length: {line}")
        records.append(
            _SRecord(
                kind=kind,
                count=raw[0],
                address=int.from_bytes(raw[1 : 1 + width], "big"),
                data=raw[1 + width : -1],
                checksum=raw[-1],
            )
        )
    return records


def _elapsed(start: float) -> str:
    ms = round((time.monotonic() - start) * 1000)
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:g}s"


def _payload(frame: Frame, minimum: int) -> bytes:
    if len(frame.data) < minimum:
        raise ECUError(f"short response: {frame}")
    return frame.data


class BaseClient:
    """Trionic 5 operations shared by the dump, flash and info commands."""

    retry_delay = 0.1

    def __init__(
        self,
        client: CANClient,
        cfg: Config | None = None,
        *,
        bootloader: str | None = None,
    ) -> None:
        self.can = client
        self.cfg = load_config(cfg)
        self.default_timeout = 0.25
        self.bootloader = bootloader
        self.bootloaded = False
        self._chip_types: bytes | None = None
        self._footer: bytes | None = None

    def _message(self, text: str) -> None:
        self.cfg.on_message(text)  # type: ignore[misc]

    def _progress(self, value: float) -> None:
        self.cfg.on_progress(value)  # type: ignore[misc]

    def _exchange(self, payload: bytes, timeout: float) -> Frame:
        frame = Frame(REQUEST_ID, payload, FrameType.RESPONSE_REQUIRED)
        return self.can.send_and_poll(frame, timeout, RESPONSE_ID)

    def _retry(self, action: Callable[[], T], attempts: int = 3) -> T:
        last: Exception | None = None
        for attempt in range(attempts):
            try:
                return action()
            except Exception as err:  # noqa: BLE001 - any transport failure is retried
                last = err
                if attempt < attempts - 1 and self.retry_delay > 0:
                    time.sleep(self.retry_delay)
        assert last is not None
        raise last

    def _ensure_bootloader(self) -> None:
        if not self.bootloaded:
            self.upload_bootloader()

    def get_chip_types(self) -> bytes:
        """Flash chip identification bytes, read once and then cached."""
        if self._chip_types:
            return self._chip_types
        resp = self._exchange(bytes((0xC9, 0, 0, 0, 0, 0, 0, 0)), 0.15)
        data = _payload(resp, 2)
        if data[0] != 0xC9 or data[1] != 0x00:
            raise ECUError("invalid GetChipTypes response")
        self._chip_types = data[2:]
        return self._chip_types

    def read_memory_by_address(self, address: int) -> bytes:
        """Read the six bytes ending at ``address``, in memory order."""
        payload = bytes((0xC7,)) + (address & 0xFFFFFFFF).to_bytes(4, "big") + bytes(3)
        try:
            resp = self._exchange(payload, 0.15)
        except Exception as err:
            raise ECUError(f"failed to read memory by address: {err}") from err
        return resp.data[2:][::-1]

    def get_ecu_footer(self) -> bytes:
        """The last 0x80 bytes of flash, read once and then cached."""
        if self._footer:
            return self._footer
        footer = bytearray(_FOOTER_SIZE)
        address = _FOOTER_ADDRESS + 5
        try:
            for i in range(_FOOTER_SIZE // 6):
                chunk = self.read_memory_by_address(address)
                footer[i * 6 : i * 6 + 6] = chunk[:6].ljust(6, b"\x00")
                address += 6
            last = self.read_memory_by_address(0x7FFFF)
        except ECUError as err:
            raise ECUError(f"failed to get ECU footer: {err}") from err
        for j in range(2, 6):
            footer[_FOOTER_SIZE - 6 + j] = last[j]
        self._footer = bytes(footer)
        return self._footer

    def get_ecu_checksum(self) -> bytes:
        """The four checksum bytes the bootloader computes over flash."""
        self._ensure_bootloader()
        try:
            resp = self._exchange(bytes((0xC8, 0, 0, 0, 0, 0, 0, 0)), 1.0)
        except Exception as err:
            raise ECUError(f"failed to get ECU checksum: {err}") from err
        return _payload(resp, 6)[2:6]

    def _send_bootloader_address_command(self, address: int, length: int) -> None:
        payload = (
            bytes((0xA5,))
            + (address & 0xFFFFFFFF).to_bytes(4, "big")
            + bytes((length & 0xFF, 0, 0))
        )
        try:
            resp = self._exchange(payload, 0.25)
        except Exception as err:
            raise ECUError(f"failed to sendBootloaderAddressCommand: {err}") from err
        data = resp.data
        if resp.length != 8 or data[0] != 0xA5 or data[1] != 0x00:
            raise ECUError("invalid response to sendBootloaderAddressCommand")

    def _send_boot_vector_address_sram(self, address: int) -> None:
        data = bytes((0xC1,)) + (address & 0xFFFFFFFF).to_bytes(4, "big") + bytes(3)
        self.can.send_frame(REQUEST_ID, data, FrameType.OUTGOING)

    def _send_bootloader_data_command(self, data: bytes) -> None:
        try:
            resp = self._exchange(data, 0.15)
        except Exception as err:
            raise ECUError(f"failed SBLDC: {err}") from err
        if _payload(resp, 2)[1] != 0x00:
            raise ECUError("failed to write")

    def upload_bootloader(self) -> None:
        """Upload the bootloader S-record image to ECU RAM and start it."""
        if self.bootloader is None:
            raise ECUError("no bootloader image configured")
        start = time.monotonic()
        self._progress(-float(_BOOTLOADER_SIZE))
        self._message("Uploading bootloader")

        progress = 0
        for rec in _parse_srec(self.bootloader):
            calculated = rec.calc_checksum()
            if rec.checksum != calculated:
                raise ECUError(
                    f"srecord CRC: {rec.checksum:X} does not match calculated CRC: {calculated:X}"
                )
            if rec.kind == "S0":
                self._retry(lambda: self._send_bootloader_address_command(0, 0))
            elif rec.kind == "S1":
                length = (rec.count - 3) & 0xFF
                address = rec.address
                self._retry(lambda: self._send_bootloader_address_command(address, length))
                seq = 0
                for frame_no in range(1 + length // 7):
                    chunk = rec.data[frame_no * 7 : frame_no * 7 + 7]
                    progress += len(chunk)
                    resp = self._exchange(bytes((seq,)) + chunk.ljust(7, b"\x00"), 0.15)
                    data = _payload(resp, 3)
                    if data[:3] == b"\x1c\x01\x00":
                        self._message("Bootloader already running")
                        self.bootloaded = True
                        return
                    if resp.length != 8 or data[0] != (frame_no * 7) & 0xFF or data[1] != 0x00:
                        raise ECUError(f"failed to upload bootloader: {data.hex().upper()}")
                    self._progress(float(progress))
                    seq = (seq + 7) & 0xFF
            elif rec.kind == "S9":
                try:
                    self._send_boot_vector_address_sram(rec.address)
                except Exception as err:
                    raise ECUError("failed to sendBootVectorAddressSRAM") from err
        self._message(f"Done, took: {_elapsed(start)}")
        self.bootloaded = True

    def info(self) -> list[HeaderResult]:
        """Identification values stored in the flash footer."""
        self._ensure_bootloader()
        footer = self.get_ecu_footer()
        return [
            HeaderResult(desc=h.desc, id=h.id, value=get_identifier_from_footer(footer, h.id))
            for h in T5_HEADERS
        ]

    def print_ecu_info(self) -> None:
        """Report the ECU type and log every footer value."""
        results = self.info()
        self._print_ecu_type()
        for r in results:
            logger.info("%s %s", r.desc, r.value)

    def _print_ecu_type(self) -> None:
        kind = self.determine_ecu()
        if kind is ECUType.T52ECU:
            self._message("This is a Trionic 5.2 ECU with 128 kB of FLASH")
        elif kind is ECUType.T55AST52:
            self._message("This is a Trionic 5.5 ECU with a T5.2 BIN")
        elif kind is ECUType.T55ECU:
            self._message("This is a Trionic 5.5 ECU with 256 kB of FLASH")
        else:
            raise ECUError("printECUType: unknown ECU")

    def determine_ecu(self) -> ECUType:
        """Work out the ECU variant from its flash chip and ROM offset."""
        footer = self.get_ecu_footer()
        chip = self.get_chip_types()
        rom_offset = get_identifier_from_footer(footer, ROM_OFFSET)

        chip_id = chip[5] if len(chip) > 5 else None
        if chip_id in _FLASH_128K:
            if rom_offset == "060000":
                return ECUType.T52ECU
            raise ECUError("!!! ERROR !!! This is a Trionic 5.2 ECU running an unknown firmware")
        if chip_id in _FLASH_256K:
            if rom_offset == "040000":
                return ECUType.T55ECU
            if rom_offset == "060000":
                return ECUType.T55AST52
            raise ECUError("!!! ERROR !!! This is a Trionic 5.5 ECU running an unknown firmware")
        raise ECUError("!!! ERROR !!! this is a unknown ECU")

    def reset_ecu(self) -> None:
        """Ask the bootloader to reset the ECU."""
        try:
            resp = self._exchange(bytes((0xC2, 0, 0, 0, 0, 0, 0, 0)), 0.15)
        except Exception as err:
            raise ECUError(f"failed to reset ECU: {err}") from err
        data = resp.data
        if len(data) < 3 or data[0] != 0xC2 or data[1] != 0x00 or data[2] != 0x08:
            raise ECUError("invalid response to reset ECU")
        self._message("ECU has been reset")