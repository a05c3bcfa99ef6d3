"""Trionic 5 client: dumping, flashing and erasing through the bootloader."""

from __future__ import annotations

import logging
import time

from ..ecu import DTC, CANClient, Config, ECUError, EcuInfo, list_ecus, register
from .base import BaseClient, ECUType, _elapsed
from .footer import calculate_bin_checksum

logger = logging.getLogger(__name__)

FLASH_END = 0x80000
_BLOCK_SIZE = 0x80
_SRAM_SIZE = 0x8000


def get_start_address(ecu_type: ECUType) -> int:
    """First flash address holding firmware for the given ECU variant."""
    if ecu_type in (ECUType.T52ECU, ECUType.T55AST52):
        return 0x60000
    return 0x40000


class Client(BaseClient):
    """Trionic 5 ECU reached through the uploaded bootloader."""

    model = "Trionic 5"

    def _read_with_retry(self, address: int, attempts: int = 3) -> bytes:
        last: Exception | None = None
        for attempt in range(attempts):
            try:
                return self.read_memory_by_address(address)
            except Exception as err:  # noqa: BLE001 - every failure is retried
                last = err
                self.cfg.on_error(  # type: ignore[misc]
                    ECUError(f"retrying to read memory by address: {err}")
                )
                if attempt < attempts - 1 and self.retry_delay > 0:
                    time.sleep(self.retry_delay)
        assert last is not None
        raise last

    def dump_ecu(self) -> bytes:
        """Read the firmware area of flash and compare it with the ECU checksum."""
        self._ensure_bootloader()
        start = get_start_address(self.determine_ecu())
        length = FLASH_END - start

        self._progress(-float(length))
        self._message("Dumping ECU")

        buffer = bytearray(length)
        started = time.monotonic()
        progress = 0
        address = start + 5
        for i in range(length // 6):
            chunk = self._read_with_retry(address)
            count = min(len(chunk), length - i * 6)
            buffer[i * 6 : i * 6 + count] = chunk[:count]
            progress += len(chunk)
            address += 6
            self._progress(float(progress))

        leftover = length % 6
        if leftover:
            chunk = self._read_with_retry(start + length - 1)
            if len(chunk) < 6:
                raise ECUError("short response reading memory by address")
            for j in range(6 - leftover, 6):
                buffer[length - 6 + j] = chunk[j]
                progress += 1
            self._progress(float(progress))

        self._progress(float(length))
        self._message(f"Done, took: {_elapsed(started)}")

        reported = self.get_ecu_checksum()
        calculated = calculate_bin_checksum(bytes(buffer))
        if bytes(reported) != calculated:
            self.cfg.on_error(  # type: ignore[misc]
                ECUError("Dumped bin and calculated checksum from ECU does not match")
            )
            self.cfg.on_error(  # type: ignore[misc]
                ECUError(
                    f"ECU reported checksum: {bytes(reported).hex().upper()}, "
                    f"calculated: {calculated.hex().upper()}"
                )
            )
        return bytes(buffer)

    def flash_ecu(self, data: bytes) -> None:
        """Erase flash and write ``data`` to it, skipping blocks that are all 0xFF."""
        self._ensure_bootloader()
        start = get_start_address(self.determine_ecu())
        self.erase_ecu()

        self._progress(-float(len(data)))
        self._message("Flashing ECU")

        started = time.monotonic()
        bytes_read = 0
        frame = bytearray(8)
        while start + bytes_read < FLASH_END:
            block = bytes(data[bytes_read : bytes_read + _BLOCK_SIZE])
            if len(block) != _BLOCK_SIZE:
                raise ECUError(f"reading the BIN failed after: 0x{bytes_read:X} bytes")

            if block.count(0xFF) < _BLOCK_SIZE:
                self._send_bootloader_address_command(start + bytes_read, _BLOCK_SIZE)
                for i, value in enumerate(block):
                    if i % 7 == 0:
                        frame[0] = i
                    frame[i % 7 + 1] = value
                    if i % 7 == 6 or i == _BLOCK_SIZE - 1:
                        try:
                            self._send_bootloader_data_command(bytes(frame))
                        except ECUError as err:
                            raise ECUError(
                                f"!!! FLASHing Failed !!! after: 0x{bytes_read:X} bytes: {err}"
                            ) from err
            bytes_read += _BLOCK_SIZE
            self._progress(float(bytes_read))

        self._message(f"Done, took: {_elapsed(started)}")

    def erase_ecu(self) -> None:
        """Erase the whole flash through the bootloader."""
        started = time.monotonic()
        self._ensure_bootloader()
        self._progress(-100.0)
        self._message("Erasing FLASH...")

        resp = self._exchange(bytes((0xC0, 0, 0, 0, 0, 0, 0, 0)), 20.0)
        data = resp.data
        if len(data) >= 2 and data[0] == 0xC0 and data[1] == 0x00:
            self._message(f"FLASH erased, took: {_elapsed(started)}\n")
            self._progress(100.0)
            return
        raise ECUError(f"erase FAILED: {data.hex().upper()}")

    def get_sram_snapshot(self) -> bytes:
        """Read the 32 kB of SRAM."""
        return self._read_ram(0, _SRAM_SIZE)

    def _read_ram(self, address: int, length: int) -> bytes:
        out = bytearray(length)
        address += 5
        count = -(-length // 6)
        started = time.monotonic()
        for i in range(count):
            chunk = self.read_memory_by_address(address)
            end = min(i * 6 + 6, length)
            out[i * 6 : end] = chunk[: end - i * 6]
            address += 6
        logger.info("took: %s", _elapsed(started))
        return bytes(out)

    def read_dtc(self) -> list[DTC]:
        """Reading trouble codes is not available through the T5 bootloader."""
        reason = f"reading DTCs is not supported on {self.model}"
        raise ECUError(reason)


def _create(client: CANClient, cfg: Config | None) -> Client:
    return Client(client, cfg)


if "Trionic 5" not in list_ecus():
    register(
        EcuInfo(
            name="Trionic 5",
            factory=_create,
            can_rate=615.384,
            filter=[0x00, 0x05, 0x06, 0x0C],
        )
    )