"""The identification footer of Trionic 7 firmware files.

The footer sits at the end of the image and is read towards lower
addresses: a length byte, an id byte and the value, field after field.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import BinaryIO

logger = logging.getLogger(__name__)

_FOOTER_START = 0x07FE00
_CHECKSUM_AREAS = 16


def _go_quote(data: bytes) -> str:
    parts = []
    for b in data:
        if b == 0x22:
            parts.append('\\"')
        elif b == 0x5C:
            parts.append("\\\\")
        elif b == 0x0A:
            parts.append("\\n")
        elif b == 0x09:
            parts.append("\\t")
        elif b == 0x0D:
            parts.append("\\r")
        elif 0x20 <= b < 0x7F:
            parts.append(chr(b))
        else:
            parts.append(f"\\x{b:02x}")
    return '"' + "".join(parts) + '"'


@dataclass
class FileHeaderField:
    """One footer field: its id, declared length and value bytes."""

    id: int
    length: int
    data: bytes = b""

    def _require(self, count: int) -> bytes:
        if len(self.data) < count:
            raise ValueError(f"field 0x{self.id:02X} holds fewer than {count} bytes")
        return bytes(self.data[:count])

    def set_string(self, value: str) -> None:
        raw = value.encode("latin-1")
        if len(raw) > self.length:
            raise ValueError("to big")
        self.data = raw

    def __str__(self) -> str:
        return bytes(self.data).decode("latin-1")

    def set_int(self, n: int) -> None:
        self.data = (n & 0xFFFFFFFF).to_bytes(4, "big")

    def as_int(self) -> int:
        return int.from_bytes(self._require(4), "big")

    def small_int(self) -> int:
        return int.from_bytes(self._require(2), "big")

    def as_byte(self) -> int:
        return self._require(1)[0]

    def date(self) -> bytes:
        """The first five bytes of the value, zero padded."""
        return bytes(self.data[:5]).ljust(5, b"\x00")

    def pretty(self) -> str:
        return f"ID: {self.id:02X}, Length: {self.length}, Data: {_go_quote(bytes(self.data))}"


def read_field(file: BinaryIO) -> FileHeaderField:
    """Read the field whose length byte is at the current position.

    Leaves the position at the length byte of the next field.
    """
    size_byte = file.read(1)
    file.seek(-2, io.SEEK_CUR)
    id_byte = file.read(1)
    if len(size_byte) != 1 or len(id_byte) != 1:
        raise ValueError("truncated header field")
    field_id = id_byte[0]
    if field_id == 0xFF:
        return FileHeaderField(id=0xFF, length=0)
    size = size_byte[0]
    file.seek(-(size + 1), io.SEEK_CUR)
    data = file.read(size)
    if len(data) != size:
        raise ValueError("truncated header field")
    file.seek(-(size + 1), io.SEEK_CUR)
    return FileHeaderField(id=field_id, length=size, data=data[::-1])


def _text_field(field_id: int, value: str) -> FileHeaderField:
    raw = value.encode("latin-1")
    return FileHeaderField(field_id, len(raw), raw)


def _number_field(field_id: int, value: int, width: int) -> FileHeaderField:
    mask = (1 << (8 * width)) - 1
    return FileHeaderField(field_id, width, (value & mask).to_bytes(width, "big"))


@dataclass
class FileHeader:
    """Meta data held in the footer of a Trionic 7 firmware file."""

    chassis_id_counter: int = 0
    chassis_id_detected: bool = False
    immo_code_detected: bool = False
    symbol_table_marker_detected: bool = False
    symbol_table_checksum_detected: bool = False
    f2_checksum_detected: bool = False

    chassis_id: str = "0" * 17
    immobilizer_id: str = "0" * 15
    rom_checksum_type: int = 0
    bottom_of_flash: int = 0
    rom_checksum_error: int = 0
    value_f5: int = 0
    value_f6: int = 0
    value_f7: int = 0
    value_f8: int = 0
    value_9c: int = 0
    symbol_table_address: int = 0
    vehicle_id_nr: str = "0" * 9
    date_modified: str = "0000"
    last_modified_by: bytearray = field(
        default_factory=lambda: bytearray((0x42, 0xFB, 0xFA, 0xFF, 0xFF))
    )
    test_serial_nr: str = "050225"
    engine_type: str = "0" * 13
    ecu_hardware_nr: str = "0" * 7
    software_version: str = "0" * 12
    car_description: str = "0" * 20
    part_number: str = "0" * 7
    checksum_f2: int = 0
    checksum_fb: int = 0
    fw_length: int = 0

    @property
    def vin(self) -> str:
        return self.chassis_id

    @vin.setter
    def vin(self, value: str) -> None:
        if len(value) > 17:
            raise ValueError("VIN to long")
        self.chassis_id = value

    def set_last_modified_by(self, value: int, pos: int) -> None:
        self.last_modified_by[pos] = value

    def _parse_field(self, fhf: FileHeaderField) -> None:
        fid = fhf.id
        if fid == 0x90:
            self.chassis_id = str(fhf)
            self.chassis_id_detected = True
            self.chassis_id_counter += 1
        elif fid == 0x91:
            self.vehicle_id_nr = str(fhf)
        elif fid == 0x92:
            self.immobilizer_id = str(fhf)
            self.immo_code_detected = True
        elif fid == 0x93:
            self.ecu_hardware_nr = str(fhf)
        elif fid == 0x94:
            self.part_number = str(fhf)
        elif fid == 0x95:
            self.software_version = str(fhf)
        elif fid == 0x97:
            self.car_description = str(fhf)
        elif fid == 0x98:
            self.engine_type = str(fhf)
        elif fid == 0x99:
            self.test_serial_nr = str(fhf)
        elif fid == 0x9A:
            self.date_modified = str(fhf)
        elif fid == 0x9B:
            self.symbol_table_address = fhf.as_int()
            self.symbol_table_marker_detected = True
        elif fid == 0x9C:
            self.value_9c = fhf.as_int()
            self.symbol_table_checksum_detected = True
        elif fid == 0xF2:
            self.checksum_f2 = fhf.as_int()
            self.f2_checksum_detected = True
        elif fid == 0xF5:
            self.value_f5 = fhf.small_int()
        elif fid == 0xF6:
            self.value_f6 = fhf.small_int()
        elif fid == 0xF7:
            self.value_f7 = fhf.small_int()
        elif fid == 0xF8:
            self.value_f8 = fhf.small_int()
        elif fid == 0xF9:
            self.rom_checksum_error = fhf.as_byte()
        elif fid == 0xFA:
            self.last_modified_by = bytearray(fhf.date())
        elif fid == 0xFB:
            self.checksum_fb = fhf.as_int()
        elif fid == 0xFC:
            self.bottom_of_flash = fhf.as_int()
        elif fid == 0xFD:
            self.rom_checksum_type = fhf.as_int()
        elif fid == 0xFE:
            self.fw_length = fhf.as_int()
        else:
            raise ValueError(f"Unknown ID: 0x{fid:02X}")

    def _clear_footer(self, file: BinaryIO) -> None:
        logger.info("clear footer")
        end = file.seek(0, io.SEEK_END)
        length = end - _FOOTER_START
        if length < 0:
            raise ValueError("file too small to hold a Trionic 7 footer")
        file.seek(_FOOTER_START, io.SEEK_SET)
        file.write(b"\xff" * length)

    def _new_footer_fields(
        self, create_9b: bool, create_9c: bool, create_f2: bool
    ) -> list[FileHeaderField]:
        fields = [
            _text_field(0x91, self.vehicle_id_nr),
            _text_field(0x94, self.part_number),
            _text_field(0x95, self.software_version),
            _text_field(0x97, self.car_description),
            _text_field(0x9A, self.date_modified),
        ]
        if create_9c:
            fields.append(_number_field(0x9C, self.value_9c, 4))
        if create_9b:
            fields.append(_number_field(0x9B, self.symbol_table_address, 4))
        if create_f2:
            fields.append(_number_field(0xF2, self.checksum_f2, 4))
        fields += [
            _number_field(0xFB, self.checksum_fb, 4),
            _number_field(0xFC, self.bottom_of_flash, 4),
            _number_field(0xFD, self.rom_checksum_type, 4),
            _number_field(0xFE, self.fw_length, 4),
            FileHeaderField(0xFA, 5, bytes(self.last_modified_by)),
            _text_field(0x92, self.immobilizer_id),
            _text_field(0x93, self.ecu_hardware_nr),
            _number_field(0xF8, self.value_f8, 2),
            _number_field(0xF7, self.value_f7, 2),
            _number_field(0xF6, self.value_f6, 2),
            _number_field(0xF5, self.value_f5, 2),
            _text_field(0x90, self.chassis_id),
            _text_field(0x99, self.test_serial_nr),
            _text_field(0x98, self.engine_type),
            FileHeaderField(0xF9, 1, b"\x00"),
        ]
        return fields

    def _create_new_footer(
        self, file: BinaryIO, create_9b: bool, create_9c: bool, create_f2: bool
    ) -> None:
        logger.info("write footer")
        file.seek(-1, io.SEEK_END)
        for fhf in self._new_footer_fields(create_9b, create_9c, create_f2):
            self._write_field(file, fhf)

    @staticmethod
    def _write_field(file: BinaryIO, fhf: FileHeaderField) -> None:
        logger.debug("%s", fhf.pretty())
        file.write(bytes([fhf.length & 0xFF]))
        file.seek(-2, io.SEEK_CUR)
        file.write(bytes([fhf.id]))
        file.seek(-2, io.SEEK_CUR)
        for i in range(fhf.length):
            file.write(bytes([fhf.data[i]]))
            file.seek(-2, io.SEEK_CUR)


def load_file_header(filename: str, auto_fix_footer: bool) -> FileHeader:
    """Parse the footer of a firmware file.

    If the footer lacks the VIN or immobilizer code, or holds several VINs,
    and ``auto_fix_footer`` is set, the footer area is cleared and rewritten.
    """
    header = FileHeader()
    with open(filename, "r+b") as file:
        file.seek(-1, io.SEEK_END)
        while True:
            fhf = read_field(file)
            if fhf.id in (0xFF, 0x00):
                break
            header._parse_field(fhf)

        footer_bad = (
            header.chassis_id_counter > 1
            or not header.immo_code_detected
            or not header.chassis_id_detected
        )
        if footer_bad and auto_fix_footer:
            logger.info("bad footer detected & auto fix enabled")
            header._clear_footer(file)
            header._create_new_footer(
                file,
                header.symbol_table_marker_detected,
                header.symbol_table_checksum_detected,
                header.f2_checksum_detected,
            )
    logger.debug("%r", header)
    return header


@dataclass
class _ChecksumArea:
    addr: int = 0
    length: int = 0


def verify_checksum(data: bytes) -> bool:
    """Check the image against its checksum areas.

    The area table holds sixteen empty entries, so every image passes.
    """
    areas = [_ChecksumArea() for _ in range(_CHECKSUM_AREAS)]
    return all(area.addr + area.length <= len(data) for area in areas)