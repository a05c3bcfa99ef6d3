"""Reading the identification fields stored at the end of a Trionic 7 image."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_SEARCH_WINDOW = 0x1FF


@dataclass
class BinInfo:
    """Identification fields of a Trionic 7 firmware image."""

    vin: str = ""  # 0x90
    hw_part_no: str = ""  # 0x91
    immo_code: str = ""  # 0x92
    software_part_no: str = ""  # 0x94
    software_version: str = ""  # 0x95
    engine_type: str = ""  # 0x97
    tester: str = ""  # 0x98
    software_date: str = ""  # 0x99


_BIN_INFO_FIELDS = (
    ("vin", 0x90),
    ("hw_part_no", 0x91),
    ("immo_code", 0x92),
    ("software_part_no", 0x94),
    ("software_version", 0x95),
    ("engine_type", 0x97),
    ("tester", 0x98),
    ("software_date", 0x99),
)


def _byte_at(data: bytes, index: int) -> int:
    if index < 0:
        raise ValueError("header field runs past the start of the image")
    return data[index]


def get_header_field(data: bytes, field_id: int) -> str:
    """Return the value of a header field, searching backwards from the end of the image.

    Fields are stored as length byte, id byte and then the value, each read
    towards lower addresses. When a field occurs several times the last one
    found wins. Raises LookupError if the field is absent.
    """
    size = len(data)
    addr = size - 1
    answer: bytes | None = None
    while addr > size - _SEARCH_WINDOW:
        field_length = _byte_at(data, addr)
        if field_length in (0x00, 0xFF):
            break
        addr -= 1
        found_id = _byte_at(data, addr)
        addr -= 1
        if found_id == field_id:
            answer = bytes(_byte_at(data, addr - i) for i in range(field_length))
            addr -= field_length
            logger.debug("0x%02x %d> %r", found_id, len(answer), answer)
        addr -= field_length
    if answer is None:
        raise LookupError(f"did not find header for id 0x{field_id:02x}")
    return answer.decode("latin-1")


def get_bin_info(data: bytes) -> BinInfo:
    """Collect the identification fields of an image; missing ones are left empty."""
    values: dict[str, str] = {}
    for name, field_id in _BIN_INFO_FIELDS:
        try:
            values[name] = get_header_field(data, field_id)
        except LookupError as err:
            logger.warning("%s", err)
            values[name] = ""
    return BinInfo(**values)