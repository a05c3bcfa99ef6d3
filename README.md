# trionic

A library for talking to Saab Trionic engine control units over a CAN
bus. It reads ECU information, dumps and flashes the firmware of
Trionic 5 and Trionic 7 units, and examines firmware images on disk. It
also has offline helpers for Trionic 8 trouble codes, security keys and
partition checksums.

The package has no runtime dependencies.

## Installing

```
pip install .
pip install ".[test]"   # with pytest
```

## The CAN connection

The package does not open a CAN adapter itself. You hand every ECU
client an object that implements the `trionic.ecu.CANClient` protocol:

- `send(frame)` and `send_frame(identifier, data, frame_type)`
- `send_and_poll(frame, timeout, *identifiers)` returning the reply `Frame`
- `poll(timeout, *identifiers)` returning the next matching `Frame`
- `subscribe(*identifiers)` returning a `queue.Queue` of frames
- `set_filter(identifiers)` and `close()`

Timeouts are in seconds. A `Frame` holds an `identifier`, its `data`
bytes and a `FrameType` (`FrameType.INCOMING`, `FrameType.OUTGOING` or
`FrameType.RESPONSE_REQUIRED`).

## Choosing an ECU

ECU clients register themselves when their module is imported:
`trionic.t5.client` registers `"Trionic 5"` and `trionic.t7.client`
registers `"Trionic 7"`.

```python
import trionic.t5.client
import trionic.t7.client
from trionic import ecu

print(ecu.list_ecus())             # ['Trionic 5', 'Trionic 7']
rate = ecu.can_rate("Trionic 7")   # 500 (kbit/s), 0 for an unknown name
ids = ecu.filters("Trionic 7")     # [0x238, 0x258, 0x266], [] if unknown

config = ecu.Config(name="Trionic 7")
client = ecu.new(my_can_client, config)   # raises ECUError for unknown names
```

`Config` carries optional `on_progress`, `on_message` and `on_error`
callbacks; `load_config` fills in logging defaults for any that are
missing. A negative progress value announces the total of the next
operation, positive values report how far it has come.

Both clients offer `info()`, `print_ecu_info()`, `read_dtc()`,
`dump_ecu()`, `flash_ecu(data)`, `erase_ecu()` and `reset_ecu()`.
`info()` returns a list of `HeaderResult` entries. Failures are raised
as `ECUError`.

## Trionic 5

`trionic.t5.client.Client` works through a bootloader that it uploads
into the ECU's SRAM before reading or writing flash. The bootloader image
is not shipped with the package: pass its S-record text as
`Client(can, config, bootloader=text)`, or set the client's `bootloader`
attribute before use. Without it, operations that need the bootloader
raise `ECUError("no bootloader image configured")`.

- `determine_ecu()` returns an `ECUType` (`T52ECU`, `T55ECU` or
  `T55AST52`) from the flash chip and the ROM offset in the footer.
- `dump_ecu()` reads the firmware area and reports through `on_error`
  if its byte sum differs from the checksum the ECU reports.
- `flash_ecu(data)` erases flash and writes the image in 0x80 byte
  blocks, skipping blocks that are all 0xFF.
- `get_sram_snapshot()` reads the 32 kB of SRAM.
- `read_dtc()` raises `ECUError`: trouble codes cannot be read this way.

Firmware images can be examined offline:

```python
from trionic.t5.footer import (
    calculate_bin_checksum,
    get_code_length,
    get_identifier_from_footer,
)

with open("t5.bin", "rb") as fh:
    image = fh.read()

end = get_code_length(image)               # position of the end marker
checksum = calculate_bin_checksum(image)   # four big-endian bytes
part_number = get_identifier_from_footer(image[-0x80:], 0x01)
```

`get_code_length` and `calculate_bin_checksum` raise `ValueError` when
the image has no end marker; `get_identifier_from_footer` returns an
empty string for an absent identifier.

## Trionic 7

`trionic.t7.client.Client` handles data initialisation, security access
(`knock_knock()` and `let_me_try(key1, key2)`), header reads
(`get_header(field_id)`), dumping the 512 kB flash, erasing and flashing.
`load_bin_file(filename)` reads an image from disk, converting Motorola
byte order when it finds it. `read_dtc()` returns an empty list, and
`reset_ecu()` does nothing; `reset_ecu2()` asks the ECU for a hard reset.
The seed/key helpers `calcen(seed, method)` and
`calcen_custom(seed, key1, key2)` can be used on their own.

Offline helpers for Trionic 7 images:

```python
from trionic.t7.bininfo import get_bin_info, get_header_field
from trionic.t7.fileheader import load_file_header

info = get_bin_info(image)              # BinInfo; missing fields are ""
vin = get_header_field(image, 0x90)     # LookupError if the field is absent

header = load_file_header("t7.bin", False)   # True rewrites a broken footer
print(header.vin)
```

`trionic.t7.errors.translate_error_code` turns a KWP2000 negative
response code into a `KWPError` (or `None` for a positive response), and
`trionic.t7.ids.lookup_id` names a known P-bus or I-bus CAN identifier.

## Trionic 8 helpers

```python
from trionic.dtc import decode_dtc
from trionic.t8sec import calculate_access_key
from trionic.t8util import get_partition_md5

decode_dtc(bytes([0xE1, 0x03, 0x00, 0x12]))   # DTC(code='U2103', status=0x12)
high, low = calculate_access_key(bytes([0x12, 0x34]), 0xFB)
digest = get_partition_md5(image, 6, 1)        # MD5 of the boot partition
```

## What the package does not do

- It has no CAN adapter drivers; you supply the `CANClient`.
- It has no command-line or graphical front end.
- It has no Trionic 8 client that talks to an ECU; only the offline
  helpers above.
- It does not include a Trionic 5 bootloader image.

## Running the tests

```
pytest
```