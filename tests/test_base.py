import pytest

from trionic.ecu import Config, ECUError, Frame, FrameType
from trionic.t5.base import T5_HEADERS, BaseClient, ECUType

BOOTLOADER = "S00E000004598B4E0A93E8A3FE93738F\nS10457EB00B9\nS9035000AC\n"


class FakeECU:
    def __init__(self, chip=0xB8):
        self.memory = bytearray(0x80000)
        self.chip = chip
        self.sent = []
        self.fail_a5 = 0
        self.fail_read = False
        self.data_reply = None
        self.reset_reply = bytes((0xC2, 0x00, 0x08, 0, 0, 0, 0, 0))

    def send(self, frame):
        self.sent.append(frame)

    def send_frame(self, identifier, data, frame_type):
        self.send(Frame(identifier, data, frame_type))

    def send_and_poll(self, frame, timeout, *identifiers):
        self.sent.append(frame)
        d = frame.data
        cmd = d[0]
        if cmd == 0xC7:
            if self.fail_read:
                raise TimeoutError("timeout")
            addr = int.from_bytes(d[1:5], "big")
            window = bytes(self.memory[addr - 5 : addr + 1])
            reply = bytes((0xC7, 0x00)) + window[::-1]
        elif cmd == 0xC9:
            reply = bytes((0xC9, 0, 0, 0, 0, 0, 0, self.chip))
        elif cmd == 0xC8:
            reply = bytes((0xC8, 0, 1, 2, 3, 4, 0, 0))
        elif cmd == 0xC2:
            reply = self.reset_reply
        elif cmd == 0xA5:
            if self.fail_a5 > 0:
                self.fail_a5 -= 1
                raise TimeoutError("timeout")
            reply = bytes((0xA5, 0, 0, 0, 0, 0, 0, 0))
        else:
            reply = self.data_reply or bytes((cmd, 0, 0, 0, 0, 0, 0, 0))
        return Frame(0xC, reply, FrameType.INCOMING)

    def close(self):
        pass


def place_footer_field(memory, identifier, value):
    base = 0x7FF80
    memory[base + 0x7B] = len(value)
    memory[base + 0x7A] = identifier
    for i, ch in enumerate(value.encode()):
        memory[base + 0x79 - i] = ch


def make_client(bus, **kwargs):
    messages = []
    cfg = Config(name="Trionic 5", on_message=messages.append, on_progress=lambda v: None)
    client = BaseClient(bus, cfg, **kwargs)
    client.retry_delay = 0
    return client, messages


def test_read_memory_by_address_sends_address_and_reverses():
    bus = FakeECU()
    bus.memory[0x100:0x106] = bytes((1, 2, 3, 4, 5, 6))
    client, _ = make_client(bus)
    assert client.read_memory_by_address(0x105) == bytes((1, 2, 3, 4, 5, 6))
    assert bus.sent[0].data == bytes((0xC7, 0x00, 0x00, 0x01, 0x05, 0, 0, 0))


def test_read_memory_failure_raises_ecu_error():
    bus = FakeECU()
    bus.fail_read = True
    client, _ = make_client(bus)
    with pytest.raises(ECUError, match="failed to read memory by address"):
        client.read_memory_by_address(0x105)


def test_chip_types_are_cached():
    bus = FakeECU(chip=0xD5)
    client, _ = make_client(bus)
    first = client.get_chip_types()
    sent = len(bus.sent)
    assert client.get_chip_types() == first
    assert len(bus.sent) == sent
    assert first[5] == 0xD5


def test_invalid_chip_types_response():
    class BadBus(FakeECU):
        def send_and_poll(self, frame, timeout, *identifiers):
            return Frame(0xC, bytes((0xC9, 0x01, 0, 0, 0, 0, 0, 0)))

    client, _ = make_client(BadBus())
    with pytest.raises(ECUError, match="invalid GetChipTypes response"):
        client.get_chip_types()


def test_footer_matches_last_flash_bytes():
    bus = FakeECU()
    bus.memory[0x7FF80:] = bytes(range(0x80))
    client, _ = make_client(bus)
    assert client.get_ecu_footer() == bytes(range(0x80))
    sent = len(bus.sent)
    client.get_ecu_footer()
    assert len(bus.sent) == sent


@pytest.mark.parametrize(
    "chip, offset, expected",
    [
        (0xB8, "060000", ECUType.T52ECU),
        (0xD5, "040000", ECUType.T55ECU),
        (0x20, "060000", ECUType.T55AST52),
    ],
)
def test_determine_ecu(chip, offset, expected):
    bus = FakeECU(chip=chip)
    place_footer_field(bus.memory, 0xFD, offset)
    client, _ = make_client(bus)
    assert client.determine_ecu() is expected


def test_determine_ecu_unknown_firmware():
    bus = FakeECU(chip=0xB8)
    place_footer_field(bus.memory, 0xFD, "040000")
    client, _ = make_client(bus)
    with pytest.raises(ECUError, match="Trionic 5.2 ECU running an unknown firmware"):
        client.determine_ecu()


def test_determine_ecu_unknown_chip():
    bus = FakeECU(chip=0x00)
    place_footer_field(bus.memory, 0xFD, "060000")
    client, _ = make_client(bus)
    with pytest.raises(ECUError, match="unknown ECU"):
        client.determine_ecu()


def test_upload_bootloader_sends_records():
    bus = FakeECU()
    client, messages = make_client(bus, bootloader=BOOTLOADER)
    client.upload_bootloader()
    assert client.bootloaded is True
    assert [f.data for f in bus.sent] == [
        bytes((0xA5, 0, 0, 0, 0, 0, 0, 0)),
        bytes((0xA5, 0, 0, 0x57, 0xEB, 0x01, 0, 0)),
        bytes(8),
        bytes((0xC1, 0, 0, 0x50, 0x00, 0, 0, 0)),
    ]
    assert bus.sent[-1].frame_type == FrameType.OUTGOING
    assert messages[0] == "Uploading bootloader"
    assert messages[-1].startswith("Done, took: ")


def test_upload_bootloader_already_running():
    bus = FakeECU()
    bus.data_reply = bytes((0x1C, 0x01, 0x00, 0, 0, 0, 0, 0))
    client, messages = make_client(bus, bootloader=BOOTLOADER)
    client.upload_bootloader()
    assert client.bootloaded is True
    assert "Bootloader already running" in messages
    assert all(f.data[0] != 0xC1 for f in bus.sent)


def test_upload_bootloader_bad_checksum():
    client, _ = make_client(FakeECU(), bootloader="S9035000AD")
    with pytest.raises(ECUError, match="does not match calculated CRC"):
        client.upload_bootloader()


def test_upload_bootloader_without_image():
    client, _ = make_client(FakeECU())
    with pytest.raises(ECUError, match="no bootloader image"):
        client.upload_bootloader()


def test_address_command_is_retried():
    bus = FakeECU()
    bus.fail_a5 = 2
    client, _ = make_client(bus, bootloader=BOOTLOADER)
    client.upload_bootloader()
    assert client.bootloaded is True


def test_address_command_gives_up_after_three_attempts():
    bus = FakeECU()
    bus.fail_a5 = 3
    client, _ = make_client(bus, bootloader=BOOTLOADER)
    with pytest.raises(ECUError, match="sendBootloaderAddressCommand"):
        client.upload_bootloader()
    assert client.bootloaded is False


def test_info_reads_footer_headers():
    bus = FakeECU()
    place_footer_field(bus.memory, 0xFD, "060000")
    client, _ = make_client(bus, bootloader=BOOTLOADER)
    results = client.info()
    assert [r.desc for r in results] == [h.desc for h in T5_HEADERS]
    values = {r.id: r.value for r in results}
    assert values[0xFD] == "060000"
    assert values[0x01] == ""


def test_print_ecu_info_reports_type():
    bus = FakeECU(chip=0xB8)
    place_footer_field(bus.memory, 0xFD, "060000")
    client, messages = make_client(bus, bootloader=BOOTLOADER)
    client.print_ecu_info()
    assert "This is a Trionic 5.2 ECU with 128 kB of FLASH" in messages


def test_get_ecu_checksum_returns_four_bytes():
    bus = FakeECU()
    client, _ = make_client(bus)
    client.bootloaded = True
    assert client.get_ecu_checksum() == bytes((1, 2, 3, 4))
    assert bus.sent[0].data[0] == 0xC8


def test_reset_ecu_success():
    bus = FakeECU()
    client, messages = make_client(bus)
    client.reset_ecu()
    assert messages == ["ECU has been reset"]
    assert bus.sent[0].data == bytes((0xC2, 0, 0, 0, 0, 0, 0, 0))


def test_reset_ecu_invalid_response():
    bus = FakeECU()
    bus.reset_reply = bytes((0xC2, 0x00, 0x00, 0, 0, 0, 0, 0))
    client, _ = make_client(bus)
    with pytest.raises(ECUError, match="invalid response to reset ECU"):
        client.reset_ecu()