import queue
from collections import deque

import pytest

from trionic.ecu import Config, ECUError, Frame, FrameType, can_rate, filters, new
from trionic.t7.client import T7_HEADERS, Client, calcen, calcen_custom

INIT_OK = bytes((0x40, 0xBF, 0x21, 0xC1, 0x00, 0x11, 0x02, 0x58))
STOP_SESSION = bytes((0x40, 0xA1, 0x02, 0x82, 0, 0, 0, 0))


class FakeCAN:
    def __init__(self, replies=()):
        self.sent = []
        self.replies = deque(replies)
        self.subscription = queue.Queue()
        self.filters = []

    def _next(self):
        if not self.replies:
            raise TimeoutError("timeout")
        return Frame(0x258, self.replies.popleft())

    def send(self, frame):
        self.sent.append(frame)

    def send_frame(self, identifier, data, frame_type):
        self.sent.append(Frame(identifier, data, frame_type))

    def send_and_poll(self, frame, timeout, *identifiers):
        self.sent.append(frame)
        return self._next()

    def poll(self, timeout, *identifiers):
        return self._next()

    def subscribe(self, *identifiers):
        return self.subscription

    def set_filter(self, identifiers):
        self.filters.append(list(identifiers))

    def close(self):
        pass


def make_client(replies=()):
    can = FakeCAN(replies)
    messages, errors = [], []
    cfg = Config(
        name="Trionic 7",
        on_message=messages.append,
        on_error=errors.append,
        on_progress=lambda value: None,
    )
    client = Client(can, cfg)
    for attr in (
        "init_retry_delay",
        "read_retry_delay",
        "erase_poll_delay",
        "security_retry_delay",
        "retry_delay",
    ):
        setattr(client, attr, 0)
    return client, can, messages, errors


@pytest.mark.parametrize("method,key1,key2", [
    (0, 0x8142, 0x2356),
    (1, 0x4081, 0x1F6F),
    (2, 0x3DC, 0x2356),
    (3, 0x3D7, 0x2356),
    (4, 0x409, 0x2356),
])
def test_calcen_matches_custom_constants(method, key1, key2):
    for seed in (0x0000, 0x1234, 0xABCD, 0xFFFF):
        key = calcen(seed, method)
        assert key == calcen_custom(seed, key1, key2)
        assert 0 <= key <= 0xFFFF


def test_calcen_unknown_method_only_shifts():
    assert calcen(0x1234, 9) == calcen_custom(0x1234, 0, 0)


def test_ack_clears_bit_six():
    client, can, _, _ = make_client()
    client.ack(0xC1, FrameType.OUTGOING)
    frame = can.sent[-1]
    assert frame.identifier == 0x266
    assert frame.data[:3] == bytes((0x40, 0xA1, 0x3F))
    assert frame.data[3] & 0x40 == 0
    assert frame.data[3] | 0x40 == 0xC1
    assert frame.frame_type == FrameType.OUTGOING


def test_data_initialization_success_is_cached():
    client, can, _, _ = make_client([INIT_OK])
    client.data_initialization()
    assert can.sent[0].identifier == 0x220
    assert can.sent[0].data == bytes((0x3F, 0x81, 0x00, 0x11, 0x02, 0x40, 0x00, 0x00))
    client.data_initialization()
    assert len(can.sent) == 1


def test_data_initialization_failure_reports_retries():
    client, can, messages, errors = make_client([bytes(8)] * 6)
    with pytest.raises(ECUError, match="Data initialization failed"):
        client.data_initialization()
    assert len(can.sent) == 6
    assert len(errors) == 1
    assert any(m.startswith("Retry #1") for m in messages)


def test_get_header_single_frame():
    reply = bytes((0xC0, 0xA1, 0x05, 0x5A, 0x97)) + b"ABC"
    client, can, _, _ = make_client([reply])
    assert client.get_header(0x97) == "ABC"
    assert can.sent[0].data == bytes((0x40, 0xA1, 0x02, 0x1A, 0x97, 0, 0, 0))
    assert can.sent[-1].identifier == 0x266
    assert can.sent[-1].frame_type == FrameType.OUTGOING


def test_get_header_multi_frame():
    first = bytes((0x41, 0xA1, 0x0A, 0x5A, 0x90)) + b"ABC"
    last = bytes((0x80, 0xA1)) + b"DEFGH\x00"
    client, can, _, _ = make_client([first, last])
    assert client.get_header(0x90) == "ABCDEFGH"
    acks = [f for f in can.sent if f.identifier == 0x266]
    assert [a.frame_type for a in acks] == [FrameType.RESPONSE_REQUIRED, FrameType.OUTGOING]


def test_knock_knock_sends_computed_key():
    seed_reply = bytes((0x40, 0xA1, 0x04, 0x67, 0x05, 0x12, 0x34, 0x00))
    granted = bytes((0x40, 0xA1, 0x02, 0x67, 0x06, 0x34, 0x00, 0x00))
    client, can, messages, _ = make_client([INIT_OK, seed_reply, granted])
    assert client.knock_knock() is True
    key = calcen(0x1234, 0)
    key_frames = [f for f in can.sent if f.identifier == 0x240 and f.data[4] == 0x06]
    assert key_frames[0].data[5] == key >> 8
    assert key_frames[0].data[6] == key & 0xFF
    assert "Security access obtained" in messages


def test_knock_knock_fails_after_all_methods():
    seed_reply = bytes((0x40, 0xA1, 0x04, 0x67, 0x05, 0x00, 0x01, 0x00))
    denied = bytes((0x40, 0xA1, 0x03, 0x7F, 0x27, 0x35, 0x00, 0x00))
    client, _, _, errors = make_client([INIT_OK] + [seed_reply, denied] * 5)
    with pytest.raises(ECUError, match="Failed to obtain security access"):
        client.knock_knock()
    assert len(errors) == 5


def test_dump_fails_without_authentication():
    client, _, _, _ = make_client()
    with pytest.raises(ECUError, match="failed to authenticate"):
        client.dump_ecu()


def test_let_me_try_without_reply_is_false():
    client, _, _, _ = make_client()
    assert client.let_me_try(0x8142, 0x2356) is False


def test_read_ecu_collects_transfer_bytes():
    jump_ok = bytes((0x40, 0xA1, 0x02, 0x6C, 0xF0, 0, 0, 0))
    end_ok = bytes((0x40, 0xA1, 0x01, 0xC2, 0, 0, 0, 0))
    client, can, _, _ = make_client([jump_ok, end_ok])
    can.subscription.put(Frame(0x258, bytes((0x41, 0xA1, 0x07, 0x61, 0xF0, 1, 2, 3))))
    can.subscription.put(Frame(0x258, bytes((0x80, 0xA1, 4, 5, 6, 7, 8, 9))))
    assert client._read_ecu(0, 5) == bytes((1, 2, 3, 4, 5))
    assert can.filters == [[0x258]]


def test_read_ecu_bad_jump_raises():
    client, _, messages, _ = make_client([bytes(8)] * 3)
    with pytest.raises(ECUError, match="failed to read memory by address"):
        client._read_ecu(0, 5)
    assert sum("retrying" in m for m in messages) == 3


def test_erase_ecu_success():
    ok = bytes((0x40, 0xA1, 0x02, 0x71, 0, 0, 0, 0))
    done = bytes((0x40, 0xA1, 0x02, 0x7E, 0, 0, 0, 0))
    client, can, messages, _ = make_client([ok, ok, done])
    client.erase_ecu()
    assert "Erase done" in messages
    assert can.sent[0].data[4] == 0x52
    erase_frames = [f for f in can.sent if f.identifier == 0x240]
    assert erase_frames[1].data[4] == 0x53


def test_erase_ecu_too_many_first_tries():
    busy = bytes((0x40, 0xA1, 0x02, 0x00, 0, 0, 0, 0))
    ok = bytes((0x40, 0xA1, 0x02, 0x71, 0, 0, 0, 0))
    client, _, _, _ = make_client([busy] * 11 + [ok])
    with pytest.raises(ECUError, match="to many tries to erase 1"):
        client.erase_ecu()


def test_erase_ecu_without_confirmation():
    ok = bytes((0x40, 0xA1, 0x02, 0x71, 0, 0, 0, 0))
    client, _, _, _ = make_client([ok, ok] + [bytes(8)] * 10)
    with pytest.raises(ECUError, match="unknown erase error"):
        client.erase_ecu()


def test_reset_ecu2_negative_response():
    client, _, _, _ = make_client([bytes((0x40, 0xA1, 0x03, 0x7F, 0x11, 0x31, 0, 0))])
    with pytest.raises(ECUError, match="request out of range"):
        client.reset_ecu2()


def test_reset_ecu2_abnormal_and_ok():
    client, _, _, _ = make_client([bytes((0x40, 0xA1, 0x02, 0x51, 0x00, 0, 0, 0))])
    with pytest.raises(ECUError, match="abnormal ecu reset response"):
        client.reset_ecu2()
    client, can, _, _ = make_client([bytes((0x40, 0xA1, 0x02, 0x51, 0x81, 0, 0, 0))])
    client.reset_ecu2()
    assert can.sent[0].data == bytes((0x40, 0xA1, 0x02, 0x11, 0x01))


def test_info_reads_every_header_and_stops_session():
    replies = [INIT_OK]
    for i, header in enumerate(T7_HEADERS):
        replies.append(bytes((0xC0, 0xA1, 0x04, 0x5A, header.id, 0x41 + i, 0x00, 0x00)))
    client, can, _, _ = make_client(replies)
    results = client.info()
    assert [r.id for r in results] == [h.id for h in T7_HEADERS]
    assert [r.value for r in results] == [chr(0x41 + i) for i in range(len(T7_HEADERS))]
    assert can.sent[-1].identifier == 0x220
    assert can.sent[-1].data == STOP_SESSION


def test_info_failure_still_stops_session():
    client, can, _, _ = make_client([INIT_OK])
    with pytest.raises(ECUError, match="ECU info failed"):
        client.info()
    assert can.sent[-1].data == STOP_SESSION


def test_start_diagnostic_session():
    reply = bytes((0x40, 0x02, 0x58, 0xC1, 0, 0, 0x12, 0x34))
    client, can, _, _ = make_client([reply])
    client.start_diagnostic_session()
    assert can.sent[0].data == bytes((0x3F, 0x81, 0x00, 0x11, 0x02, 0x40, 0, 0))
    client, _, _, _ = make_client([bytes(8)] * 5)
    with pytest.raises(ECUError, match="invalid response to enter diagnostics session"):
        client.start_diagnostic_session()


def test_read_dtc_and_reset_are_empty():
    client, can, _, _ = make_client()
    assert client.read_dtc() == []
    client.reset_ecu()
    assert can.sent == []


def test_registered_in_registry():
    assert filters("Trionic 7") == [0x238, 0x258, 0x266]
    assert can_rate("Trionic 7") == 500
    created = new(FakeCAN(), Config(name="Trionic 7"))
    assert isinstance(created, Client)
    assert created.default_timeout == 0.25