"""Trionic 7 client: session handling, security access, reading, erasing and info."""

from __future__ import annotations

import logging
import queue
import time
from typing import Callable, TypeVar

from ..ecu import (
    DTC,
    CANClient,
    Config,
    ECUError,
    EcuInfo,
    Frame,
    FrameType,
    Header,
    HeaderResult,
    list_ecus,
    load_config,
    register,
)
from .errors import translate_error_code
from .flash import FLASH_SIZE, REQUEST_ID, RESPONSE_ID, FlashMixin

logger = logging.getLogger(__name__)

T = TypeVar("T")

INIT_REQUEST_ID = 0x220
INIT_RESPONSE_ID = 0x238
ACK_ID = 0x266

_INIT_REQUEST = bytes((0x3F, 0x81, 0x00, 0x11, 0x02, 0x40, 0x00, 0x00))
_INIT_RESPONSE = bytes((0x40, 0xBF, 0x21, 0xC1, 0x00, 0x11, 0x02, 0x58))
_INIT_VALID_FOR = 8.0
_MAX_READ = 0xF5
_TESTER_ID = 0x240

T7_HEADERS = [
    Header(desc="Engine type", id=0x97),
    Header(desc="Software version:", id=0x95),
    Header(desc="Software P/N", id=0x94),
    Header(desc="Immobiilizer code", id=0x92),
    Header(desc="Chassis ID/VIN", id=0x90),
    Header(desc="Box Hardware P/N", id=0x91),
    Header(desc="Tester info", id=0x98),
    Header(desc="Software date", id=0x99),
]

_KEY_METHODS = {
    0: (0x8142, 0x2356),
    1: (0x4081, 0x1F6F),
    2: (0x3DC, 0x2356),
    3: (0x3D7, 0x2356),
    4: (0x409, 0x2356),
}


def calcen_custom(seed: int, key1: int, key2: int) -> int:
    """Security key for a seed using an explicit xor value and subtrahend."""
    key = (seed << 2) & 0xFFFF
    key ^= key1
    key -= key2
    return key & 0xFFFF


def calcen(seed: int, method: int) -> int:
    """Security key for a seed using one of the five known key methods."""
    if method in _KEY_METHODS:
        key1, key2 = _KEY_METHODS[method]
        return calcen_custom(seed, key1, key2)
    return (seed << 2) & 0xFFFF


def _reply(frame: Frame, minimum: int) -> bytes:
    if len(frame.data) < minimum:
        raise ECUError(f"short response: {frame}")
    return frame.data


class Client(FlashMixin):
    """Trionic 7 ECU on the I-bus."""

    init_retry_delay = 0.25
    read_retry_delay = 0.1
    erase_poll_delay = 0.25
    security_retry_delay = 3.0

    def __init__(self, client: CANClient, cfg: Config | None = None) -> None:
        self.can = client
        self.cfg = load_config(cfg)
        self.default_timeout = 0.25
        self._last_data_initialization: float | None = None

    def _message(self, text: str) -> None:
        self.cfg.on_message(text)  # type: ignore[misc]

    def _error(self, err: Exception) -> None:
        self.cfg.on_error(err)  # type: ignore[misc]

    def _progress(self, value: float) -> None:
        self.cfg.on_progress(value)  # type: ignore[misc]

    def _query(self, payload: bytes, timeout: float | None = None) -> Frame:
        frame = Frame(REQUEST_ID, payload, FrameType.RESPONSE_REQUIRED)
        return self.can.send_and_poll(
            frame, self.default_timeout if timeout is None else timeout, RESPONSE_ID
        )

    @staticmethod
    def _retry(
        action: Callable[[], T],
        attempts: int,
        delay: float,
        on_retry: Callable[[int, Exception], None] | None = None,
    ) -> T:
        last: Exception | None = None
        for n in range(attempts):
            try:
                return action()
            except Exception as err:  # noqa: BLE001 - every failure is retried
                last = err
                if on_retry is not None:
                    on_retry(n, err)
                if n < attempts - 1 and delay > 0:
                    time.sleep(delay)
        assert last is not None
        raise last

    def ack(self, value: int, frame_type: FrameType) -> None:
        """Acknowledge a reply frame; bit 6 of the row byte is cleared."""
        data = bytes((0x40, 0xA1, 0x3F, value & 0xBF, 0, 0, 0, 0))
        self.can.send(Frame(ACK_ID, data, frame_type))

    def data_initialization(self) -> None:
        """Open the data channel, unless it was opened less than eight seconds ago."""
        now = time.monotonic()
        if (
            self._last_data_initialization is not None
            and now - self._last_data_initialization < _INIT_VALID_FOR
        ):
            return
        self._last_data_initialization = now

        def attempt() -> None:
            resp = self.can.send_and_poll(
                Frame(INIT_REQUEST_ID, _INIT_REQUEST, FrameType.RESPONSE_REQUIRED),
                self.default_timeout,
                INIT_RESPONSE_ID,
            )
            if resp.data != _INIT_RESPONSE:
                raise ECUError("/!\\ Invalid data initialization response")

        def on_retry(n: int, err: Exception) -> None:
            if n == 0:
                self._error(err)
            else:
                self._message(f"Retry #{n}, {err}")

        try:
            self._retry(attempt, 6, self.init_retry_delay, on_retry)
        except Exception as err:
            raise ECUError(f"/!\\ Data initialization failed: {err}") from err

    def get_header(self, field_id: int) -> str:
        """Read one identification field from the ECU."""
        request = bytes((0x40, 0xA1, 0x02, 0x1A, field_id & 0xFF, 0, 0, 0))
        try:
            self._retry(
                lambda: self.can.send_frame(REQUEST_ID, request, FrameType.RESPONSE_REQUIRED),
                3,
                self.read_retry_delay,
            )
        except Exception as err:
            raise ECUError(f"failed getting header: {err}") from err

        answer = bytearray()
        length = 0
        for _ in range(10):
            resp = self.can.poll(self.default_timeout, RESPONSE_ID)
            d = _reply(resp, 8)
            if d[0] & 0x40 == 0x40:
                if d[2] > 2:
                    length = d[2] - 2
                for b in d[5:8]:
                    if length > 0:
                        answer.append(b)
                    length -= 1
            else:
                for b in d[2:8]:
                    if length == 0:
                        break
                    answer.append(b)
                    length -= 1
            if d[0] in (0x80, 0xC0):
                self.ack(d[0], FrameType.OUTGOING)
                break
            self.ack(d[0], FrameType.RESPONSE_REQUIRED)
        return answer.decode("latin-1")

    def _seed_key_exchange(self, compute: Callable[[int], int]) -> bool:
        seed_request = bytes((0x40, 0xA1, 0x02, 0x27, 0x05, 0, 0, 0))
        try:
            resp = self._query(seed_request)
        except Exception as err:
            raise ECUError(f"request seed: {err}") from err
        d = _reply(resp, 7)
        self.ack(d[0], FrameType.RESPONSE_REQUIRED)

        key = compute(d[5] << 8 | d[6])
        key_reply = bytes((0x40, 0xA1, 0x04, 0x27, 0x06, (key >> 8) & 0xFF, key & 0xFF, 0))
        try:
            resp2 = self._query(key_reply)
        except Exception as err:
            raise ECUError(f"send seed: {err}") from err
        d2 = _reply(resp2, 6)
        self.ack(d2[0], FrameType.RESPONSE_REQUIRED)
        if d2[3] == 0x67 and d2[5] == 0x34:
            return True
        logger.warning("%s", resp2)
        raise ECUError("invalid response")

    def knock_knock(self) -> bool:
        """Obtain security access, trying each key method in turn."""
        self.data_initialization()
        for method in range(5):
            try:
                ok = self._seed_key_exchange(lambda seed, m=method: calcen(seed, m))
            except Exception as err:  # noqa: BLE001 - next method is tried
                self._error(ECUError(f"/!\\ Failed to obtain security access: {err}"))
                if self.security_retry_delay > 0:
                    time.sleep(self.security_retry_delay)
                continue
            if ok:
                self._message("Security access obtained")
                return True
        raise ECUError("/!\\ Failed to obtain security access")

    def let_me_try(self, key1: int, key2: int) -> bool:
        """Attempt security access with a custom key pair; True if granted."""
        try:
            return self._seed_key_exchange(lambda seed: calcen_custom(seed, key1, key2))
        except Exception as err:  # noqa: BLE001 - any failure means no access
            logger.warning("%s", err)
            return False

    def stop_session(self) -> None:
        """Close the diagnostic session."""
        payload = bytes((0x40, 0xA1, 0x02, 0x82, 0, 0, 0, 0))
        self.can.send(Frame(INIT_REQUEST_ID, payload, FrameType.RESPONSE_REQUIRED))

    def start_diagnostic_session(self) -> None:
        """Enter a diagnostic session, logging the addresses the ECU reports."""
        logger.info("starting diagnostics session")
        payload = bytes(
            (0x3F, 0x81, 0x00, 0x11, (_TESTER_ID >> 8) & 0xFF, _TESTER_ID & 0xFF, 0, 0)
        )

        def attempt() -> None:
            self.can.send_frame(INIT_REQUEST_ID, payload, FrameType.RESPONSE_REQUIRED)
            resp = self.can.poll(self.default_timeout, RESPONSE_ID)
            d = resp.data
            if len(d) >= 8 and d[0] == 0x40 and d[3] == 0xC1:
                logger.info("Tester address: 0x%X", d[1])
                logger.info("ECU address: 0x%X", d[2] | 0x80)
                logger.info("ECU ID: 0x%X", d[6] << 8 | d[7])
                return
            raise ECUError(f"invalid response to enter diagnostics session: {resp}")

        self._retry(
            attempt, 5, self.read_retry_delay, lambda n, err: logger.warning("%s", err)
        )

    def read_dtc(self) -> list[DTC]:
        """Trouble code reading yields no codes on Trionic 7."""
        return []

    def dump_ecu(self) -> bytes:
        """Read the whole 512 kB flash."""
        try:
            ok = self.knock_knock()
        except Exception as err:
            raise ECUError(f"failed to authenticate: {err}") from err
        if not ok:
            raise ECUError("failed to authenticate")
        data = self._read_ecu(0, FLASH_SIZE)
        self.stop_session()
        return data

    def _read_ecu(self, addr: int, length: int) -> bytes:
        self._progress(-float(length))
        self._message("Dumping ECU")
        started = time.monotonic()
        out = bytearray()
        pos = 0

        try:
            self.can.set_filter([RESPONSE_ID])
        except Exception as err:  # noqa: BLE001 - reported, not fatal
            self._error(err)

        while pos < length:
            self._progress(float(len(out)))
            count = min(_MAX_READ, length - pos)

            def on_retry(n: int, err: Exception, pos: int = pos, count: int = count) -> None:
                self._message(
                    f"Failed to read memory by address, pos: 0x{pos:X}, "
                    f"length: 0x{count:X}, retrying: {err}"
                )

            try:
                chunk = self._retry(
                    lambda: self._read_memory_by_address(pos, count),
                    3,
                    self.read_retry_delay,
                    on_retry,
                )
            except Exception as err:
                raise ECUError(
                    f"failed to read memory by address, pos: 0x{pos:X}, length: 0x{count:X}"
                ) from err
            out += chunk
            pos += count

        self._end_download_mode()
        self._progress(float(len(out)))
        self._message(f"Done, took: {round(time.monotonic() - started)}s")
        return bytes(out)

    def _read_memory_by_address(self, address: int, length: int) -> bytes:
        self.can.send_frame(
            REQUEST_ID,
            bytes((0x41, 0xA1, 0x08, 0x2C, 0xF0, 0x03, 0x00, length & 0xFF)),
            FrameType.OUTGOING,
        )
        jump = bytes((0x00, 0xA1)) + (address & 0xFFFFFF).to_bytes(3, "big") + bytes(3)
        resp = self._query(jump, self.default_timeout * 3)
        d = _reply(resp, 5)
        self.ack(d[0], FrameType.OUTGOING)
        if d[3] != 0x6C or d[4] != 0xF0:
            raise ECUError(f"failed to jump to 0x{address:X} got response: {resp}")
        return self._recv_data(length)

    def _recv_data(self, length: int) -> bytes:
        out = bytearray()
        payload_left = 0
        sub = self.can.subscribe(RESPONSE_ID)
        self.can.send(
            Frame(
                REQUEST_ID,
                bytes((0x40, 0xA1, 0x02, 0x21, 0xF0, 0, 0, 0)),
                FrameType.RESPONSE_REQUIRED,
            )
        )
        while len(out) < length:
            try:
                frame = sub.get(timeout=self.default_timeout * 4)
            except queue.Empty:
                raise ECUError("timeout") from None
            d = _reply(frame, 8)
            if d[0] & 0x40 == 0x40:
                payload_left = d[2] - 2
                for b in d[5:8]:
                    if payload_left > 0 and len(out) < length:
                        out.append(b)
                        payload_left -= 1
            else:
                for b in d[2:8]:
                    if len(out) < length:
                        out.append(b)
                        payload_left -= 1
                        if payload_left == 0:
                            break
            if d[0] in (0x80, 0xC0):
                self.ack(d[0], FrameType.OUTGOING)
                break
            self.ack(d[0], FrameType.RESPONSE_REQUIRED)
        return bytes(out)

    def _end_download_mode(self) -> None:
        try:
            resp = self._query(bytes((0x40, 0xA1, 0x01, 0x82, 0, 0, 0, 0)))
        except Exception as err:
            raise ECUError(f"end download mode: {err}") from err
        self.ack(_reply(resp, 1)[0], FrameType.OUTGOING)

    def _erase_step(self, payload: bytes, ack: bool) -> bytes:
        resp = self._query(payload)
        data = _reply(resp, 4)
        if ack:
            self.ack(data[0], FrameType.OUTGOING)
        return data

    def erase_ecu(self) -> None:
        """Erase the flash and wait for the ECU to confirm."""
        erase = bytearray((0x40, 0xA1, 0x02, 0x31, 0x52, 0, 0, 0))
        confirm = bytes((0x40, 0xA1, 0x01, 0x3E, 0, 0, 0, 0))

        self._progress(-17.0)
        self._message("Erasing FLASH")
        progress = 0

        status = 0
        tries = 0
        while status != 0x71 and tries < 30:
            status = self._erase_step(bytes(erase), True)[3]
            tries += 1
            progress += 1
            self._progress(float(progress))
            if self.erase_poll_delay > 0:
                time.sleep(self.erase_poll_delay)
        if tries > 10:
            raise ECUError("to many tries to erase 1")

        status = 0
        tries = 0
        erase[4] = 0x53
        while status != 0x71 and tries < 200:
            status = self._erase_step(bytes(erase), True)[3]
            tries += 1
            progress += 1
            self._progress(float(progress))
            if self.erase_poll_delay > 0:
                time.sleep(self.erase_poll_delay)

        status = 0
        tries = 0
        while status != 0x7E and tries < 10:
            if self.erase_poll_delay > 0:
                time.sleep(self.erase_poll_delay)
            status = self._erase_step(confirm, False)[3]
            tries += 1
            progress += 1
            self._progress(float(progress))
        if tries < 10:
            self._message("Erase done")
            return
        raise ECUError("unknown erase error")

    def reset_ecu(self) -> None:
        """Nothing to do: Trionic 7 needs no reset after an operation."""

    def reset_ecu2(self) -> None:
        """Ask the ECU to perform a hard reset."""
        resp = self._query(bytes((0x40, 0xA1, 0x02, 0x11, 0x01)))
        d = _reply(resp, 5)
        if d[3] == 0x7F:
            reason = translate_error_code(d[5]) if len(d) > 5 else None
            raise ECUError(f"failed to reset ECU: {reason}")
        if d[3] != 0x51 or d[4] != 0x81:
            raise ECUError(f"abnormal ecu reset response: {d[3:].hex().upper()}")

    def info(self) -> list[HeaderResult]:
        """Read the identification fields listed in ``T7_HEADERS``."""
        self.data_initialization()
        try:
            out = []
            for header in T7_HEADERS:
                try:
                    value = self.get_header(header.id)
                except Exception as err:
                    raise ECUError(f"ECU info failed: {err}") from err
                out.append(HeaderResult(desc=header.desc, id=header.id, value=value.strip("\x00")))
            return out
        finally:
            self.stop_session()

    def print_ecu_info(self) -> None:
        """Log every identification field."""
        results = self.info()
        logger.info("----- ECU info ---------------")
        for r in results:
            logger.info("%s %s", r.desc, r.value)
        logger.info("------------------------------")


def _create(client: CANClient, cfg: Config | None) -> Client:
    return Client(client, cfg)


if "Trionic 7" not in list_ecus():
    register(
        EcuInfo(
            name="Trionic 7",
            factory=_create,
            can_rate=500,
            filter=[0x238, 0x258, 0x266],
        )
    )