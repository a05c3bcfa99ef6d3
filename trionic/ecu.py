"""ECU registry, configuration and the shared data types used by ECU clients."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Protocol

logger = logging.getLogger(__name__)


class ECUError(Exception):
    """Raised when an ECU operation or lookup fails."""


@dataclass(frozen=True)
class FrameType:
    """How a frame is sent and how many responses it expects."""

    kind: int
    responses: int = 0

    INCOMING: ClassVar[FrameType]
    OUTGOING: ClassVar[FrameType]
    RESPONSE_REQUIRED: ClassVar[FrameType]


FrameType.INCOMING = FrameType(0)
FrameType.OUTGOING = FrameType(1)
FrameType.RESPONSE_REQUIRED = FrameType(2, 1)


@dataclass
class Frame:
    """A single CAN frame."""

    identifier: int
    data: bytes
    frame_type: FrameType = FrameType.OUTGOING

    def __post_init__(self) -> None:
        self.data = bytes(self.data)

    @property
    def length(self) -> int:
        return len(self.data)

    def __str__(self) -> str:
        return f"0x{self.identifier:03X} || {self.data.hex(' ').upper()}"


class CANClient(Protocol):
    """The CAN bus connection an ECU client talks through."""

    def send(self, frame: Frame) -> None:
        """Send a frame."""

    def send_frame(self, identifier: int, data: bytes, frame_type: FrameType) -> None:
        """Build and send a frame."""

    def send_and_poll(self, frame: Frame, timeout: float, *identifiers: int) -> Frame:
        """Send a frame and wait up to ``timeout`` seconds for a reply on one of ``identifiers``."""

    def poll(self, timeout: float, *identifiers: int) -> Frame:
        """Wait up to ``timeout`` seconds for a frame on one of ``identifiers``."""

    def subscribe(self, *identifiers: int) -> queue.Queue[Frame]:
        """Return a queue receiving every frame on ``identifiers``."""

    def set_filter(self, identifiers: list[int]) -> None:
        """Restrict the adapter to the given identifiers."""

    def close(self) -> None:
        """Close the connection."""


@dataclass
class Config:
    """Name of the ECU type and the callbacks used to report progress."""

    name: str = "Unknown ECU"
    on_progress: Callable[[float], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_message: Callable[[str], None] | None = None


@dataclass
class Header:
    """An identifier that can be read from an ECU, with its description."""

    desc: str
    id: int
    type: str = ""


@dataclass
class HeaderResult:
    """A header value read from an ECU."""

    desc: str
    id: int
    value: str

    def __str__(self) -> str:
        return f"{self.desc}: {self.value}"


@dataclass
class DTC:
    """A diagnostic trouble code and its status byte."""

    code: str
    status: int

    def __str__(self) -> str:
        return f"{self.code} status: 0x{self.status:02X}"


@dataclass
class EcuInfo:
    """Registration record of an ECU type."""

    name: str
    factory: Callable[[CANClient, Config], object]
    can_rate: float
    filter: list[int] = field(default_factory=list)


_registry: dict[str, EcuInfo] = {}


def load_config(cfg: Config | None) -> Config:
    """Return ``cfg`` (or a new config) with missing callbacks set to log."""
    if cfg is None:
        cfg = Config(name="Unknown ECU")
    if cfg.on_progress is None:
        cfg.on_progress = lambda value: logger.info("%s", value)
    if cfg.on_error is None:
        cfg.on_error = lambda err: logger.error("%s", err)
    if cfg.on_message is None:
        cfg.on_message = lambda msg: logger.info("%s", msg)
    return cfg


def register(info: EcuInfo) -> None:
    """Register an ECU type; a name may only be registered once."""
    if info.name in _registry:
        raise ValueError(f"ECU already registered: {info.name}")
    _registry[info.name] = info


def new(client: CANClient, cfg: Config | None) -> object:
    """Create a client for the ECU type named in ``cfg``."""
    name = cfg.name if cfg is not None else "Unknown ECU"
    info = _registry.get(name)
    if info is None:
        raise ECUError("unknown ECU")
    return info.factory(client, cfg)


def list_ecus() -> list[str]:
    """Names of all registered ECU types, sorted."""
    return sorted(_registry)


def filters(ecu_name: str) -> list[int]:
    """CAN identifiers the given ECU type listens to."""
    info = _registry.get(ecu_name)
    return list(info.filter) if info is not None else []


def can_rate(ecu_name: str) -> float:
    """CAN bus rate in kbit/s for the given ECU type, 0 if unknown."""
    info = _registry.get(ecu_name)
    return info.can_rate if info is not None else 0.0