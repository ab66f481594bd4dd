"""Shared fakes for the protocol tests: scripted links and an in-memory radio."""

from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Union

import pytest

from quansheng_k5_tool.core.messages import MemorySink
from quansheng_k5_tool.protocol.commands import PROTOCOL_HEADER, Opcode
from quansheng_k5_tool.protocol.k5_protocol import K5Session
from quansheng_k5_tool.protocol.k5_transport import BaseTransport

Reply = Union[None, bytes, Iterable[bytes]]


class FakeTransport(BaseTransport):
    """
    Link whose replies come from ``responder(frame)``.

    The responder may return None/b"" (silence), bytes (one read chunk) or a
    list of chunks delivered by successive reads.
    """

    def __init__(self, responder: Optional[Callable[[bytes], Reply]] = None):
        self.responder = responder or (lambda frame: None)
        self.writes: List[bytes] = []
        self.read_timeouts: List[float] = []
        self.pending: deque = deque()
        self.write_ok = True
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def write(self, data: bytes) -> bool:
        self.writes.append(bytes(data))
        if not self.write_ok:
            return False
        reply = self.responder(bytes(data))
        if reply is None:
            return True
        if isinstance(reply, (bytes, bytearray)):
            reply = [reply]
        self.pending.extend(bytes(chunk) for chunk in reply if chunk)
        return True

    def read(self, timeout: float) -> bytes:
        self.read_timeouts.append(timeout)
        return self.pending.popleft() if self.pending else b""

    def frames(self, opcode: int) -> List[bytes]:
        """Frames written so far that start with ``opcode``."""
        return [w for w in self.writes if w and w[0] == opcode]


class ScriptedTransport(FakeTransport):
    """Replies looked up by exact frame; unknown frames get silence."""

    def __init__(self, replies: Optional[Dict[bytes, Reply]] = None):
        self.replies = dict(replies or {})
        super().__init__(lambda frame: self.replies.get(frame))


class MemoryRadio(FakeTransport):
    """
    Radio emulation backed by a byte array.

    Answers primary reads (0x1B + 05 04 00) with the echoed header and the
    requested bytes, stores primary writes (0x1D) and echoes the opcode.
    Everything else is silence.
    """

    def __init__(self, size: int = 0x2100, fill: int = 0xFF):
        self.memory = bytearray([fill]) * size
        super().__init__(self._respond)

    def load(self, address: int, data: bytes) -> None:
        self.memory[address:address + len(data)] = data

    def _respond(self, frame: bytes) -> Reply:
        if len(frame) < 8 or frame[1:4] != PROTOCOL_HEADER:
            return None
        address = frame[4] | (frame[5] << 8)
        if frame[0] == Opcode.READ_EEPROM and len(frame) == 8:
            length = frame[6]
            return bytes([Opcode.READ_EEPROM]) + PROTOCOL_HEADER + bytes(self.memory[address:address + length])
        if frame[0] == Opcode.WRITE_EEPROM:
            length = frame[6] | (frame[7] << 8)
            self.memory[address:address + length] = frame[8:8 + length]
            return bytes([Opcode.WRITE_EEPROM, 0x00])
        return None


class SleepRecorder(list):
    """Stands in for time.sleep; remembers every requested delay."""

    def __call__(self, seconds: float) -> None:
        self.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def make_session(sleeps, sink):
    """Build a K5Session over a fake link with recorded sleeps."""
    def factory(transport: BaseTransport, **kwargs) -> K5Session:
        return K5Session(transport, sleep=sleeps, log=sink, **kwargs)
    return factory


@pytest.fixture
def radio() -> MemoryRadio:
    return MemoryRadio()
