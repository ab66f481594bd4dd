"""
UV-K5 Transaction Engine

Runs one command -> response exchange over a transport:

    clear stale input -> write frame -> assemble reply -> accept or back off

The radio's replies carry no length prefix, so a reply is assembled from
several short reads and considered complete once enough bytes arrived or
the line went quiet after some data. A reply that is empty, or that the
caller's acceptance predicate rejects, fails the attempt. After every
failed attempt the engine waits ``attempt_index * backoff_step`` seconds;
once the attempt cap is reached the last error is wrapped in
CommunicationError.

Only one transaction runs at a time per engine.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..core.messages import LogSink, MessageLevel
from .commands import describe_frame, format_hex
from .errors import CommunicationError, InvalidResponse, ResponseTimeout
from .k5_transport import BaseTransport

logger = logging.getLogger(__name__)

AcceptPredicate = Callable[[bytes], bool]
SleepFn = Callable[[float], None]


def accept_non_empty(raw: bytes) -> bool:
    """Default acceptance: any byte at all."""
    return len(raw) > 0


@dataclass(frozen=True)
class TransactionConfig:
    """
    Timing and retry parameters for the transaction engine.

    Attributes:
        attempts: Attempts per transaction before giving up
        backoff_step: Backoff unit; attempt N waits N * backoff_step
        read_timeout: Timeout of each read round (seconds)
        read_rounds: Maximum read rounds per attempt
        early_stop_bytes: Stop reading once this many bytes arrived
        quiet_reads: Consecutive empty reads (after data) that end a reply
        clear_reads: Maximum zero-timeout reads when clearing stale input
        post_write_delay: Pause between write and the first read
        data_poll_pause: Pause after a read that returned data
        empty_poll_pause: Pause after an empty read
    """
    attempts: int = 3
    backoff_step: float = 0.1
    read_timeout: float = 0.5
    read_rounds: int = 10
    early_stop_bytes: int = 8
    quiet_reads: int = 3
    clear_reads: int = 5
    post_write_delay: float = 0.1
    data_poll_pause: float = 0.05
    empty_poll_pause: float = 0.1

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.read_rounds < 1:
            raise ValueError("read_rounds must be >= 1")


DEFAULT_TRANSACTION_CONFIG = TransactionConfig()


class TransactionEngine:
    """
    Serialized request/response exchanges with retry and backoff.

    Example:
        engine = TransactionEngine(transport)
        reply = engine.transact(build_read_command(0x1EC0, 16))

    Timing goes through ``sleep`` so tests can record delays instead of
    waiting. ``backoff_history`` and ``attempts_made`` describe the most
    recent transaction.
    """

    def __init__(
        self,
        transport: BaseTransport,
        config: Optional[TransactionConfig] = None,
        sleep: SleepFn = time.sleep,
        log: Optional[LogSink] = None,
    ):
        self.transport = transport
        self.config = config or DEFAULT_TRANSACTION_CONFIG
        self.sleep = sleep
        self.log = log
        self._lock = threading.Lock()
        self.backoff_history: List[float] = []
        self.attempts_made = 0
        self.transactions = 0

    @property
    def total_backoff(self) -> float:
        """Seconds spent backing off during the last transaction."""
        return sum(self.backoff_history)

    def _emit(self, message: str, level: MessageLevel = MessageLevel.DEBUG) -> None:
        if self.log is not None:
            self.log(message, level)
        else:
            logger.debug(message)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self.sleep(seconds)

    def clear_buffer(self) -> int:
        """
        Drain stale input with zero-timeout reads.

        Stops at the first empty read or after ``clear_reads`` reads.

        Returns:
            Number of bytes discarded
        """
        drained = 0
        for _ in range(self.config.clear_reads):
            stale = self.transport.read(0)
            if not stale:
                break
            drained += len(stale)
        if drained:
            logger.debug(f"Discarded {drained} stale bytes")
        return drained

    def collect_response(self) -> bytes:
        """
        Assemble one reply from repeated short reads.

        Reading stops when ``early_stop_bytes`` have arrived, when
        ``quiet_reads`` consecutive reads come back empty after some data,
        or after ``read_rounds`` rounds.

        Returns:
            Accumulated bytes (empty if nothing arrived)
        """
        cfg = self.config
        buffer = bytearray()
        quiet = 0
        for _ in range(cfg.read_rounds):
            chunk = self.transport.read(cfg.read_timeout)
            if chunk:
                buffer.extend(chunk)
                quiet = 0
                if len(buffer) >= cfg.early_stop_bytes:
                    break
                self._pause(cfg.data_poll_pause)
            else:
                if buffer:
                    quiet += 1
                    if quiet >= cfg.quiet_reads:
                        break
                self._pause(cfg.empty_poll_pause)
        return bytes(buffer)

    def _attempt(self, frame: bytes, accept: AcceptPredicate, label: str) -> bytes:
        self.clear_buffer()
        if not self.transport.write(frame):
            raise CommunicationError(f"{label}: incomplete write of {len(frame)} bytes")
        self._pause(self.config.post_write_delay)

        raw = self.collect_response()
        if not raw:
            raise ResponseTimeout(f"{label}: no response")
        if not accept(raw):
            raise InvalidResponse(f"{label}: response rejected ({len(raw)} bytes: {format_hex(raw[:16])})")
        return raw

    def transact(
        self,
        frame: bytes,
        accept: AcceptPredicate = accept_non_empty,
        attempts: Optional[int] = None,
        label: Optional[str] = None,
    ) -> bytes:
        """
        Send ``frame`` and return the first accepted reply.

        Args:
            frame: Command bytes
            accept: Predicate a reply must satisfy (default: non-empty)
            attempts: Override the configured attempt cap
            label: Name used in log messages (default: opcode name)

        Returns:
            Raw reply bytes

        Raises:
            CommunicationError: If every attempt failed
            DeviceNotConnected: If the transport is not open
        """
        cap = attempts if attempts is not None else self.config.attempts
        if cap < 1:
            raise ValueError("attempts must be >= 1")
        name, frame_hex = describe_frame(frame)
        label = label or name

        with self._lock:
            self.transactions += 1
            self.backoff_history = []
            self.attempts_made = 0
            last_error: Optional[Exception] = None

            for attempt in range(1, cap + 1):
                self.attempts_made = attempt
                self._emit(f"{label} attempt {attempt}/{cap}: {frame_hex}")
                try:
                    raw = self._attempt(frame, accept, label)
                except (CommunicationError, ResponseTimeout, InvalidResponse) as e:
                    last_error = e
                    delay = attempt * self.config.backoff_step
                    self.backoff_history.append(delay)
                    self._emit(f"{e}; backing off {delay:.2f}s")
                    self._pause(delay)
                    continue

                self._emit(f"{label} reply ({len(raw)} bytes): {format_hex(raw[:32])}")
                return raw

        raise CommunicationError(
            f"{label} failed after {cap} attempts: {last_error}"
        ) from last_error
