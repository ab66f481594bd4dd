"""
Command variant probing.

The UV-K5 dialect is not reliably known in advance, so most reads are
expressed as an ordered list of candidate frames. Each candidate runs as a
full transaction; the first whose reply yields a value wins. Candidates are
tried strictly one after another, never in parallel.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from ..core.messages import LogSink, MessageLevel
from .commands import format_hex
from .errors import CommunicationError, OperationCancelled
from .transaction import SleepFn, TransactionEngine

Extractor = Callable[[bytes], Optional[Any]]


def _whole_reply(raw: bytes) -> Optional[bytes]:
    return raw or None


@dataclass(frozen=True)
class CommandVariant:
    """
    One candidate encoding of a request.

    Attributes:
        name: Short label for logs
        frame: Bytes to send
        extract: Turns a reply into a value, or None to reject it
    """
    name: str
    frame: bytes
    extract: Extractor = _whole_reply

    def accepts(self, raw: bytes) -> bool:
        return self.extract(raw) is not None


@dataclass(frozen=True)
class ProbeResult:
    """Winning variant, its raw reply, the extracted value and how many variants ran."""
    variant: CommandVariant
    raw: bytes
    value: Any
    attempted: int


def check_cancelled(cancel: Optional[threading.Event], what: str = "operation") -> None:
    """Raise OperationCancelled if ``cancel`` is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{what} cancelled")


def first_success(
    engine: TransactionEngine,
    variants: Sequence[CommandVariant],
    log: LogSink,
    sleep: SleepFn,
    pause: float = 0.0,
    cancel: Optional[threading.Event] = None,
    attempts: Optional[int] = None,
    what: str = "probe",
) -> Optional[ProbeResult]:
    """
    Try ``variants`` in order and return the first accepted one.

    A variant whose transaction is exhausted is logged and skipped; ``pause``
    seconds pass before the next variant.

    Returns:
        ProbeResult, or None if every variant failed

    Raises:
        OperationCancelled: If ``cancel`` is set between variants
    """
    total = len(variants)
    for number, variant in enumerate(variants, start=1):
        check_cancelled(cancel, what)
        log(f"{what}: variant {number}/{total} {variant.name} [{format_hex(variant.frame)}]", MessageLevel.DEBUG)
        try:
            raw = engine.transact(
                variant.frame,
                accept=variant.accepts,
                attempts=attempts,
                label=variant.name,
            )
        except CommunicationError as e:
            log(f"{what}: {variant.name} gave no usable reply ({e})", MessageLevel.DEBUG)
            if number < total and pause > 0:
                sleep(pause)
            continue

        log(f"{what}: {variant.name} answered with {len(raw)} bytes", MessageLevel.INFO)
        return ProbeResult(variant, raw, variant.extract(raw), number)

    log(f"{what}: none of {total} variants answered", MessageLevel.WARNING)
    return None
