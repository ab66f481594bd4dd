"""
Message levels, log sinks and structured warnings for the K5 tool.

The protocol session never prints or formats output itself. It reports
each retry, probe and outcome to a log sink: any callable accepting
``(message, MessageLevel)``. The CLI and tests choose what happens to
those messages.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Any

logger = logging.getLogger(__name__)


class MessageLevel(Enum):
    """Severity level for messages."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


LogSink = Callable[[str, MessageLevel], None]

# SUCCESS has no stdlib counterpart; report it as INFO
_LOGGING_LEVELS: Dict[MessageLevel, int] = {
    MessageLevel.DEBUG: logging.DEBUG,
    MessageLevel.INFO: logging.INFO,
    MessageLevel.WARNING: logging.WARNING,
    MessageLevel.ERROR: logging.ERROR,
    MessageLevel.SUCCESS: logging.INFO,
}


class LoggingSink:
    """Forward sink messages to a standard library logger."""

    def __init__(self, target: logging.Logger = None):
        self.target = target or logging.getLogger("quansheng_k5_tool.session")

    def __call__(self, message: str, level: MessageLevel) -> None:
        if level is MessageLevel.SUCCESS:
            message = f"✓ {message}"
        self.target.log(_LOGGING_LEVELS[level], message)


@dataclass
class LogEntry:
    """One message received by a MemorySink."""
    message: str
    level: MessageLevel
    timestamp: datetime = field(default_factory=datetime.now)

    def to_line(self) -> str:
        return f"{self.timestamp:%H:%M:%S} {self.level.value.upper():7} {self.message}"


class MemorySink:
    """
    Collect sink messages in memory.

    Optionally forwards every message to another sink so a caller can both
    capture and display.
    """

    def __init__(self, forward: LogSink = None):
        self.entries: List[LogEntry] = []
        self.forward = forward

    def __call__(self, message: str, level: MessageLevel) -> None:
        self.entries.append(LogEntry(message, level))
        if self.forward is not None:
            self.forward(message, level)

    def messages(self, level: MessageLevel = None) -> List[str]:
        """Messages, optionally filtered to one level."""
        return [e.message for e in self.entries if level is None or e.level is level]

    def lines(self) -> List[str]:
        return [e.to_line() for e in self.entries]

    def clear(self) -> None:
        self.entries.clear()


# Stable warning codes for conditions the CLI explains to the user
class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"
    W_HANDSHAKE_FAILED = "W_HANDSHAKE_FAILED"
    W_SERIAL_TIMEOUT = "W_SERIAL_TIMEOUT"
    W_SERIAL_ERROR = "W_SERIAL_ERROR"
    W_FALLBACK_DATA = "W_FALLBACK_DATA"
    W_VOLTAGE_OUT_OF_RANGE = "W_VOLTAGE_OUT_OF_RANGE"
    W_NO_CHANNELS = "W_NO_CHANNELS"
    W_CHANNEL_INVALID = "W_CHANNEL_INVALID"
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_WRITE_REJECTED = "W_WRITE_REJECTED"
    W_CANCELLED = "W_CANCELLED"
    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_NOT_FOUND:
        "Check the USB cable, then run 'ports' to list available serial ports.",
    WarningCode.W_HANDSHAKE_FAILED:
        "Radio may not be in the right mode. Power cycle it and retry.",
    WarningCode.W_SERIAL_TIMEOUT:
        "Check the programming cable is fully seated in the K1 jack.",
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps (CHIRP, terminal monitors). Check the USB driver.",
    WarningCode.W_FALLBACK_DATA:
        "The radio did not answer; the value shown is a built-in fallback, not device data.",
    WarningCode.W_VOLTAGE_OUT_OF_RANGE:
        "Try the other voltage profile with --voltage-profile.",
    WarningCode.W_NO_CHANNELS:
        "No scan strategy found channel data. Try a full EEPROM dump to inspect memory.",
    WarningCode.W_CHANNEL_INVALID:
        "Fix the listed channel fields before writing them to the radio.",
    WarningCode.W_WRITE_DISABLED:
        "Add --write and confirm with WRITE to perform actual writes.",
    WarningCode.W_WRITE_REJECTED:
        "The radio did not confirm the write. Re-read the data before retrying.",
    WarningCode.W_CANCELLED:
        "Operation was cancelled; the radio may hold partially written data.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details (use --verbose).",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    remediation: str = ""

    def __post_init__(self):
        if not self.remediation:
            self.remediation = WARNING_REMEDIATIONS.get(self.code, "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "remediation": self.remediation,
        }


def classify_message(message: str) -> WarningCode:
    """Map a plain warning/error string to a known code."""
    msg = message.lower()
    if "handshake" in msg:
        return WarningCode.W_HANDSHAKE_FAILED
    if "fallback" in msg:
        return WarningCode.W_FALLBACK_DATA
    if "cancel" in msg:
        return WarningCode.W_CANCELLED
    if "not open" in msg or "cannot open" in msg:
        return WarningCode.W_DEVICE_NOT_FOUND
    if "timeout" in msg or "no response" in msg or "attempts" in msg:
        return WarningCode.W_SERIAL_TIMEOUT
    if "voltage" in msg:
        return WarningCode.W_VOLTAGE_OUT_OF_RANGE
    if "no channels" in msg:
        return WarningCode.W_NO_CHANNELS
    if "permission" in msg or "--write" in msg:
        return WarningCode.W_WRITE_DISABLED
    if "not confirmed" in msg or "echo" in msg:
        return WarningCode.W_WRITE_REJECTED
    return WarningCode.W_UNKNOWN


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert an OperationResult's warnings and errors to WarningItems.

    Args:
        result: OperationResult from core actions

    Returns:
        List of WarningItem objects, warnings first
    """
    items = [
        WarningItem(MessageLevel.WARNING, classify_message(w), w)
        for w in result.warnings
    ]
    items.extend(
        WarningItem(MessageLevel.ERROR, classify_message(e), e)
        for e in result.errors
    )
    return items
