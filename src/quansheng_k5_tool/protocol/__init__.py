"""Radio protocol layer - serial transport, command codec, transactions and session."""

from .errors import (
    K5Error,
    DeviceNotConnected,
    PortUnavailable,
    CommunicationError,
    InvalidResponse,
    ChecksumError,
    ResponseTimeout,
    UnsupportedOperation,
    OperationCancelled,
)
from .k5_transport import BaseTransport, K5SerialTransport, open_serial
from .commands import (
    Opcode,
    Response,
    ResponseKind,
    build_read_command,
    build_write_command,
    validate_response,
    extract_payload,
)
from .transaction import TransactionConfig, TransactionEngine
from .probing import CommandVariant, ProbeResult, first_success
from .k5_protocol import K5Session, FALLBACK_BATTERY_CALIBRATION
from .channel_scan import ChannelScanner, find_channel_windows

__all__ = [
    # Errors
    "K5Error",
    "DeviceNotConnected",
    "PortUnavailable",
    "CommunicationError",
    "InvalidResponse",
    "ChecksumError",
    "ResponseTimeout",
    "UnsupportedOperation",
    "OperationCancelled",
    # Transport
    "BaseTransport",
    "K5SerialTransport",
    "open_serial",
    # Codec
    "Opcode",
    "Response",
    "ResponseKind",
    "build_read_command",
    "build_write_command",
    "validate_response",
    "extract_payload",
    # Engine / session
    "TransactionConfig",
    "TransactionEngine",
    "CommandVariant",
    "ProbeResult",
    "first_success",
    "K5Session",
    "FALLBACK_BATTERY_CALIBRATION",
    "ChannelScanner",
    "find_channel_windows",
]
