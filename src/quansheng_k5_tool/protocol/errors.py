"""
Exception hierarchy for the UV-K5 serial protocol.

Transport failures are retried by the transaction engine and surface as
CommunicationError once the attempt cap is reached. Session-level code
decides which of these are recoverable (probes, handshake) and which are
fatal (write confirmation, bootloader stages).
"""


class K5Error(Exception):
    """Base exception for all UV-K5 protocol errors."""


class DeviceNotConnected(K5Error):
    """Transport is not open."""


class PortUnavailable(DeviceNotConnected):
    """Serial port could not be opened."""


class CommunicationError(K5Error):
    """Write failed, or every attempt of a transaction was exhausted."""


class InvalidResponse(K5Error):
    """Response received but rejected by the operation (e.g. write not echoed)."""


class ChecksumError(K5Error):
    """Frame integrity check failed.

    Reserved: the current read paths carry no checksum to verify.
    """


class ResponseTimeout(K5Error):
    """No bytes arrived across all read rounds of one attempt."""


class UnsupportedOperation(K5Error):
    """Requested memory region or operation has no command encoding."""


class OperationCancelled(K5Error):
    """Long-running operation was cancelled by the caller."""
