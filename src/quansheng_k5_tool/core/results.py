"""
Result objects for radio operations.

Every action in core.actions returns an OperationResult instead of raising,
so the CLI can report the region touched, what came back from the radio
and any fallback or retry warnings in one place.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..record_codec import Channel


def describe_payload(data: Any) -> str:
    """
    Short description of a result payload.

    bytes -> "16 bytes", channel lists -> "3 channels", dataclass records
    (settings, calibration, device info) -> their type name.
    """
    if data is None:
        return ""
    if isinstance(data, (bytes, bytearray)):
        return f"{len(data):,} bytes"
    if isinstance(data, (list, tuple)):
        if data and all(isinstance(item, Channel) for item in data):
            return f"{len(data)} channel" + ("" if len(data) == 1 else "s")
        return f"{len(data)} items"
    if isinstance(data, float):
        return f"{data:.3f}"
    return type(data).__name__


@dataclass
class OperationResult:
    """
    Outcome of one radio operation.

    Attributes:
        ok: False once any error was recorded
        operation: Action name, e.g. "read_battery_calibration"
        model: Radio model the session was opened for
        region: Memory touched, e.g. "battery_calibration @0x1EC0/16B"
        bytes_len: Bytes read from or written to the radio
        data: Payload (bytes, List[Channel], DeviceSettings, CalibrationData, ...)
        warnings: Fallbacks, skipped handshakes and other non-fatal issues
        errors: Reasons the operation failed
        metadata: Values shown to the user (strategy, voltage, hex, ...)
        logs: Session log lines captured while the action ran
    """
    ok: bool
    operation: str
    model: str = ""
    region: str = ""
    bytes_len: int = 0
    data: Any = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record an error; the result becomes a failure."""
        self.errors.append(message)
        self.ok = False

    @property
    def payload(self) -> str:
        return describe_payload(self.data)

    def to_summary(self) -> str:
        """Multi-line report for the console."""
        lines = [f"[{'SUCCESS' if self.ok else 'FAILED'}] {self.operation}"]
        header = (
            ("Model", self.model),
            ("Region", self.region),
            ("Bytes", f"{self.bytes_len:,}" if self.bytes_len else ""),
            ("Payload", self.payload),
        )
        lines.extend(f"  {label}: {value}" for label, value in header if value)
        lines.extend(f"  {name}: {value}" for name, value in self.metadata.items())

        for title, messages in (("Warnings", self.warnings), ("Errors", self.errors)):
            if messages:
                lines.append(f"  {title}:")
                lines.extend(f"    - {message}" for message in messages)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form; the payload itself is reduced to its description."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "model": self.model,
            "region": self.region,
            "bytes_len": self.bytes_len,
            "payload": self.payload,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(cls, operation: str, model: str = "", region: str = "", bytes_len: int = 0,
                **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, model=model, region=region, bytes_len=bytes_len, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, model: str = "", **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, model=model, **kwargs)
        result.errors.append(error)
        return result
