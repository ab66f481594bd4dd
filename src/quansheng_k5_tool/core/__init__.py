"""
Core module for the Quansheng K5 tool.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Address and hex parsing (parsing.py)
- Result objects (results.py)
- Log sinks and standardized warnings (messages.py)

Device workflows live in core.actions, which is imported directly by the
CLI since it depends on the protocol layer.
"""

from .safety import SafetyContext, require_write_permission, WritePermissionError
from .parsing import parse_address, parse_hex
from .results import OperationResult
from .messages import (
    MessageLevel,
    LogSink,
    LoggingSink,
    MemorySink,
    WarningCode,
    WarningItem,
    result_to_warnings,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Parsing
    "parse_address",
    "parse_hex",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "LogSink",
    "LoggingSink",
    "MemorySink",
    "WarningCode",
    "WarningItem",
    "result_to_warnings",
]
