"""
Safety context and write gating for radio operations.

Every operation that changes radio memory (calibration, settings, channels,
firmware) goes through require_write_permission so the rules live in one
place.
"""

import sys
from dataclasses import dataclass, field
from typing import Optional, List, Callable

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (model, region, etc.)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Safety context for write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the UI can prompt for confirmation
        model: Radio model name the write targets
        simulate: Dry run; nothing is sent to the radio
        warnings: List of warning messages accumulated during operation
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    model: str = ""
    simulate: bool = False
    warnings: List[str] = field(default_factory=list)

    # CLI sets these to prompt/print functions
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_details_dict(
        self,
        target_region: str = "",
        bytes_length: int = 0,
        address: Optional[int] = None,
    ) -> dict:
        """Create a details dictionary for display."""
        details = {
            "model": self.model or "Unknown",
            "target_region": target_region,
            "bytes_length": bytes_length,
        }
        if address is not None:
            details["address"] = f"0x{address:04X}"
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    target_region: str = "",
    bytes_length: int = 0,
    address: Optional[int] = None,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. If simulate mode: always allowed (no actual write)
    2. If write not enabled: raise with instructions
    3. If confirmation token present: must match exactly
    4. If interactive: prompt user for confirmation

    Args:
        ctx: Safety context with all required information
        target_region: Description of target memory region
        bytes_length: Number of bytes to write
        address: Optional start address

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(target_region, bytes_length, address)

    if ctx.simulate:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Write operation requires explicit permission. Use the --write flag.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    model: str = "",
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    If confirmation_token is None and stdin is a TTY, the context is
    interactive; the caller sets the prompt callbacks.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        model=model,
        simulate=simulate,
    )
