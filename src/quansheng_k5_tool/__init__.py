"""
Quansheng K5 Tool - serial programming utility for Quansheng UV-K5 radios

Calibration, battery, settings and channel memory access, EEPROM dumps and
firmware flashing over the USB programming cable.
"""

__version__ = "0.1.0"

from quansheng_k5_tool.protocol import K5SerialTransport, K5Session
from quansheng_k5_tool.async_session import AsyncK5Session

__all__ = [
    "K5SerialTransport",
    "K5Session",
    "AsyncK5Session",
    "__version__",
]
