"""
asyncio front end for K5Session.

Every session operation is exposed as a coroutine. The blocking call runs
on a single-worker thread pool, so requests execute one at a time in the
order they were submitted, while the event loop stays free.

Example:
    async with AsyncK5Session(K5Session(transport)) as radio:
        voltage = await radio.read_battery_voltage()
"""

import asyncio
import functools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence

from .protocol.k5_protocol import K5Session, ProgressCallback
from .record_codec import CalibrationData, Channel, DeviceInfo, DeviceSettings


class AsyncK5Session:
    """
    Coroutine wrapper around a K5Session.

    Each long operation (channel scan, EEPROM dump, firmware flash) gets its
    own cancel event when the worker starts it; :meth:`cancel_current` sets
    the event of the operation running at that moment and leaves queued
    operations alone.
    """

    def __init__(self, session: K5Session):
        self.session = session
        self._current_cancel: Optional[threading.Event] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="k5-io")

    async def _run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    async def _run_cancellable(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run ``func`` with a fresh ``cancel`` event that is current only while it runs."""
        def call():
            cancel = threading.Event()
            self._current_cancel = cancel
            try:
                return func(*args, cancel=cancel, **kwargs)
            finally:
                if self._current_cancel is cancel:
                    self._current_cancel = None

        return await self._run(call)

    def cancel_current(self) -> None:
        """Ask the running long operation to stop at its next checkpoint."""
        cancel = self._current_cancel
        if cancel is not None:
            cancel.set()

    async def open(self) -> None:
        await self._run(self.session.__enter__)

    async def close(self) -> None:
        try:
            await self._run(self.session.close)
        finally:
            self._executor.shutdown(wait=True)

    async def __aenter__(self) -> "AsyncK5Session":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def handshake(self) -> bool:
        return await self._run(self.session.handshake)

    async def test_communication(self) -> bool:
        return await self._run(self.session.test_communication)

    async def read_battery_calibration(self) -> bytes:
        return await self._run_cancellable(self.session.read_battery_calibration)

    async def write_battery_calibration(self, data: bytes) -> None:
        await self._run(self.session.write_battery_calibration, data)

    async def read_battery_voltage(self) -> float:
        return await self._run_cancellable(self.session.read_battery_voltage)

    async def read_full_calibration(self) -> CalibrationData:
        return await self._run(self.session.read_full_calibration)

    async def write_full_calibration(self, calibration: CalibrationData) -> None:
        await self._run(self.session.write_full_calibration, calibration)

    async def read_settings(self) -> DeviceSettings:
        return await self._run(self.session.read_settings)

    async def write_settings(self, settings: DeviceSettings) -> None:
        await self._run(self.session.write_settings, settings)

    async def read_channels(self) -> List[Channel]:
        return await self._run_cancellable(self.session.read_channels)

    async def write_channels(
        self,
        channels: Sequence[Channel],
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        await self._run_cancellable(self.session.write_channels, channels, progress=progress)

    async def read_device_info(self) -> DeviceInfo:
        return await self._run(self.session.read_device_info)

    async def read_region(self, name: str) -> bytes:
        return await self._run(self.session.read_region, name)

    async def write_region(self, name: str, data: bytes) -> None:
        await self._run(self.session.write_region, name, data)

    async def dump_eeprom(self, progress: Optional[ProgressCallback] = None) -> bytes:
        return await self._run_cancellable(self.session.dump_eeprom, progress=progress)

    async def flash_firmware(self, firmware: bytes, progress: Optional[ProgressCallback] = None) -> None:
        """
        Flash firmware; ``progress`` is called from the I/O thread.
        """
        await self._run_cancellable(self.session.flash_firmware, firmware, progress=progress)
