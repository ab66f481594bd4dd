"""
Channel discovery for UV-K5 radios.

The location of the channel table is not reliably known (0x0F30 and
0x0000 both occur), so channels are found by trying four strategies in
order until one produces a believable list:

    1. bulk     - alternate bulk-read frames aimed at each candidate base
    2. blocks   - 128-byte block reads from each base, aligned 16-byte windows
    3. linear   - 16-byte reads across the whole EEPROM
    4. dump     - full EEPROM image, then a byte-by-byte window search

A strategy only counts when its channels carry more than one distinct
frequency; a repeating noise pattern would otherwise look like a table.
"""

import threading
from typing import Callable, Iterable, List, Optional, Set, Tuple

from ..core.messages import MessageLevel
from ..record_codec import (
    CHANNEL_SIZE,
    Channel,
    decode_channel,
    distinct_frequencies,
    plausible_channel,
)
from .commands import (
    Opcode,
    build_checksummed_read_command,
    build_magic_read_command,
    build_read_command,
)
from .errors import CommunicationError
from .probing import CommandVariant, check_cancelled, first_success

BLOCK_SIZE = 128
ScanHit = Tuple[int, bytes]


class ChannelScanner:
    """
    Runs the channel discovery strategies against a session.

    Args:
        session: K5Session providing engine, memory map, log and sleep
        cancel: Optional event checked between requests
    """

    def __init__(self, session, cancel: Optional[threading.Event] = None):
        self.session = session
        self.memory_map = session.memory_map
        self.cancel = cancel
        self.winning_strategy: Optional[str] = None

    @property
    def strategies(self) -> List[Tuple[str, Callable[[], List[Channel]]]]:
        return [
            ("bulk", self.scan_bulk),
            ("blocks", self.scan_blocks),
            ("linear", self.scan_linear),
            ("dump", self.scan_dump),
        ]

    def _log(self, message: str, level: MessageLevel = MessageLevel.DEBUG) -> None:
        self.session.log(message, level)

    def _index_for(self, offset: int, ordinal: int) -> int:
        """Slot number when ``offset`` sits on a channel boundary, else the ordinal."""
        for base in self.memory_map.channel_bases:
            delta = offset - base
            if delta >= 0 and delta % CHANNEL_SIZE == 0:
                slot = delta // CHANNEL_SIZE
                if slot < self.memory_map.max_channels:
                    return slot
        return ordinal

    def _claim_index(self, index: int, taken: Set[int]) -> int:
        """``index`` if still free, else the next free slot after it."""
        limit = max(self.memory_map.max_channels, len(taken) + 1)
        while index in taken:
            index = (index + 1) % limit
        taken.add(index)
        return index

    def _decode_hits(self, hits: Iterable[ScanHit]) -> List[Channel]:
        channels = []
        taken: Set[int] = set()
        for ordinal, (offset, record) in enumerate(hits):
            index = self._index_for(offset, ordinal)
            if index in taken:
                self._log(f"Channel at 0x{offset:04X}: slot {index} already used, renumbering")
            channel = decode_channel(record, self._claim_index(index, taken))
            if channel is not None:
                channels.append(channel)
        return channels

    @staticmethod
    def _believable(channels: List[Channel]) -> bool:
        return distinct_frequencies(channels) > 1

    def run(self) -> List[Channel]:
        """
        Try every strategy in order.

        Returns:
            Channels from the first successful strategy, or [] if none worked
        """
        for name, strategy in self.strategies:
            check_cancelled(self.cancel, "channel scan")
            self._log(f"Channel scan: trying {name} strategy", MessageLevel.INFO)
            channels = strategy()
            if self._believable(channels):
                self.winning_strategy = name
                self._log(f"Channel scan: {name} strategy found {len(channels)} channels", MessageLevel.SUCCESS)
                return channels
            self._log(f"Channel scan: {name} strategy found nothing usable")

        self._log("Channel scan: no channels found by any strategy", MessageLevel.WARNING)
        return []

    # -- strategy 1 ---------------------------------------------------------

    def _records_from_reply(self, base: int) -> Callable[[bytes], Optional[List[Channel]]]:
        def extract(raw: bytes) -> Optional[List[Channel]]:
            payload = self.session.extract_block(raw, BLOCK_SIZE) or raw
            hits = [
                (base + pos, payload[pos:pos + CHANNEL_SIZE])
                for pos in range(0, len(payload) - CHANNEL_SIZE + 1, CHANNEL_SIZE)
            ]
            channels = self._decode_hits(h for h in hits if plausible_channel(h[1]))
            return channels if self._believable(channels) else None
        return extract

    def scan_bulk(self) -> List[Channel]:
        """Alternate read frames aimed at each candidate table base."""
        variants = []
        for base in self.memory_map.channel_bases:
            extract = self._records_from_reply(base)
            variants.extend([
                CommandVariant(f"memory read @0x{base:04X}",
                               build_read_command(base, BLOCK_SIZE, Opcode.READ_MEMORY), extract),
                CommandVariant(f"magic read @0x{base:04X}",
                               build_magic_read_command(base, BLOCK_SIZE), extract),
                CommandVariant(f"checksummed read @0x{base:04X}",
                               build_checksummed_read_command(base, BLOCK_SIZE), extract),
            ])
        result = first_success(
            self.session.engine,
            variants,
            log=self.session.log,
            sleep=self.session.sleep,
            cancel=self.cancel,
            what="bulk channel read",
        )
        return result.value if result else []

    # -- strategy 2 ---------------------------------------------------------

    def scan_blocks(self) -> List[Channel]:
        """128-byte block reads of the table at each candidate base."""
        for base in self.memory_map.channel_bases:
            table = self._read_span(base, self.memory_map.channel_table_size)
            hits = [
                (base + pos, table[pos:pos + CHANNEL_SIZE])
                for pos in range(0, len(table) - CHANNEL_SIZE + 1, CHANNEL_SIZE)
            ]
            channels = self._decode_hits(h for h in hits if plausible_channel(h[1]))
            if self._believable(channels):
                return channels
            self._log(f"Block scan at 0x{base:04X}: {len(channels)} plausible records")
        return []

    def _read_span(self, start: int, length: int) -> bytes:
        """Read ``length`` bytes in blocks; unreadable blocks become 0xFF."""
        end = min(start + length, self.memory_map.eeprom_size)
        data = bytearray()
        for address in range(start, end, BLOCK_SIZE):
            check_cancelled(self.cancel, "channel scan")
            size = min(BLOCK_SIZE, end - address)
            block = self._try_read(address, size)
            data.extend(block if block is not None else b"\xFF" * size)
        return bytes(data)

    def _try_read(self, address: int, size: int) -> Optional[bytes]:
        try:
            return self.session.read_memory(address, size)
        except CommunicationError as e:
            self._log(f"Read of 0x{address:04X}/{size} failed: {e}")
            return None

    # -- strategy 3 ---------------------------------------------------------

    def scan_linear(self) -> List[Channel]:
        """16-byte reads stepping through the whole EEPROM."""
        hits = []
        for address in range(self.memory_map.eeprom_start, self.memory_map.eeprom_size, CHANNEL_SIZE):
            check_cancelled(self.cancel, "channel scan")
            record = self._try_read(address, CHANNEL_SIZE)
            if record is not None and plausible_channel(record):
                hits.append((address, record))
        return self._decode_hits(hits)

    # -- strategy 4 ---------------------------------------------------------

    def scan_dump(self) -> List[Channel]:
        """Full EEPROM image searched at every byte offset."""
        image = self.session.dump_eeprom(cancel=self.cancel)
        return self._decode_hits(find_channel_windows(image, self.memory_map.eeprom_start))


def find_channel_windows(image: bytes, origin: int = 0) -> List[ScanHit]:
    """
    Byte-shifted search of a memory image for plausible channel records.

    After a hit the search resumes 16 bytes further on, so records never
    overlap. Hits are returned in ascending offset order.
    """
    hits = []
    pos = 0
    limit = len(image) - CHANNEL_SIZE
    while pos <= limit:
        window = image[pos:pos + CHANNEL_SIZE]
        if plausible_channel(window):
            hits.append((origin + pos, bytes(window)))
            pos += CHANNEL_SIZE
        else:
            pos += 1
    return hits

