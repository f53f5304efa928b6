from collections import deque
from typing import Final, Tuple

import numpy as np
from numpy.typing import NDArray

from nescore.exceptions import UnmappedAccess
from nescore.logger import log as _log
from nescore.mapper import OPEN_BUS, Mapper, mask8

RAM_SIZE: Final[int] = 0x0800  # 2 KiB, mirrored four times up to $1FFF

# (first, last, description) for register windows that are not emulated.
PERIPHERAL_WINDOWS: Final[Tuple[Tuple[int, int, str], ...]] = (
    (0x2000, 0x3FFF, "PPU registers are not implemented yet"),
    (0x4000, 0x4017, "APU/IO registers are not implemented yet"),
    (0x4018, 0x401F, "CPU Test Mode not supported"),
)


class Bus:
    """
    CPU address space router.

    $0000-$1FFF  work RAM (2 KiB, mirrored)
    $2000-$401F  peripheral registers (stubbed, reads return $FF)
    $4020-$FFFF  cartridge (delegated to the mapper)
    """

    def __init__(self, mapper: Mapper, *, advisory_history: int = 256) -> None:
        self.mapper: Final[Mapper] = mapper
        self.RAM: NDArray[np.uint8] = np.zeros(RAM_SIZE, dtype=np.uint8)
        self.advisories: deque[UnmappedAccess] = deque(maxlen=advisory_history)
        # Cartridge-space holes are recorded in the same history.
        mapper.advisories = self.advisories

    def _unmapped(self, addr: int, kind: str) -> None:
        region = next(desc for first, last, desc in PERIPHERAL_WINDOWS if first <= addr <= last)
        advisory = UnmappedAccess(addr, kind, f"{region}!")
        self.advisories.append(advisory)
        _log.warning(str(advisory))

    def read(self, address: int) -> int:
        """Read one byte from the CPU address space."""
        addr = int(address) & 0xFFFF

        if addr < 0x2000:
            return int(self.RAM[addr % RAM_SIZE])

        if addr < 0x4020:
            self._unmapped(addr, "read")
            return OPEN_BUS

        return self.mapper.cpu_read(addr)

    def write(self, address: int, value: int) -> None:
        """Write one byte to the CPU address space."""
        addr = int(address) & 0xFFFF
        val = mask8(value)

        if addr < 0x2000:
            self.RAM[addr % RAM_SIZE] = val
            return

        if addr < 0x4020:
            self._unmapped(addr, "write")
            return

        self.mapper.cpu_write(addr, val)

    def read16(self, address: int) -> int:
        """Read a little-endian word (reset vector)."""
        low = self.read(address)
        high = self.read((int(address) + 1) & 0xFFFF)
        return (high << 8) | low
