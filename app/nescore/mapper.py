# - Mapper base class
# - Mapper001 (MMC1)
# - create_mapper factory

from collections import deque
from pathlib import Path
from types import TracebackType
from typing import Final, Optional, Type, Union

import numpy as np
from numpy.typing import NDArray
from typing_extensions import override

from nescore.cartridge import CartridgeImage
from nescore.exceptions import IoFailure, MapperAddressOverflow, UnmappedAccess, UnsupportedMapper
from nescore.logger import log as _log

OPEN_BUS: Final[int] = 0xFF
DEFAULT_SAVE_EXTENSION: Final[str] = "sav"


# Utilities
def mask8(value: int) -> int:
    """Mask to 8-bit value"""
    return int(value) & 0xFF


def save_path_for(rom_path: Union[str, Path], extension: str = DEFAULT_SAVE_EXTENSION) -> Path:
    """Battery file next to the ROM: same directory and stem, save extension."""
    return Path(rom_path).with_suffix("." + extension.lstrip("."))


def open_save_ram(path: Path, size: int) -> Optional[np.memmap]:
    """
    Map an existing battery file for read/update.

    The file is never created. A missing or empty file means the cartridge
    runs without save RAM.

    Raises:
        IoFailure: The path exists but is not a regular file, or it cannot
            be opened for read/update.
    """
    try:
        file_size = path.stat().st_size
    except FileNotFoundError:
        _log.info(f"No battery file at {path}, running without save RAM")
        return None
    except OSError as e:
        raise IoFailure(f"failed to access battery file {path}: {e}") from e

    if not path.is_file():
        raise IoFailure(f"battery file {path} is not a regular file")

    if file_size == 0:
        _log.info(f"Battery file {path} is empty, running without save RAM")
        return None

    length = min(size, file_size)
    try:
        save_ram = np.memmap(path, dtype=np.uint8, mode="r+", shape=(length,))
    except OSError as e:
        raise IoFailure(f"failed to open battery file {path}: {e}") from e

    if length < size:
        _log.warning(f"Battery file {path} holds {file_size} bytes, cartridge expects {size}")
    _log.info(f"Will save battery to {path}")
    return save_ram


# Base Mapper
class Mapper:
    """
    Base class for NES mappers.

    Implementations override cpu_read/cpu_write/ppu_read/ppu_write. The
    mapper borrows the cartridge image; destroying it releases mapper-owned
    resources only.
    """

    number: int = -1

    def __init__(self, image: CartridgeImage) -> None:
        self.image: Final[CartridgeImage] = image
        self.rom: Final[NDArray[np.uint8]] = image.data
        self.prg_offset: Final[int] = image.descriptor.prg_rom_offset
        self.prg_size: Final[int] = image.descriptor.prg_rom_size
        self.advisories: deque[UnmappedAccess] = deque(maxlen=256)

    def cpu_read(self, addr: int) -> int:
        raise NotImplementedError

    def cpu_write(self, addr: int, value: int) -> None:
        raise NotImplementedError

    def ppu_read(self, addr: int) -> int:
        raise NotImplementedError

    def ppu_write(self, addr: int, value: int) -> None:
        raise NotImplementedError

    def destroy(self) -> None:
        pass

    def _unmapped(self, addr: int, kind: str, region: str) -> None:
        advisory = UnmappedAccess(addr, kind, region)
        self.advisories.append(advisory)
        _log.warning(str(advisory))

    def _rom_byte(self, addr: int, offset: int) -> int:
        """Read a byte at ``offset`` into the image, checking the bank math."""
        if not 0 <= offset < len(self.rom):
            raise MapperAddressOverflow(addr, offset, len(self.rom))
        return int(self.rom[offset])

    def __enter__(self) -> "Mapper":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.destroy()


# Mapper 001 (MMC1)
class Mapper001(Mapper):
    """
    MMC1 (Mapper 001)

    - Serial 5-bit shift register loaded one bit per write to $8000-$FFFF
    - A write with bit 7 set commits the shift register to the internal
      register picked by the address, then clears it
    - PRG banking in 32 KiB or 16 KiB modes
    - Battery-backed PRG RAM at $6000-$7FFF

    CHR banking is not implemented: pattern table reads return $FF and
    writes are dropped.
    """

    number = 1

    def __init__(
        self,
        image: CartridgeImage,
        rom_path: Optional[Union[str, Path]] = None,
        *,
        save_extension: str = DEFAULT_SAVE_EXTENSION,
    ) -> None:
        super().__init__(image)

        self.prg_banks: Final[int] = image.descriptor.prg_rom_banks

        # MMC1 registers
        self.shift_register: int = 0
        self.control: int = 0x0C  # PRG mode 3: last bank fixed at $C000
        self.chr_bank_0: int = 0
        self.chr_bank_1: int = 0
        self.prg_bank: int = 0

        self.save_ram: Optional[np.memmap] = None
        save_size = image.descriptor.save_ram_bytes
        if rom_path is None:
            rom_path = image.path
        if rom_path is not None and save_size:
            self.save_ram = open_save_ram(save_path_for(rom_path, save_extension), save_size)

    @property
    def prg_mode(self) -> int:
        """(control >> 2) & 3: 0/1 32 KiB, 2 first bank fixed, 3 last bank fixed."""
        return (self.control >> 2) & 0x03

    def prg_rom_offset(self, addr: int) -> int:
        """Resolve a CPU address in $8000-$FFFF to an offset inside PRG ROM."""
        mode = self.prg_mode
        if mode in (0, 1):
            offset = (self.prg_bank & 0x0E) * 0x4000 + (addr - 0x8000)
        elif addr < 0xC000:
            if mode == 2:
                offset = addr - 0x8000
            else:
                offset = (self.prg_bank & 0x0F) * 0x4000 + (addr - 0x8000)
        else:
            if mode == 2:
                offset = (self.prg_bank & 0x0F) * 0x4000 + (addr - 0xC000)
            else:
                offset = (self.prg_banks - 1) * 0x4000 + (addr - 0xC000)

        if self.prg_size == 0:
            return offset
        return offset % self.prg_size

    def physical_address(self, addr: int) -> int:
        """Offset into the whole image (header and trainer included)."""
        return self.prg_offset + self.prg_rom_offset(addr)

    @override
    def cpu_read(self, addr: int) -> int:
        if addr < 0x6000:
            self._unmapped(addr, "read", "MMC1 cartridge has nothing mapped here! Returning 0xFF.")
            return OPEN_BUS
        if addr <= 0x7FFF:
            return self._save_ram_read(addr - 0x6000)
        return self._rom_byte(addr, self.physical_address(addr))

    @override
    def cpu_write(self, addr: int, value: int) -> None:
        value = mask8(value)
        if addr < 0x6000:
            self._unmapped(addr, "write", "MMC1 cartridge has nothing mapped here! Ignoring.")
            return
        if addr <= 0x7FFF:
            self._save_ram_write(addr - 0x6000, value)
            return

        if value & 0x80:
            # Commit pulse: latch the accumulated bits into the register
            # selected by address bits 13-14, then clear the shift register.
            reg_val = self.shift_register & 0x1F
            match (addr >> 13) & 0x03:
                case 0:
                    self.control = reg_val
                case 1:
                    self.chr_bank_0 = reg_val
                case 2:
                    self.chr_bank_1 = reg_val
                case 3:
                    self.prg_bank = reg_val
            self.shift_register = 0
            _log.debug(
                f"MMC1 commit ${addr:04X}: control=${self.control:02X} chr0=${self.chr_bank_0:02X} "
                f"chr1=${self.chr_bank_1:02X} prg=${self.prg_bank:02X}"
            )
            return

        self.shift_register = ((self.shift_register << 1) | (value & 0x01)) & 0x1F

    def _save_ram_read(self, offset: int) -> int:
        if self.save_ram is None or offset >= len(self.save_ram):
            return OPEN_BUS
        return int(self.save_ram[offset])

    def _save_ram_write(self, offset: int, value: int) -> None:
        if self.save_ram is None or offset >= len(self.save_ram):
            return
        self.save_ram[offset] = value

    @override
    def ppu_read(self, addr: int) -> int:
        # No CHR banking, see class docstring.
        return OPEN_BUS

    @override
    def ppu_write(self, addr: int, value: int) -> None:
        return None

    @override
    def destroy(self) -> None:
        """
        Flush and unmap the battery file. The cartridge image is untouched.

        The mapper holds the only reference to the memmap, so dropping it
        here unmaps the file before ``destroy`` returns.
        """
        save_ram, self.save_ram = self.save_ram, None
        if save_ram is not None:
            save_ram.flush()
            del save_ram


def create_mapper(
    image: CartridgeImage,
    rom_path: Optional[Union[str, Path]] = None,
    *,
    save_extension: str = DEFAULT_SAVE_EXTENSION,
) -> Mapper:
    """
    Build the mapper named by the cartridge header.

    Raises:
        UnsupportedMapper: The mapper number has no implementation.
    """
    mapper_id = image.descriptor.mapper
    match mapper_id:
        case 1:
            return Mapper001(image, rom_path, save_extension=save_extension)
        case _:
            raise UnsupportedMapper(mapper_id)
