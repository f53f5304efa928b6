from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray
from returns.result import Failure, Result, Success

from nescore.cartridge.header import CartridgeDescriptor, parse_header
from nescore.exceptions import IoFailure, NesCoreError
from nescore.logger import log as _log


@dataclass(frozen=True)
class CartridgeImage:
    """
    A loaded cartridge: the raw file bytes plus the parsed header.

    ``data`` is the whole file (header and trainer included) as a read-only
    ``uint8`` array. Mappers index into it directly using the offsets the
    descriptor provides.
    """

    data: NDArray[np.uint8]
    descriptor: CartridgeDescriptor
    path: Optional[Path] = None

    def __repr__(self) -> str:
        d = self.descriptor
        return (
            f"<CartridgeImage file={str(self.path) if self.path else None!r} "
            f"format={d.format_name!r} "
            f"PRG={d.prg_rom_size} bytes "
            f"CHR={d.chr_rom_size} bytes "
            f"Mapper={d.mapper} "
            f"Timing={d.timing.name}>"
        )

    def __len__(self) -> int:
        return len(self.data)

    @property
    def prg_rom(self) -> NDArray[np.uint8]:
        d = self.descriptor
        return self.data[d.prg_rom_offset : d.prg_rom_offset + d.prg_rom_size]

    @property
    def chr_rom(self) -> NDArray[np.uint8]:
        d = self.descriptor
        return self.data[d.chr_rom_offset : d.chr_rom_offset + d.chr_rom_size]

    @classmethod
    def from_bytes(cls, data: bytes, path: Optional[Path] = None) -> Result["CartridgeImage", NesCoreError]:
        """
        Validate and wrap raw image bytes.

        Args:
            data: Raw bytes of the ROM file.
            path: Where the bytes came from, if anywhere.

        Returns:
            Result containing either a CartridgeImage or the load error.
        """
        if not isinstance(data, (bytes, bytearray)):
            return Failure(IoFailure(f"Expected bytes or bytearray, got {type(data).__name__}"))

        def wrap(descriptor: CartridgeDescriptor) -> "CartridgeImage":
            arr = np.frombuffer(bytes(data), dtype=np.uint8)
            return cls(data=arr, descriptor=descriptor, path=path)

        return parse_header(data).map(wrap)

    @classmethod
    def from_file(cls, filepath: Union[Path, str]) -> Result["CartridgeImage", NesCoreError]:
        """
        Load a cartridge from file path.

        Args:
            filepath: Path to the ROM file to load

        Returns:
            Result containing either a CartridgeImage or the load error.
        """
        path = Path(filepath)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            return Failure(IoFailure(f"failed to open file {path}: {e}"))

        if not data:
            return Failure(IoFailure(f"failed to read file {path}: file is empty"))

        _log.debug(f"Read {len(data)} bytes from {path}")
        return cls.from_bytes(data, path=path)
