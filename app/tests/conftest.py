import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nescore.cartridge import CartridgeImage  # noqa: E402
from nescore.cartridge.header import CHR_BANK_SIZE, MAGIC, PRG_BANK_SIZE, TRAINER_SIZE  # noqa: E402

ILLEGAL_FILL = 0xFF


def build_header(
    prg_banks: int = 2,
    chr_banks: int = 1,
    *,
    mapper: int = 1,
    flags6: int = 0,
    flags7: int = 0,
    tail: bytes = b"",
) -> bytes:
    """16-byte header. ``tail`` fills bytes 8-15."""
    flags6 = (flags6 & 0x0F) | ((mapper & 0x0F) << 4)
    flags7 = (flags7 & 0x0F) | (((mapper >> 4) & 0x0F) << 4)
    header = MAGIC + bytes([prg_banks & 0xFF, chr_banks & 0xFF, flags6, flags7]) + tail
    return header.ljust(16, b"\x00")[:16]


def build_rom(
    prg_banks: int = 2,
    chr_banks: int = 1,
    *,
    mapper: int = 1,
    flags6: int = 0,
    flags7: int = 0,
    tail: bytes = b"",
    program: bytes = b"",
    program_offset: int = 0,
    reset: Optional[int] = 0x8000,
    padding: int = 0,
) -> bytes:
    """
    Whole image: header, optional trainer, PRG, CHR, then ``padding`` bytes.

    ``program`` lands at ``program_offset`` inside PRG ROM (offset 0 is
    $8000 at power-on). The reset vector goes at the end of the last bank,
    which MMC1 maps at $C000-$FFFF after power-on.
    """
    header = build_header(prg_banks, chr_banks, mapper=mapper, flags6=flags6, flags7=flags7, tail=tail)
    trainer = bytes(TRAINER_SIZE) if flags6 & 0x04 else b""
    prg = bytearray([ILLEGAL_FILL]) * (prg_banks * PRG_BANK_SIZE)
    prg[program_offset : program_offset + len(program)] = program
    if reset is not None and prg_banks:
        vector = len(prg) - 4
        prg[vector] = reset & 0xFF
        prg[vector + 1] = reset >> 8
    chr_ = bytes(chr_banks * CHR_BANK_SIZE)
    return header + trainer + bytes(prg) + chr_ + bytes(padding)


def load_image(data: bytes, path: Optional[Path] = None) -> CartridgeImage:
    return CartridgeImage.from_bytes(data, path=path).unwrap()


@pytest.fixture
def make_rom() -> Callable[..., bytes]:
    return build_rom


@pytest.fixture
def make_image() -> Callable[..., CartridgeImage]:
    def factory(program: bytes = b"", **kwargs) -> CartridgeImage:
        return load_image(build_rom(program=program, **kwargs))

    return factory
