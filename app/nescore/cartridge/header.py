"""
iNES / NES 2.0 header parsing.

The first 16 bytes of a cartridge image describe its layout. Three header
dialects share the same magic number but disagree about bytes 7-15, so the
dialect has to be inferred from byte 7 and, in some cases, from the file
size and the contents of bytes 12-15.

Header layout (byte: meaning)
  0-3: magic "NES\\x1a"
  4:   PRG ROM size, 16 KiB units (low byte under NES 2.0)
  5:   CHR ROM size, 8 KiB units (low byte under NES 2.0)
  6:   flags: mirroring, battery, trainer, four-screen, mapper low nibble
  7:   flags: system type, NES 2.0 identifier, mapper high nibble
  8-15: dialect dependent, see ``HEADER_FIELDS``
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final, List, NamedTuple, Optional, Tuple

from returns.result import Failure, Result, Success

from nescore.exceptions import CorruptImage, InvalidImage, NesCoreError
from nescore.logger import log as _log

MAGIC: Final[bytes] = b"NES\x1a"
HEADER_SIZE: Final[int] = 0x10  # 16 bytes
TRAINER_SIZE: Final[int] = 0x200  # 512 bytes
PRG_BANK_SIZE: Final[int] = 0x4000  # 16 KiB
CHR_BANK_SIZE: Final[int] = 0x2000  # 8 KiB
SAVE_RAM_WINDOW: Final[int] = 0x2000  # $6000-$7FFF

# Size prediction used to validate the NES 2.0 identifier. The constant is
# 512, not the 16-byte header size.
NES2_PREDICTION_BASE: Final[int] = 512


class HeaderFormat(Enum):
    INES = 0
    ARCHAIC_INES = 1
    INES_07 = 2  # not produced by resolve_format
    NES2 = 3


class SystemType(Enum):
    NES = 0
    VS_SYSTEM = 1
    PLAYCHOICE_10 = 2
    EXTENDED = 3


class TimingMode(Enum):
    NTSC = 0  # RP2C02
    PAL = 1  # RP2C07
    MULTI = 2
    DENDY = 3  # UA6538


class Mirroring(Enum):
    HORIZONTAL = 0
    VERTICAL = 1
    FOUR_SCREEN = 2


class HeaderField(NamedTuple):
    byte: int
    shift: int
    mask: int


# Every bit-packed header field, by name. Fields that only exist in one
# dialect are prefixed with that dialect.
HEADER_FIELDS: Final[Dict[str, HeaderField]] = {
    "prg_rom_lsb": HeaderField(4, 0, 0xFF),
    "chr_rom_lsb": HeaderField(5, 0, 0xFF),
    "mirroring": HeaderField(6, 0, 0x01),
    "battery": HeaderField(6, 1, 0x01),
    "trainer": HeaderField(6, 2, 0x01),
    "four_screen": HeaderField(6, 3, 0x01),
    "mapper_d0_d3": HeaderField(6, 4, 0x0F),
    "system_type": HeaderField(7, 0, 0x03),
    "nes2_identifier": HeaderField(7, 2, 0x03),
    "mapper_d4_d7": HeaderField(7, 4, 0x0F),
    # NES 2.0
    "nes2_mapper_d8_d11": HeaderField(8, 0, 0x0F),
    "nes2_submapper": HeaderField(8, 4, 0x0F),
    "nes2_prg_rom_msb": HeaderField(9, 0, 0x0F),
    "nes2_chr_rom_msb": HeaderField(9, 4, 0x0F),
    "nes2_prg_ram_shift": HeaderField(10, 0, 0x0F),
    "nes2_prg_nvram_shift": HeaderField(10, 4, 0x0F),
    "nes2_chr_ram_shift": HeaderField(11, 0, 0x0F),
    "nes2_chr_nvram_shift": HeaderField(11, 4, 0x0F),
    "nes2_timing": HeaderField(12, 0, 0x03),
    "nes2_vs_ppu_type": HeaderField(13, 0, 0x0F),
    "nes2_vs_hardware_type": HeaderField(13, 4, 0x0F),
    "nes2_extended_console_type": HeaderField(14, 0, 0x0F),
    "nes2_misc_rom_count": HeaderField(14, 0, 0x03),
    "nes2_default_expansion_device": HeaderField(15, 0, 0x3F),
    # iNES / archaic iNES
    "ines_prg_ram_units": HeaderField(8, 0, 0xFF),
    "ines_tv_system": HeaderField(9, 0, 0x01),
    "ines_tv_system_ext": HeaderField(10, 0, 0x03),
}

NES2_IDENTIFIER: Final[int] = 0b10
ARCHAIC_IDENTIFIER: Final[int] = 0b01

FORMAT_NAMES: Final[Dict[HeaderFormat, str]] = {
    HeaderFormat.INES: "iNES",
    HeaderFormat.ARCHAIC_INES: "Archaic iNES",
    HeaderFormat.INES_07: "iNES 0.7",
    HeaderFormat.NES2: "NES 2.0",
}

SYSTEM_NAMES: Final[Dict[SystemType, str]] = {
    SystemType.NES: "Nintendo Entertainment System or Nintendo Famicom",
    SystemType.VS_SYSTEM: "Nintendo Vs. UniSystem or Nintendo Vs. DualSystem",
    SystemType.PLAYCHOICE_10: "Nintendo Playchoice 10",
}

EXTENDED_CONSOLE_NAMES: Final[Tuple[str, ...]] = (
    "Nintendo Entertainment System, Nintendo Famicom or Dendy (Extended)",
    "Nintendo Vs. UniSystem or Nintendo Vs. DualSystem",
    "Nintendo Playchoice 10",
    "Nintendo Famicom clone with 6502-compatible CPU",
    "Nintendo Entertainment System or Nintendo Famicom with EPSM/Plug-through cartridge",
    "V.R. Technology VT01 with red/cyan STN palette",
    "V.R. Technology VT02",
    "V.R. Technology VT03",
    "V.R. Technology VT09",
    "V.R. Technology VT32",
    "V.R. Technology VT369",
    "UMC UM6578",
    "Nintendo Famicom Network System",
    "Unknown (Reserved)",
    "Unknown (Reserved)",
    "Unknown (Reserved)",
)

TIMING_NAMES: Final[Dict[TimingMode, str]] = {
    TimingMode.NTSC: "RP2C02 (NTSC)",
    TimingMode.PAL: "RP2C07 (PAL)",
    TimingMode.MULTI: "Dual-compatible (NTSC/PAL)",
    TimingMode.DENDY: "UA6538 (Dendy)",
}


def header_field(header: bytes, name: str) -> int:
    """Extract a named bit field from the raw header bytes."""
    field = HEADER_FIELDS[name]
    return (header[field.byte] >> field.shift) & field.mask


@dataclass(frozen=True)
class CartridgeDescriptor:
    """
    Everything the header says about a cartridge.

    RAM sizes are shift counts under NES 2.0 (bytes = 64 << count, zero
    meaning absent) and a count of 8 KiB units for ``prg_ram_size`` under
    the legacy dialects. Use the ``*_bytes`` properties for actual sizes.
    """

    header_format: HeaderFormat
    prg_rom_banks: int
    chr_rom_banks: int
    mapper: int
    file_size: int
    submapper: int = 0
    mirroring: Mirroring = Mirroring.HORIZONTAL
    four_screen: bool = False
    has_battery: bool = False
    trainer_present: bool = False
    nes2_identifier: bool = False
    uncertain: bool = False
    prg_ram_size: int = 0
    prg_nvram_size: int = 0
    chr_ram_size: int = 0
    chr_nvram_size: int = 0
    system: SystemType = SystemType.NES
    extended_console_type: int = 0
    vs_ppu_type: int = 0
    vs_hardware_type: int = 0
    timing: TimingMode = TimingMode.NTSC
    misc_rom_count: int = 0
    default_expansion_device: int = 0
    warnings: Tuple[str, ...] = ()

    @property
    def is_nes2(self) -> bool:
        return self.header_format is HeaderFormat.NES2

    @property
    def prg_rom_size(self) -> int:
        return self.prg_rom_banks * PRG_BANK_SIZE

    @property
    def chr_rom_size(self) -> int:
        return self.chr_rom_banks * CHR_BANK_SIZE

    @property
    def prg_rom_offset(self) -> int:
        """Offset of the first PRG ROM byte in the file."""
        return HEADER_SIZE + (TRAINER_SIZE if self.trainer_present else 0)

    @property
    def chr_rom_offset(self) -> int:
        return self.prg_rom_offset + self.prg_rom_size

    @property
    def declared_size(self) -> int:
        return self.chr_rom_offset + self.chr_rom_size

    @property
    def prg_ram_bytes(self) -> int:
        if self.is_nes2:
            return _shift_size(self.prg_ram_size)
        return self.prg_ram_size * 0x2000

    @property
    def prg_nvram_bytes(self) -> int:
        return _shift_size(self.prg_nvram_size) if self.is_nes2 else 0

    @property
    def chr_ram_bytes(self) -> int:
        return _shift_size(self.chr_ram_size) if self.is_nes2 else 0

    @property
    def chr_nvram_bytes(self) -> int:
        return _shift_size(self.chr_nvram_size) if self.is_nes2 else 0

    @property
    def save_ram_bytes(self) -> int:
        """Size of the battery-backed region visible at $6000-$7FFF."""
        if not self.has_battery:
            return 0
        return min(SAVE_RAM_WINDOW, self.prg_ram_bytes + self.prg_nvram_bytes)

    @property
    def format_name(self) -> str:
        name = FORMAT_NAMES[self.header_format]
        return f"{name} (Uncertain)" if self.uncertain else name

    @property
    def system_name(self) -> str:
        if self.system is SystemType.EXTENDED:
            return EXTENDED_CONSOLE_NAMES[self.extended_console_type & 0x0F]
        return SYSTEM_NAMES[self.system]

    @property
    def timing_name(self) -> str:
        return TIMING_NAMES[self.timing]

    def describe(self) -> List[Tuple[str, str]]:
        """Human readable (label, value) pairs for diagnostic dumps."""
        return [
            ("File size", f"{self.file_size / 1024:.2f} KiB"),
            ("ROM format", self.format_name),
            ("NES 2.0 identifier present", "Yes" if self.nes2_identifier else "No"),
            ("PRG ROM size", f"{self.prg_rom_banks * 16} KiB"),
            ("CHR ROM size", f"{self.chr_rom_banks * 8} KiB"),
            ("Mapper number", f"0x{self.mapper:04X}"),
            ("Submapper number", f"0x{self.submapper:02X}" if self.is_nes2 else "N/A"),
            ("Mirroring", "1 (Vertical)" if self.mirroring is Mirroring.VERTICAL else "0 (Horizontal)"),
            ("Battery-backed PRG RAM", "Yes" if self.has_battery else "No"),
            ("Trainer present", "Yes" if self.trainer_present else "No"),
            ("Force four screen VRAM", "Yes" if self.four_screen else "No"),
            ("System type", self.system_name),
            ("PRG RAM size", f"{self.prg_ram_bytes / 1024:.2f} KiB"),
            ("PRG NVRAM size", f"{self.prg_nvram_bytes / 1024:.2f} KiB"),
            ("CHR RAM size", f"{self.chr_ram_bytes / 1024:.2f} KiB"),
            ("CHR NVRAM size", f"{self.chr_nvram_bytes / 1024:.2f} KiB"),
            ("Timing mode", self.timing_name),
        ]


def _shift_size(count: int) -> int:
    return 64 << count if count else 0


def _nes2_rom_banks(header: bytes) -> Tuple[int, int]:
    prg = header_field(header, "prg_rom_lsb") | (header_field(header, "nes2_prg_rom_msb") << 8)
    chr_ = header_field(header, "chr_rom_lsb") | (header_field(header, "nes2_chr_rom_msb") << 8)
    return prg, chr_


def resolve_format(header: bytes, file_size: int) -> Tuple[HeaderFormat, bool, List[str]]:
    """
    Work out which header dialect an image uses.

    Returns:
        ``(format, uncertain, warnings)``. A NES 2.0 identifier whose
        predicted size does not fit in the file is demoted to iNES.
    """
    warnings: List[str] = []
    identifier = header_field(header, "nes2_identifier")

    if identifier == NES2_IDENTIFIER:
        prg, chr_ = _nes2_rom_banks(header)
        predicted = NES2_PREDICTION_BASE + CHR_BANK_SIZE * chr_ + PRG_BANK_SIZE * prg
        if file_size >= predicted:
            return HeaderFormat.NES2, False, warnings
        warnings.append(
            f"NES 2.0 identifier set, but the stated ROM size ({predicted} bytes) exceeds the file size "
            f"({file_size} bytes). Reading the header as iNES."
        )
        return HeaderFormat.INES, False, warnings

    if identifier == ARCHAIC_IDENTIFIER:
        return HeaderFormat.ARCHAIC_INES, False, warnings

    if identifier == 0 and not any(header[12:16]):
        return HeaderFormat.INES, False, warnings

    warnings.append("Could not definitively determine ROM format. Errors may occur.")
    return HeaderFormat.ARCHAIC_INES, True, warnings


def _resolve_legacy_timing(header: bytes, warnings: List[str]) -> TimingMode:
    timing = TimingMode.PAL if header_field(header, "ines_tv_system") else TimingMode.NTSC

    match header_field(header, "ines_tv_system_ext"):
        case 0:
            if timing is not TimingMode.NTSC:
                warnings.append(
                    "9th byte of ROM header specified PAL, but 10th byte specified NTSC. Defaulting to NTSC. "
                    "Use the '--override-tv-format' flag if the ROM behaves strangely."
                )
            return TimingMode.NTSC
        case 2:
            if timing is not TimingMode.PAL:
                warnings.append(
                    "9th byte of ROM header specified NTSC, but 10th byte specified PAL. Defaulting to NTSC. "
                    "Use the '--override-tv-format' flag if the ROM behaves strangely."
                )
                return TimingMode.NTSC
            return TimingMode.PAL
        case _:
            warnings.append(
                "NTSC/PAL cross-compatible ROM found, defaulting to NTSC. "
                "Use the '--override-tv-format' flag if the ROM behaves strangely."
            )
            return TimingMode.NTSC


def parse_header(data: bytes, file_size: Optional[int] = None) -> Result[CartridgeDescriptor, NesCoreError]:
    """
    Parse the header of a cartridge image.

    Args:
        data: The image bytes (at least the header; normally the whole file).
        file_size: Size of the whole file. Defaults to ``len(data)``.

    Returns:
        ``Success(CartridgeDescriptor)``, or ``Failure`` holding an
        :class:`InvalidImage` (bad magic) or :class:`CorruptImage`
        (truncated header or declared ROM exceeding the file).
    """
    if file_size is None:
        file_size = len(data)

    if len(data) < len(MAGIC) or bytes(data[0:4]) != MAGIC:
        return Failure(InvalidImage(f"ROM is not valid: missing magic number (got {bytes(data[0:4])!r})"))

    if len(data) < HEADER_SIZE:
        return Failure(CorruptImage(f"ROM too short: {len(data)} bytes, header needs {HEADER_SIZE}"))

    header = bytes(data[:HEADER_SIZE])
    header_format, uncertain, warnings = resolve_format(header, file_size)

    if header_format is HeaderFormat.NES2:
        prg_banks, chr_banks = _nes2_rom_banks(header)
    else:
        prg_banks = header_field(header, "prg_rom_lsb")
        chr_banks = header_field(header, "chr_rom_lsb")

    mapper = header_field(header, "mapper_d0_d3") | (header_field(header, "mapper_d4_d7") << 4)
    four_screen = bool(header_field(header, "four_screen"))
    if four_screen:
        mirroring = Mirroring.FOUR_SCREEN
    else:
        mirroring = Mirroring.VERTICAL if header_field(header, "mirroring") else Mirroring.HORIZONTAL
    system = SystemType(header_field(header, "system_type"))

    fields = dict(
        header_format=header_format,
        prg_rom_banks=prg_banks,
        chr_rom_banks=chr_banks,
        file_size=file_size,
        mirroring=mirroring,
        four_screen=four_screen,
        has_battery=bool(header_field(header, "battery")),
        trainer_present=bool(header_field(header, "trainer")),
        nes2_identifier=header_field(header, "nes2_identifier") == NES2_IDENTIFIER,
        uncertain=uncertain,
        system=system,
    )

    if header_format is HeaderFormat.NES2:
        mapper |= header_field(header, "nes2_mapper_d8_d11") << 8
        fields.update(
            submapper=header_field(header, "nes2_submapper"),
            prg_ram_size=header_field(header, "nes2_prg_ram_shift"),
            prg_nvram_size=header_field(header, "nes2_prg_nvram_shift"),
            chr_ram_size=header_field(header, "nes2_chr_ram_shift"),
            chr_nvram_size=header_field(header, "nes2_chr_nvram_shift"),
            timing=TimingMode(header_field(header, "nes2_timing")),
            misc_rom_count=header_field(header, "nes2_misc_rom_count"),
            default_expansion_device=header_field(header, "nes2_default_expansion_device"),
        )
        if system is SystemType.VS_SYSTEM:
            fields.update(
                vs_ppu_type=header_field(header, "nes2_vs_ppu_type"),
                vs_hardware_type=header_field(header, "nes2_vs_hardware_type"),
            )
        elif system is SystemType.EXTENDED:
            fields["extended_console_type"] = header_field(header, "nes2_extended_console_type")
    else:
        fields.update(
            prg_ram_size=header_field(header, "ines_prg_ram_units") or 1,
            timing=_resolve_legacy_timing(header, warnings),
        )
        mapper &= 0xFF

    descriptor = CartridgeDescriptor(mapper=mapper, warnings=tuple(warnings), **fields)

    if descriptor.declared_size > file_size:
        return Failure(
            CorruptImage(
                f"{descriptor.format_name} header declares {descriptor.declared_size} bytes "
                f"(PRG {prg_banks} x 16 KiB, CHR {chr_banks} x 8 KiB), but the file is {file_size} bytes. "
                "ROM is likely corrupt."
            )
        )

    for warning in warnings:
        _log.warning(warning)

    return Success(descriptor)
