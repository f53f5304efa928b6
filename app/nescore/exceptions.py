from typing import Final, Sequence


class NesCoreError(Exception):
    """Base exception for all NESCore related errors."""

    pass


class IoFailure(NesCoreError):
    """The cartridge image could not be opened or read."""

    pass


class InvalidImage(NesCoreError):
    """The file is not an iNES image (missing magic number)."""

    pass


class CorruptImage(NesCoreError):
    """The header declares more ROM than the file contains."""

    pass


class UnsupportedMapper(NesCoreError):
    def __init__(self, mapper: int):
        self.mapper: Final[int] = mapper
        super().__init__(
            f"unsupported mapper found (number 0x{mapper:04X}). Refusing to run to prevent erroneous behaviour."
        )


class UnsupportedSystem(NesCoreError):
    def __init__(self, system_name: str):
        self.system_name: Final[str] = system_name
        super().__init__(f"only NES/Famicom images are supported, got {system_name!r} (use --force to run anyway)")


class IllegalOpcode(NesCoreError):
    """
    Raised when the CPU fetches an opcode outside the supported instruction set.

    Attributes:
        address: Address the opcode was fetched from.
        opcode: The opcode byte.
        following: The two bytes after the opcode, for diagnostics.
    """

    def __init__(self, address: int, opcode: int, following: Sequence[int]):
        self.address: Final[int] = address & 0xFFFF
        self.opcode: Final[int] = opcode & 0xFF
        self.following: Final[tuple[int, ...]] = tuple(int(b) & 0xFF for b in following)
        following_str = " ".join(f"0x{b:02X}" for b in self.following)
        super().__init__(
            f"Unknown opcode encountered! address: 0x{self.address:04X} "
            f"opcode: 0x{self.opcode:02X} two bytes following opcode: {following_str}"
        )


class MapperAddressOverflow(NesCoreError):
    """Bank math produced a physical offset outside the loaded cartridge bytes."""

    def __init__(self, address: int, offset: int, length: int):
        self.address: Final[int] = address
        self.offset: Final[int] = offset
        self.length: Final[int] = length
        super().__init__(
            f"mapper resolved CPU address 0x{address:04X} to offset 0x{offset:X}, "
            f"past the end of the cartridge image (0x{length:X} bytes)"
        )


class UnmappedAccess(UserWarning):
    """
    Advisory for an access to an address range that is not emulated.

    This is never raised; the Bus and Mapper record it and carry on.
    """

    def __init__(self, address: int, kind: str, region: str):
        self.address: Final[int] = address & 0xFFFF
        self.kind: Final[str] = kind
        self.region: Final[str] = region
        super().__init__(f"{kind} attempted at address 0x{self.address:04X}, {region}")
