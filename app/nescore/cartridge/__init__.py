from nescore.cartridge.header import (
    CartridgeDescriptor,
    HeaderFormat,
    Mirroring,
    SystemType,
    TimingMode,
    parse_header,
)
from nescore.cartridge.image import CartridgeImage

__all__ = [
    "CartridgeDescriptor",
    "CartridgeImage",
    "HeaderFormat",
    "Mirroring",
    "SystemType",
    "TimingMode",
    "parse_header",
]
