from nescore.__version__ import __version__, __version_string__
from nescore.bus import Bus
from nescore.cartridge import CartridgeDescriptor, CartridgeImage, HeaderFormat, parse_header
from nescore.cpu import CPU
from nescore.emulator import Emulator
from nescore.mapper import Mapper, Mapper001, create_mapper

__all__ = [
    "__version__",
    "__version_string__",
    "Bus",
    "CPU",
    "CartridgeDescriptor",
    "CartridgeImage",
    "Emulator",
    "HeaderFormat",
    "Mapper",
    "Mapper001",
    "create_mapper",
    "parse_header",
]
