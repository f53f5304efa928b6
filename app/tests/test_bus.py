import pytest

from nescore.bus import Bus
from nescore.exceptions import UnmappedAccess
from nescore.mapper import create_mapper


@pytest.fixture
def bus(make_image):
    return Bus(create_mapper(make_image(program=b"\xa9\x42")))


def test_ram_mirroring(bus):
    bus.write(0x0002, 0x55)
    for mirror in (0x0002, 0x0802, 0x1002, 0x1802):
        assert bus.read(mirror) == 0x55

    bus.write(0x1FFF, 0x66)
    assert bus.read(0x07FF) == 0x66


def test_write_masks_to_byte(bus):
    bus.write(0x0010, 0x1AB)
    assert bus.read(0x0010) == 0xAB


@pytest.mark.parametrize(
    "addr, region",
    [
        (0x2000, "PPU registers"),
        (0x3FFF, "PPU registers"),
        (0x4000, "APU/IO registers"),
        (0x4017, "APU/IO registers"),
        (0x4018, "CPU Test Mode"),
        (0x401F, "CPU Test Mode"),
    ],
)
def test_peripheral_windows_are_stubbed(bus, addr, region):
    assert bus.read(addr) == 0xFF
    bus.write(addr, 0x12)
    assert bus.read(addr) == 0xFF

    assert len(bus.advisories) == 3
    advisory = bus.advisories[0]
    assert isinstance(advisory, UnmappedAccess)
    assert advisory.address == addr
    assert advisory.kind == "read"
    assert region in advisory.region
    assert bus.advisories[1].kind == "write"


def test_stub_write_does_not_touch_ram(bus):
    bus.write(0x2000, 0x12)
    assert bus.read(0x0000) == 0x00


def test_cartridge_space_goes_to_mapper(bus):
    assert bus.read(0x8000) == 0xA9
    assert bus.read(0x8001) == 0x42


def test_read16_little_endian(bus):
    assert bus.read16(0xFFFC) == 0x8000


def test_advisory_history_is_bounded(make_image):
    bus = Bus(create_mapper(make_image()), advisory_history=4)
    for addr in range(0x2000, 0x2010):
        bus.read(addr)
    assert len(bus.advisories) == 4
    assert bus.advisories[-1].address == 0x200F


def test_cartridge_holes_share_advisory_history(bus):
    bus.read(0x2002)
    assert bus.read(0x5000) == 0xFF
    bus.write(address=0x4020, value=0x01)
    assert [a.address for a in bus.advisories] == [0x2002, 0x5000, 0x4020]
    assert bus.mapper.advisories is bus.advisories
