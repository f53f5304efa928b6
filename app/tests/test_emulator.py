import threading

import pytest

from conftest import build_rom, load_image
from nescore.emulator import Emulator
from nescore.exceptions import IllegalOpcode, UnsupportedMapper, UnsupportedSystem

LOOP = bytes([0x4C, 0x00, 0x80])  # JMP $8000


def test_run_max_steps(make_image):
    emu = Emulator(make_image(program=LOOP))
    assert emu.run(max_steps=10) == 10
    assert emu.steps == 10
    assert emu.cpu.Architecture.TotalCycles == 30
    assert emu.cpu.Architecture.ProgramCounter == 0x8000


def test_run_stops_when_event_already_set(make_image):
    stop = threading.Event()
    stop.set()
    emu = Emulator(make_image(program=LOOP))
    assert emu.run(stop) == 0
    assert emu.cpu.Architecture.ProgramCounter == 0x8000


def test_stop_event_checked_between_instructions(make_image):
    stop = threading.Event()
    emu = Emulator(make_image(program=LOOP))
    seen = []

    @emu.on("after_step")
    def count(arch):
        seen.append(arch.ProgramCounter)
        if len(seen) == 3:
            stop.set()

    assert emu.run(stop) == 3
    assert seen == [0x8000, 0x8000, 0x8000]


def test_run_propagates_illegal_opcode(make_image):
    emu = Emulator(make_image(program=bytes([0xA9, 0x01, 0xFF])))
    with pytest.raises(IllegalOpcode):
        emu.run(max_steps=5)
    assert emu.steps == 1


def test_non_nes_system_rejected(make_image):
    with pytest.raises(UnsupportedSystem):
        Emulator(make_image(program=LOOP, flags7=0x01))


def test_force_skips_system_check(make_image):
    emu = Emulator(make_image(program=LOOP, flags7=0x01), force=True)
    assert emu.run(max_steps=1) == 1


def test_unsupported_mapper(make_image):
    with pytest.raises(UnsupportedMapper):
        Emulator(make_image(program=LOOP, mapper=0))


def test_save_ram_flushed_when_cpu_halts(tmp_path):
    rom = tmp_path / "game.nes"
    program = bytes([0xA9, 0x5A, 0x8D, 0x00, 0x60, 0x02])  # LDA #$5A / STA $6000 / illegal
    rom.write_bytes(build_rom(2, 1, flags6=0x02, program=program))
    save = tmp_path / "game.sav"
    save.write_bytes(bytes(0x2000))

    image = load_image(rom.read_bytes(), path=rom)
    with pytest.raises(IllegalOpcode):
        with Emulator(image) as emu:
            emu.run()

    assert emu.mapper.save_ram is None
    assert save.read_bytes()[0] == 0x5A


def test_image_outlives_emulator(make_image):
    image = make_image(program=LOOP)
    with Emulator(image) as emu:
        emu.step()
    with Emulator(image) as emu:
        assert emu.step() == 3
