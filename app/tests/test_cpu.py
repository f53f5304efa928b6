import pytest

from nescore.bus import Bus
from nescore.cpu import CPU, Flags
from nescore.exceptions import IllegalOpcode
from nescore.mapper import create_mapper


@pytest.fixture
def cpu_with(make_image):
    def factory(program: bytes, **kwargs) -> CPU:
        cpu = CPU(Bus(create_mapper(make_image(program=program))), **kwargs)
        cpu.Reset()
        return cpu

    return factory


def run(cpu: CPU, count: int) -> list:
    return [cpu.step() for _ in range(count)]


def test_reset_state(cpu_with):
    cpu = cpu_with(b"")
    arch = cpu.Architecture
    assert arch.ProgramCounter == 0x8000
    assert arch.StackPointer == 0xFD
    assert arch.flags.InterruptDisable
    assert arch.flags.to_byte() == 0x24
    assert arch.TotalCycles == 0


def test_flags_layout():
    flags = Flags()
    assert flags.to_byte() == 0x20
    flags.Carry = True
    flags.Decimal = True
    flags.Negative = True
    assert flags.to_byte() == 0x20 | 0x01 | 0x08 | 0x80
    flags.from_byte(0x00)
    assert flags.to_byte() == 0x20
    flags.from_byte(0x10 | 0x40 | 0x02)
    assert flags.Break and flags.Overflow and flags.Zero
    assert not flags.Carry


@pytest.mark.parametrize(
    "value, zero, negative",
    [(0x00, True, False), (0x01, False, False), (0x7F, False, False), (0x80, False, True), (0xFF, False, True)],
)
def test_lda_immediate_flags(cpu_with, value, zero, negative):
    cpu = cpu_with(bytes([0xA9, value]))
    assert cpu.step() == 2
    arch = cpu.Architecture
    assert arch.A == value
    assert arch.flags.Zero is zero
    assert arch.flags.Negative is negative
    assert arch.ProgramCounter == 0x8002


def test_flags_are_cleared_again(cpu_with):
    cpu = cpu_with(bytes([0xA9, 0x00, 0xA9, 0x80, 0xA9, 0x01]))
    cpu.step()
    assert cpu.Architecture.flags.Zero
    cpu.step()
    assert not cpu.Architecture.flags.Zero
    assert cpu.Architecture.flags.Negative
    cpu.step()
    assert not cpu.Architecture.flags.Negative


def test_ldx_immediate(cpu_with):
    cpu = cpu_with(bytes([0xA2, 0xFF]))
    assert cpu.step() == 2
    assert cpu.Architecture.X == 0xFF
    assert cpu.Architecture.flags.Negative


def test_sta_zero_page(cpu_with):
    cpu = cpu_with(bytes([0xA9, 0x42, 0x85, 0x10]))
    assert run(cpu, 2) == [2, 3]
    assert cpu.bus.read(0x0010) == 0x42


def test_sta_zero_page_x_wraps(cpu_with):
    cpu = cpu_with(bytes([0xA2, 0xF0, 0xA9, 0x77, 0x95, 0x20]))
    assert run(cpu, 3)[-1] == 4
    assert cpu.bus.read(0x0010) == 0x77
    assert cpu.bus.read(0x0110) == 0x00


def test_sta_absolute_modes(cpu_with):
    program = bytes(
        [
            0xA9, 0x11,  # LDA #$11
            0x8D, 0x00, 0x02,  # STA $0200
            0xA2, 0x05,  # LDX #$05
            0x9D, 0x00, 0x02,  # STA $0200,X
            0x99, 0x00, 0x03,  # STA $0300,Y
        ]
    )
    cpu = cpu_with(program)
    assert run(cpu, 5) == [2, 4, 2, 5, 5]
    assert cpu.bus.read(0x0200) == 0x11
    assert cpu.bus.read(0x0205) == 0x11
    assert cpu.bus.read(0x0300) == 0x11


def test_lda_zero_page_and_indexed(cpu_with):
    program = bytes(
        [
            0xA9, 0x5A,  # LDA #$5A
            0x85, 0x05,  # STA $05
            0xA9, 0x00,  # LDA #$00
            0xA5, 0x05,  # LDA $05
            0xA9, 0x00,  # LDA #$00
            0xA2, 0x06,  # LDX #$06
            0xB5, 0xFF,  # LDA $FF,X -> $05
        ]
    )
    cpu = cpu_with(program)
    cycles = run(cpu, 4)
    assert cycles[-1] == 3
    assert cpu.Architecture.A == 0x5A
    cycles = run(cpu, 3)
    assert cycles[-1] == 4
    assert cpu.Architecture.A == 0x5A


def test_ldx_zero_page(cpu_with):
    program = bytes([0xA9, 0x33, 0x85, 0x40, 0xA6, 0x40, 0xB6, 0x40])
    cpu = cpu_with(program)
    assert run(cpu, 4) == [2, 3, 3, 4]
    assert cpu.Architecture.X == 0x33


def test_lda_absolute(cpu_with):
    cpu = cpu_with(bytes([0xAD, 0x01, 0x80]))
    assert cpu.step() == 4
    assert cpu.Architecture.A == 0x01


def test_lda_absolute_x_page_penalty(cpu_with):
    program = bytes(
        [
            0xA2, 0x01,  # LDX #$01
            0xBD, 0x00, 0x80,  # LDA $8000,X (same page)
            0xBD, 0xFF, 0x80,  # LDA $80FF,X (crosses into $8100)
        ]
    )
    cpu = cpu_with(program)
    assert run(cpu, 3) == [2, 4, 5]
    assert cpu.Architecture.A == 0xFF


def test_lda_absolute_y(cpu_with):
    cpu = cpu_with(bytes([0xB9, 0x00, 0x80]))
    assert cpu.step() == 4
    assert cpu.Architecture.A == 0xB9


def test_ora_and_eor(cpu_with):
    program = bytes(
        [
            0xA9, 0x0F,  # LDA #$0F
            0x85, 0x10,  # STA $10
            0xA9, 0x30,  # LDA #$30
            0x05, 0x10,  # ORA $10
            0x49, 0x3F,  # EOR #$3F
        ]
    )
    cpu = cpu_with(program)
    assert run(cpu, 4)[-1] == 3
    assert cpu.Architecture.A == 0x3F
    assert cpu.step() == 2
    assert cpu.Architecture.A == 0x00
    assert cpu.Architecture.flags.Zero


def test_txs_leaves_flags_alone(cpu_with):
    cpu = cpu_with(bytes([0xA2, 0x80, 0x9A]))
    cpu.step()
    before = cpu.Architecture.flags.to_byte()
    assert cpu.step() == 2
    assert cpu.Architecture.StackPointer == 0x80
    assert cpu.Architecture.flags.to_byte() == before


def test_sei_cld(cpu_with):
    cpu = cpu_with(bytes([0x78, 0xD8]))
    cpu.Architecture.flags.InterruptDisable = False
    cpu.Architecture.flags.Decimal = True
    assert cpu.step() == 2
    assert cpu.Architecture.flags.InterruptDisable
    assert cpu.step() == 2
    assert not cpu.Architecture.flags.Decimal


def test_jmp_absolute(cpu_with):
    cpu = cpu_with(bytes([0x4C, 0x34, 0x92]))
    assert cpu.step() == 3
    assert cpu.Architecture.ProgramCounter == 0x9234


def test_jmp_indirect_page_wrap(cpu_with):
    cpu = cpu_with(bytes([0x6C, 0xFF, 0x02]))
    cpu.bus.write(0x02FF, 0x34)
    cpu.bus.write(0x0200, 0x12)
    cpu.bus.write(0x0300, 0x56)
    assert cpu.step() == 5
    assert cpu.Architecture.ProgramCounter == 0x1234


def test_illegal_opcode(cpu_with):
    cpu = cpu_with(bytes([0xA9, 0x42, 0x02, 0xAA, 0xBB]))
    cpu.step()
    arch = cpu.Architecture
    snapshot = (arch.A, arch.X, arch.Y, arch.StackPointer, arch.flags.to_byte(), arch.TotalCycles)

    with pytest.raises(IllegalOpcode) as excinfo:
        cpu.step()

    error = excinfo.value
    assert error.address == 0x8002
    assert error.opcode == 0x02
    assert error.following == (0xAA, 0xBB)
    assert "0x8002" in str(error)
    assert arch.ProgramCounter == 0x8003
    assert (arch.A, arch.X, arch.Y, arch.StackPointer, arch.flags.to_byte(), arch.TotalCycles) == snapshot


def test_total_cycles_accumulate(cpu_with):
    cpu = cpu_with(bytes([0xA9, 0x01, 0x85, 0x00, 0x4C, 0x00, 0x80]))
    assert sum(run(cpu, 3)) == cpu.Architecture.TotalCycles == 2 + 3 + 3
    assert cpu.Architecture.Cycles == 3


def test_trace_log(cpu_with):
    cpu = cpu_with(bytes([0xA9, 0x42]), trace=True)
    cpu.step()
    assert len(cpu.tracelog) == 1
    line = cpu.tracelog[0]
    assert line.startswith("$8000: LDA #$42")
    assert "opcode: A9" in line


def test_opcode_ff_only_moves_pc(cpu_with):
    cpu = cpu_with(bytes([0xFF]))
    before = cpu.Architecture.flags.to_byte()
    with pytest.raises(IllegalOpcode) as excinfo:
        cpu.step()
    assert excinfo.value.opcode == 0xFF
    assert excinfo.value.address == 0x8000
    assert cpu.Architecture.ProgramCounter == 0x8001
    assert cpu.Architecture.flags.to_byte() == before
    assert cpu.Architecture.A == cpu.Architecture.X == cpu.Architecture.Y == 0
