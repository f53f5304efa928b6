from collections import deque
from dataclasses import dataclass, field
from string import Template
from typing import Final, NoReturn

from bitarray import bitarray

from nescore.bus import Bus
from nescore.exceptions import IllegalOpcode
from nescore.logger import log as _logger
from nescore.util.opcodes import OpCodes

# Template
TEMPLATE: Final[Template] = Template(
    "${PC}: ${ASM} opcode: ${OP} | A: ${A} | X: ${X} | Y: ${Y} | SP: ${SP} | Flags: ${N}${V}${D}${I}${Z}${C}"
)

RESET_VECTOR: Final[int] = 0xFFFC


class Flags:
    """
    Processor status register.

        7  6  5  4  3  2  1  0
        N  V  -  B  D  I  Z  C

    Bit 5 is unused and always reads as 1. Decimal mode is stored but has
    no effect on the 2A03.
    """

    def __init__(self) -> None:
        self._bits = bitarray(8, endian="little")
        self._bits.setall(0)
        self._bits[5] = 1

    def _g(self, i: int) -> bool:
        return bool(self._bits[i])

    def _s(self, i: int, v: bool) -> None:
        self._bits[i] = bool(v)

    @property
    def Carry(self) -> bool:
        return self._g(0)

    @Carry.setter
    def Carry(self, v: bool) -> None:
        self._s(0, v)

    @property
    def Zero(self) -> bool:
        return self._g(1)

    @Zero.setter
    def Zero(self, v: bool) -> None:
        self._s(1, v)

    @property
    def InterruptDisable(self) -> bool:
        return self._g(2)

    @InterruptDisable.setter
    def InterruptDisable(self, v: bool) -> None:
        self._s(2, v)

    @property
    def Decimal(self) -> bool:
        return self._g(3)

    @Decimal.setter
    def Decimal(self, v: bool) -> None:
        self._s(3, v)

    @property
    def Break(self) -> bool:
        return self._g(4)

    @Break.setter
    def Break(self, v: bool) -> None:
        self._s(4, v)

    @property
    def Overflow(self) -> bool:
        return self._g(6)

    @Overflow.setter
    def Overflow(self, v: bool) -> None:
        self._s(6, v)

    @property
    def Negative(self) -> bool:
        return self._g(7)

    @Negative.setter
    def Negative(self, v: bool) -> None:
        self._s(7, v)

    def to_byte(self) -> int:
        return int.from_bytes(self._bits.tobytes(), "little")

    def from_byte(self, v: int) -> None:
        bits = bitarray(endian="little")
        bits.frombytes(bytes([v & 0xFF]))
        bits[5] = 1
        self._bits = bits

    def __repr__(self) -> str:
        return f"Flags(0x{self.to_byte():02X})"


@dataclass
class Architecture:
    A: int = 0
    X: int = 0
    Y: int = 0
    StackPointer: int = 0xFD
    ProgramCounter: int = 0
    OpCode: int = 0
    Cycles: int = 0
    TotalCycles: int = 0
    flags: Flags = field(default_factory=Flags)


class CPU:
    """
    2A03 (6502 without decimal mode) interpreter.

    One call to :meth:`step` runs one whole instruction. Only the opcodes in
    :data:`nescore.util.opcodes.list_OpCode` are implemented; anything else
    raises :class:`IllegalOpcode`.
    """

    def __init__(self, bus: Bus, *, trace: bool = False, trace_length: int = 2024) -> None:
        self.bus: Final[Bus] = bus
        self.Architecture: Architecture = Architecture()
        self.Architecture.flags.InterruptDisable = True
        self.trace: bool = trace
        self.tracelog: deque[str] = deque(maxlen=trace_length)
        self.addressBus: int = 0
        self._cycles_extra: int = 0

    def Reset(self) -> None:
        """Power-on state, then jump through the reset vector."""
        self.Architecture = Architecture()
        self.Architecture.flags.InterruptDisable = True
        self.Architecture.ProgramCounter = self.bus.read16(RESET_VECTOR)
        self.tracelog.clear()
        _logger.info(f"Reset vector (0x{RESET_VECTOR:04X}): 0x{self.Architecture.ProgramCounter:04X}")

    def _tracelogger(self, OpCode: int) -> None:
        pc = (self.Architecture.ProgramCounter - 1) & 0xFFFF
        entry = OpCodes.GetEntry(OpCode)
        size = entry["bytes"] if entry else 1
        operands = [self.bus.read((pc + i) & 0xFFFF) for i in range(1, size)]
        flags = self.Architecture.flags
        line = TEMPLATE.substitute(
            PC=f"${pc:04X}",
            ASM=f"{OpCodes.DisassembleBytes(OpCode, operands):<14}",
            OP=f"{OpCode:02X}",
            A=f"{self.Architecture.A:02X}",
            X=f"{self.Architecture.X:02X}",
            Y=f"{self.Architecture.Y:02X}",
            SP=f"{self.Architecture.StackPointer:02X}",
            N="N" if flags.Negative else "n",
            V="V" if flags.Overflow else "v",
            D="D" if flags.Decimal else "d",
            I="I" if flags.InterruptDisable else "i",
            Z="Z" if flags.Zero else "z",
            C="C" if flags.Carry else "c",
        )
        self.tracelog.append(line)
        _logger.debug(line)

    # ADDRESSING MODES
    def _fetch(self) -> int:
        """Read the byte at PC and advance PC."""
        value = self.bus.read(self.Architecture.ProgramCounter)
        self.Architecture.ProgramCounter = (self.Architecture.ProgramCounter + 1) & 0xFFFF
        return value

    def _do_read_operands_Immediate(self) -> int:
        return self._fetch()

    def _do_read_operands_AbsoluteAddressed(self) -> None:
        """Read 16-bit absolute address (little endian)."""
        low = self._fetch()
        high = self._fetch()
        self.addressBus = (high << 8) | low

    def _do_read_operands_AbsoluteAddressed_Indexed(self, index: int, page_penalty: bool) -> None:
        """Absolute address plus an index register, wrapping at $FFFF."""
        self._do_read_operands_AbsoluteAddressed()
        base_addr = self.addressBus
        self.addressBus = (base_addr + index) & 0xFFFF
        if page_penalty and (base_addr & 0xFF00) != (self.addressBus & 0xFF00):
            self._cycles_extra += 1

    def _do_read_operands_ZeroPage(self) -> None:
        self.addressBus = self._fetch()

    def _do_read_operands_ZeroPage_Indexed(self, index: int) -> None:
        """Zero page address plus an index register, wrapping inside page zero."""
        self.addressBus = (self._fetch() + index) & 0xFF

    def _do_read_operands_Indirect(self) -> None:
        """
        JMP ($xxxx) pointer resolution.

        Reproduces the 6502 page wrap bug: when the pointer sits at $xxFF the
        high byte is fetched from $xx00, not from the next page.
        """
        self._do_read_operands_AbsoluteAddressed()
        ptr = self.addressBus
        low = self.bus.read(ptr)
        high = self.bus.read((ptr & 0xFF00) | ((ptr + 1) & 0xFF))
        self.addressBus = (high << 8) | low

    # OPERATIONS
    def _do_update_zero_and_negative_status_flags_on_cpu_register_value_change(self, value: int) -> None:
        """Update Zero and Negative flags based on value."""
        self.Architecture.flags.Zero = value == 0x00
        self.Architecture.flags.Negative = bool(value & 0x80)

    def _do_op_LDA(self, Input: int) -> None:
        self.Architecture.A = Input & 0xFF
        self._do_update_zero_and_negative_status_flags_on_cpu_register_value_change(self.Architecture.A)

    def _do_op_LDX(self, Input: int) -> None:
        self.Architecture.X = Input & 0xFF
        self._do_update_zero_and_negative_status_flags_on_cpu_register_value_change(self.Architecture.X)

    def _do_op_STA(self, Address: int) -> None:
        self.bus.write(Address, self.Architecture.A)

    def _do_op_ORA(self, Input: int) -> None:
        self.Architecture.A |= Input & 0xFF
        self._do_update_zero_and_negative_status_flags_on_cpu_register_value_change(self.Architecture.A)

    def _do_op_EOR(self, Input: int) -> None:
        self.Architecture.A ^= Input & 0xFF
        self._do_update_zero_and_negative_status_flags_on_cpu_register_value_change(self.Architecture.A)

    def _do_op_JMP(self, Address: int) -> None:
        self.Architecture.ProgramCounter = Address & 0xFFFF

    def _do_op_TXS(self) -> None:
        # TXS does not touch the flags.
        self.Architecture.StackPointer = self.Architecture.X

    def _do_op_SEI(self) -> None:
        self.Architecture.flags.InterruptDisable = True

    def _do_op_CLD(self) -> None:
        self.Architecture.flags.Decimal = False

    def _raise_illegal_opcode(self) -> NoReturn:
        pc = self.Architecture.ProgramCounter
        address = (pc - 1) & 0xFFFF
        following = (self.bus.read(pc), self.bus.read((pc + 1) & 0xFFFF))
        error = IllegalOpcode(address, self.Architecture.OpCode, following)
        _logger.error(str(error))
        raise error

    def _make_end_execute_opcode(self) -> int:
        self.Architecture.Cycles = OpCodes.GetCycles(self.Architecture.OpCode) + self._cycles_extra
        self.Architecture.TotalCycles += self.Architecture.Cycles
        return self.Architecture.Cycles

    def step(self) -> int:
        """
        Fetch, decode and execute one instruction.

        Returns:
            The number of cycles the instruction takes.

        Raises:
            IllegalOpcode: The fetched byte is not a supported opcode. Only
                the program counter has changed (past the opcode byte).
        """
        self._cycles_extra = 0
        self.Architecture.OpCode = self._fetch()

        if self.trace:
            self._tracelogger(self.Architecture.OpCode)

        return self._do_execute_opcode()

    def _do_execute_opcode(self) -> int:
        """
        Execute the current opcode.
        """
        arch = self.Architecture
        match arch.OpCode:
            # CONTROL FLOW
            case 0x4C | 0x6C as sub_opcode:
                if sub_opcode == 0x4C:  # JMP Absolute
                    self._do_read_operands_AbsoluteAddressed()
                else:  # JMP Indirect
                    self._do_read_operands_Indirect()
                self._do_op_JMP(self.addressBus)

            # LOAD INSTRUCTIONS - LDA
            case 0xA9 | 0xA5 | 0xB5 | 0xAD | 0xBD | 0xB9 as sub_opcode:
                if sub_opcode == 0xA9:  # LDA Immediate
                    self._do_op_LDA(self._do_read_operands_Immediate())
                    return self._make_end_execute_opcode()
                if sub_opcode == 0xA5:  # LDA Zero Page
                    self._do_read_operands_ZeroPage()
                elif sub_opcode == 0xB5:  # LDA Zero Page,X
                    self._do_read_operands_ZeroPage_Indexed(arch.X)
                elif sub_opcode == 0xAD:  # LDA Absolute
                    self._do_read_operands_AbsoluteAddressed()
                elif sub_opcode == 0xBD:  # LDA Absolute,X
                    self._do_read_operands_AbsoluteAddressed_Indexed(arch.X, page_penalty=True)
                else:  # LDA Absolute,Y
                    self._do_read_operands_AbsoluteAddressed_Indexed(arch.Y, page_penalty=True)
                self._do_op_LDA(self.bus.read(self.addressBus))

            # LOAD INSTRUCTIONS - LDX
            case 0xA2 | 0xA6 | 0xB6 as sub_opcode:
                if sub_opcode == 0xA2:  # LDX Immediate
                    self._do_op_LDX(self._do_read_operands_Immediate())
                    return self._make_end_execute_opcode()
                if sub_opcode == 0xA6:  # LDX Zero Page
                    self._do_read_operands_ZeroPage()
                else:  # LDX Zero Page,Y
                    self._do_read_operands_ZeroPage_Indexed(arch.Y)
                self._do_op_LDX(self.bus.read(self.addressBus))

            # STORE INSTRUCTIONS - STA
            case 0x85 | 0x95 | 0x8D | 0x9D | 0x99 as sub_opcode:
                if sub_opcode == 0x85:  # STA Zero Page
                    self._do_read_operands_ZeroPage()
                elif sub_opcode == 0x95:  # STA Zero Page,X
                    self._do_read_operands_ZeroPage_Indexed(arch.X)
                elif sub_opcode == 0x8D:  # STA Absolute
                    self._do_read_operands_AbsoluteAddressed()
                elif sub_opcode == 0x9D:  # STA Absolute,X
                    self._do_read_operands_AbsoluteAddressed_Indexed(arch.X, page_penalty=False)
                else:  # STA Absolute,Y
                    self._do_read_operands_AbsoluteAddressed_Indexed(arch.Y, page_penalty=False)
                self._do_op_STA(self.addressBus)

            # ALU
            case 0x05:  # ORA Zero Page
                self._do_read_operands_ZeroPage()
                self._do_op_ORA(self.bus.read(self.addressBus))

            case 0x49:  # EOR Immediate
                self._do_op_EOR(self._do_read_operands_Immediate())

            # REGISTER TRANSFER / FLAGS
            case 0x9A:  # TXS
                self._do_op_TXS()

            case 0x78:  # SEI
                self._do_op_SEI()

            case 0xD8:  # CLD
                self._do_op_CLD()

            case _:
                self._raise_illegal_opcode()

        return self._make_end_execute_opcode()
