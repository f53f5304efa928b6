from typing import Dict, List, Optional, Sequence, TypedDict


class OpCode(TypedDict):
    opcode: str
    mode: str
    bytes: int
    cycles: int
    page_penalty: bool


# Supported instruction subset. Cycle counts are the documented base costs;
# entries with page_penalty take one more cycle when indexing crosses a page.
list_OpCode: Dict[int, OpCode] = {
    0x05: {"opcode": "ORA", "mode": "zeropage", "bytes": 2, "cycles": 3, "page_penalty": False},
    0x49: {"opcode": "EOR", "mode": "immediate", "bytes": 2, "cycles": 2, "page_penalty": False},
    0x4C: {"opcode": "JMP", "mode": "absolute", "bytes": 3, "cycles": 3, "page_penalty": False},
    0x6C: {"opcode": "JMP", "mode": "indirect", "bytes": 3, "cycles": 5, "page_penalty": False},
    0x78: {"opcode": "SEI", "mode": "implied", "bytes": 1, "cycles": 2, "page_penalty": False},
    0x85: {"opcode": "STA", "mode": "zeropage", "bytes": 2, "cycles": 3, "page_penalty": False},
    0x8D: {"opcode": "STA", "mode": "absolute", "bytes": 3, "cycles": 4, "page_penalty": False},
    0x95: {"opcode": "STA", "mode": "zeropage_x", "bytes": 2, "cycles": 4, "page_penalty": False},
    0x99: {"opcode": "STA", "mode": "absolute_y", "bytes": 3, "cycles": 5, "page_penalty": False},
    0x9A: {"opcode": "TXS", "mode": "implied", "bytes": 1, "cycles": 2, "page_penalty": False},
    0x9D: {"opcode": "STA", "mode": "absolute_x", "bytes": 3, "cycles": 5, "page_penalty": False},
    0xA2: {"opcode": "LDX", "mode": "immediate", "bytes": 2, "cycles": 2, "page_penalty": False},
    0xA5: {"opcode": "LDA", "mode": "zeropage", "bytes": 2, "cycles": 3, "page_penalty": False},
    0xA6: {"opcode": "LDX", "mode": "zeropage", "bytes": 2, "cycles": 3, "page_penalty": False},
    0xA9: {"opcode": "LDA", "mode": "immediate", "bytes": 2, "cycles": 2, "page_penalty": False},
    0xAD: {"opcode": "LDA", "mode": "absolute", "bytes": 3, "cycles": 4, "page_penalty": False},
    0xB5: {"opcode": "LDA", "mode": "zeropage_x", "bytes": 2, "cycles": 4, "page_penalty": False},
    0xB6: {"opcode": "LDX", "mode": "zeropage_y", "bytes": 2, "cycles": 4, "page_penalty": False},
    0xB9: {"opcode": "LDA", "mode": "absolute_y", "bytes": 3, "cycles": 4, "page_penalty": True},
    0xBD: {"opcode": "LDA", "mode": "absolute_x", "bytes": 3, "cycles": 4, "page_penalty": True},
    0xD8: {"opcode": "CLD", "mode": "implied", "bytes": 1, "cycles": 2, "page_penalty": False},
}


class OpCodes:
    """6502 opcode lookup table for the supported instruction subset."""

    @staticmethod
    def GetEntry(opcode: int) -> Optional[OpCode]:
        """
        Get complete opcode entry.

        Args:
            opcode: Opcode value (0x00-0xFF)

        Returns:
            The table entry, or None if the opcode is not supported.

        Raises:
            ValueError: If opcode is out of valid range
        """
        if not (0 <= opcode <= 0xFF):
            raise ValueError(f"Invalid opcode: 0x{opcode:02X} (must be 0x00-0xFF)")
        return list_OpCode.get(opcode, None)

    @staticmethod
    def IsSupported(opcode: int) -> bool:
        return OpCodes.GetEntry(opcode) is not None

    @staticmethod
    def _entry(opcode: int) -> OpCode:
        entry = OpCodes.GetEntry(opcode)
        if entry is None:
            raise KeyError(f"Unsupported opcode: 0x{opcode:02X}")
        return entry

    @staticmethod
    def GetName(opcode: int) -> str:
        return OpCodes._entry(opcode)["opcode"]

    @staticmethod
    def GetAddressingMode(opcode: int) -> str:
        return OpCodes._entry(opcode)["mode"]

    @staticmethod
    def GetBytes(opcode: int) -> int:
        """Instruction size in bytes (1-3)."""
        return OpCodes._entry(opcode)["bytes"]

    @staticmethod
    def GetCycles(opcode: int) -> int:
        """
        Get base cycle count for instruction.
        Note: Actual cycles may vary due to page boundary crossings.
        """
        return OpCodes._entry(opcode)["cycles"]

    @staticmethod
    def HasPagePenalty(opcode: int) -> bool:
        return OpCodes._entry(opcode)["page_penalty"]

    @staticmethod
    def FindOpcodes(mnemonic: str, addressing_mode: Optional[str] = None) -> List[int]:
        """
        Find all opcodes matching a mnemonic and optional addressing mode.

        Examples:
            >>> OpCodes.FindOpcodes("LDA", "immediate")
            [169]
            >>> [hex(op) for op in OpCodes.FindOpcodes("LDX")]
            ['0xa2', '0xa6', '0xb6']
        """
        mnemonic_upper = mnemonic.upper()
        return sorted(
            opcode
            for opcode, data in list_OpCode.items()
            if data["opcode"] == mnemonic_upper and (addressing_mode is None or data["mode"] == addressing_mode)
        )

    @staticmethod
    def DisassembleBytes(opcode: int, operand_bytes: Optional[Sequence[int]] = None) -> str:
        """
        Disassemble an instruction with its operand bytes.

        Unsupported opcodes disassemble as ``.byte $XX``.

        Examples:
            >>> OpCodes.DisassembleBytes(0xA9, [0x42])
            'LDA #$42'
            >>> OpCodes.DisassembleBytes(0xAD, [0x00, 0x80])
            'LDA $8000'
        """
        entry = OpCodes.GetEntry(opcode)
        if entry is None:
            return f".byte ${opcode:02X}"

        mnemonic = entry["opcode"]
        mode = entry["mode"]
        operand_bytes = list(operand_bytes or [])
        byte = operand_bytes[0] if operand_bytes else 0
        word = operand_bytes[0] | (operand_bytes[1] << 8) if len(operand_bytes) >= 2 else 0

        match mode:
            case "implied":
                return mnemonic
            case "immediate":
                return f"{mnemonic} #${byte:02X}"
            case "zeropage":
                return f"{mnemonic} ${byte:02X}"
            case "zeropage_x":
                return f"{mnemonic} ${byte:02X},X"
            case "zeropage_y":
                return f"{mnemonic} ${byte:02X},Y"
            case "absolute":
                return f"{mnemonic} ${word:04X}"
            case "absolute_x":
                return f"{mnemonic} ${word:04X},X"
            case "absolute_y":
                return f"{mnemonic} ${word:04X},Y"
            case "indirect":
                return f"{mnemonic} (${word:04X})"
            case _:
                return mnemonic
