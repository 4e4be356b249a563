from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int


@dataclass(frozen=True)
class InstructionDebug:
    """Metadata describing the provenance of an instruction."""

    location: SourceLocation
    function_name: str


class Opcode(Enum):
    LOAD_CONST = auto()   # LOAD_CONST dst, value
    MOV = auto()          # MOV dst, src
    GET_GLOBAL = auto()   # GET_GLOBAL dst, name
    SET_GLOBAL = auto()   # SET_GLOBAL name, src

    ADD = auto()          # ADD dst, lhs, rhs, lhs_name, rhs_name
    SUB = auto()
    MUL = auto()
    DIV = auto()
    MOD = auto()
    POW = auto()
    IDIV = auto()
    CONCAT = auto()
    NEG = auto()          # NEG dst, src, src_name
    NOT = auto()          # NOT dst, src
    LEN = auto()          # LEN dst, src

    EQ = auto()           # EQ dst, lhs, rhs
    LT = auto()
    LE = auto()

    BAND = auto()
    BOR = auto()
    BXOR = auto()
    SHL = auto()
    SHR = auto()
    BNOT = auto()         # BNOT dst, src

    JMP = auto()          # JMP label
    JZ = auto()           # JZ reg, label  (jumps when reg is nil or false)
    JNZ = auto()          # JNZ reg, label
    LABEL = auto()        # LABEL name

    MAKE_CELL = auto()    # MAKE_CELL dst, src
    CELL_GET = auto()     # CELL_GET dst, cell
    CELL_SET = auto()     # CELL_SET cell, src
    GET_UPVAL = auto()    # GET_UPVAL dst, index
    SET_UPVAL = auto()    # SET_UPVAL index, src
    CLOSURE = auto()      # CLOSURE dst, label, name, (kind, source)...  kind is "cell" or "upval"

    ARG = auto()          # ARG dst
    VARARG = auto()       # VARARG dst
    VARARG_FIRST = auto() # VARARG_FIRST dst, src
    PARAM = auto()        # PARAM reg
    PARAM_EXPAND = auto() # PARAM_EXPAND reg
    CALL_VALUE = auto()   # CALL_VALUE callee_reg, callee_name
    RESULT = auto()       # RESULT dst
    RESULT_LIST = auto()  # RESULT_LIST dst
    LIST_GET = auto()     # LIST_GET dst, src, index
    RETURN_MULTI = auto() # RETURN_MULTI expand_last, r1, r2, ...

    FOR_PREP = auto()     # FOR_PREP index, limit, step, exit_label
    FOR_LOOP = auto()     # FOR_LOOP index, limit, step, body_label

    TABLE_NEW = auto()    # TABLE_NEW dst
    TABLE_GET = auto()    # TABLE_GET dst, table, key, table_name
    TABLE_SET = auto()    # TABLE_SET table, key, value, table_name
    TABLE_RAWSET = auto() # TABLE_RAWSET table, key, value
    TABLE_EXTEND = auto() # TABLE_EXTEND table, values, first_index
    IS_NIL = auto()       # IS_NIL dst, src


@dataclass
class Instruction:
    opcode: Opcode
    args: list
    debug: InstructionDebug | None = None

    def __str__(self):
        return f"{self.opcode.name} {' '.join(map(str, self.args))}"


@dataclass
class Program:
    """A compiled chunk: flat instruction list plus its label index."""

    instructions: List[Instruction]
    source_name: str
    labels: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.labels:
            for index, inst in enumerate(self.instructions):
                if inst.opcode == Opcode.LABEL:
                    self.labels[inst.args[0]] = index

    def debug_at(self, pc: int) -> InstructionDebug | None:
        if 0 <= pc < len(self.instructions):
            return self.instructions[pc].debug
        return None


__all__ = ["Instruction", "InstructionDebug", "Opcode", "Program", "SourceLocation"]
