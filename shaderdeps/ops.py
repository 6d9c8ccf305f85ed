"""Closed enumeration of the operations understood by the analysis passes."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet


class Op(Enum):
    """Operation applied by a :class:`~shaderdeps.graph.FuncNode` or expression.

    ``UNK`` is the explicit placeholder for instructions or functions that were
    not classified.  It keeps the argument edges so dependency information
    survives even when the arithmetic is unknown.
    """

    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    FMA = "fma"
    MIX = "mix"
    POWER = "pow"
    OVERLAY = "overlay"
    NEGATE = "neg"
    ABS = "abs"
    MIN = "min"
    MAX = "max"
    CLAMP = "clamp"
    SQRT = "sqrt"
    INVERSE_SQRT = "inversesqrt"
    FLOOR = "floor"
    FRACT = "fract"
    EXP2 = "exp2"
    LOG2 = "log2"
    DOT = "dot"
    SELECT = "select"
    EQUAL = "eq"
    NOT_EQUAL = "ne"
    LESS = "lt"
    GREATER = "gt"
    LESS_EQUAL = "le"
    GREATER_EQUAL = "ge"
    UNK = "unk"

    @classmethod
    def from_name(cls, name: str) -> "Op":
        """Resolve ``name`` against member names and values (case-insensitive)."""

        lowered = name.strip().lower()
        for member in cls:
            if member.value == lowered or member.name.lower() == lowered:
                return member
        raise ValueError(f"unknown operation name: {name!r}")

    def describe(self) -> str:
        return self.name.title().replace("_", "")


# Operand order does not matter for these ops.
COMMUTATIVE_OPS: FrozenSet[Op] = frozenset(
    {Op.ADD, Op.MUL, Op.MIN, Op.MAX, Op.EQUAL, Op.NOT_EQUAL}
)

# Nested chains of these are flattened into one sorted operand list.
ASSOCIATIVE_OPS: FrozenSet[Op] = frozenset({Op.ADD, Op.MUL})

FOLDABLE_OPS: FrozenSet[Op] = frozenset(
    {
        Op.ADD,
        Op.SUB,
        Op.MUL,
        Op.DIV,
        Op.FMA,
        Op.MIX,
        Op.POWER,
        Op.NEGATE,
        Op.ABS,
        Op.MIN,
        Op.MAX,
        Op.CLAMP,
        Op.SQRT,
        Op.INVERSE_SQRT,
        Op.FLOOR,
        Op.FRACT,
        Op.EXP2,
        Op.LOG2,
        Op.DOT,
        Op.SELECT,
        Op.EQUAL,
        Op.NOT_EQUAL,
        Op.LESS,
        Op.GREATER,
        Op.LESS_EQUAL,
        Op.GREATER_EQUAL,
    }
)

# Expected argument counts; ``None`` marks variadic operations.
ARITY = {
    Op.ADD: 2,
    Op.SUB: 2,
    Op.MUL: 2,
    Op.DIV: 2,
    Op.FMA: 3,
    Op.MIX: 3,
    Op.POWER: 2,
    Op.OVERLAY: 2,
    Op.NEGATE: 1,
    Op.ABS: 1,
    Op.MIN: 2,
    Op.MAX: 2,
    Op.CLAMP: 3,
    Op.SQRT: 1,
    Op.INVERSE_SQRT: 1,
    Op.FLOOR: 1,
    Op.FRACT: 1,
    Op.EXP2: 1,
    Op.LOG2: 1,
    Op.DOT: None,
    Op.SELECT: 3,
    Op.EQUAL: 2,
    Op.NOT_EQUAL: 2,
    Op.LESS: 2,
    Op.GREATER: 2,
    Op.LESS_EQUAL: 2,
    Op.GREATER_EQUAL: 2,
    Op.UNK: None,
}


__all__ = ["ARITY", "ASSOCIATIVE_OPS", "COMMUTATIVE_OPS", "FOLDABLE_OPS", "Op"]
