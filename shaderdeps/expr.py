"""Detached expression trees produced by slicing an instruction graph.

Sliced trees duplicate shared sub-expressions logically, but the Python objects
behind them stay shared.  Hashes and ordering keys are therefore computed once
per node at construction, and the traversal helpers visit each object once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from .dependency import Constant, Leaf, leaf_sort_key
from .ops import Op


@dataclass(frozen=True)
class Value:
    """Expression leaf wrapping a :mod:`~shaderdeps.dependency` value."""

    leaf: Leaf
    _key: Tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_key", (0, leaf_sort_key(self.leaf)))

    def __hash__(self) -> int:
        return hash(self.leaf)

    def describe(self) -> str:
        return self.leaf.describe()


@dataclass(frozen=True)
class Func:
    """Operation applied to child expressions."""

    op: Op
    args: Tuple["Expr", ...] = field(default_factory=tuple)
    _key: Tuple = field(init=False, repr=False, compare=False)
    _hash: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        args = tuple(self.args)
        object.__setattr__(self, "args", args)
        object.__setattr__(
            self, "_key", (1, self.op.value, len(args), tuple(arg._key for arg in args))
        )
        object.__setattr__(self, "_hash", hash((self.op, tuple(hash(arg) for arg in args))))

    def __hash__(self) -> int:
        return self._hash

    def __reduce__(self):
        # String hashes differ between worker processes; rebuild the cache.
        return (Func, (self.op, self.args))

    def describe(self) -> str:
        rendered = ", ".join(arg.describe() for arg in self.args)
        return f"{self.op.describe()}({rendered})"


Expr = Union[Value, Func]


def constant(value: float) -> Value:
    return Value(Constant(value))


def constant_value(expr: Expr) -> Optional[float]:
    """Return the float held by ``expr`` or ``None`` if it is not a constant."""

    if isinstance(expr, Value) and isinstance(expr.leaf, Constant):
        return expr.leaf.value
    return None


def is_constant(expr: Expr, value: float) -> bool:
    return constant_value(expr) == value


def walk(expr: Expr) -> Iterator[Expr]:
    """Yield every distinct node object reachable from ``expr`` once."""

    seen: Set[int] = set()
    stack: List[Expr] = [expr]
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, Func):
            stack.extend(reversed(current.args))


def leaves(expr: Expr) -> Set[Leaf]:
    """Return the set of leaves reachable from ``expr``."""

    return {node.leaf for node in walk(expr) if isinstance(node, Value)}


def count_unknown(expr: Expr) -> int:
    """Count ``UNK`` nodes in the tree, counting shared subtrees per use."""

    counts: Dict[int, int] = {}

    def visit(node: Expr) -> int:
        cached = counts.get(id(node))
        if cached is not None:
            return cached
        total = 0
        if isinstance(node, Func):
            total = int(node.op is Op.UNK) + sum(visit(arg) for arg in node.args)
        counts[id(node)] = total
        return total

    return visit(expr)


def sort_key(expr: Expr) -> Tuple:
    """Stable structural key used to order commutative arguments.

    Leaves sort before functions; functions sort by operation name, arity and
    then their arguments.
    """

    return expr._key


__all__ = [
    "Expr",
    "Func",
    "Value",
    "constant",
    "constant_value",
    "count_unknown",
    "is_constant",
    "leaves",
    "sort_key",
    "walk",
]
