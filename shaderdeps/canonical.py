"""Algebraic normalisation of sliced expressions.

Equivalent computations emitted by different compilers should end up as the
same tree.  :class:`Canonicalizer` rewrites bottom-up until nothing changes:

* constants fold in single precision when the result is finite;
* ``a - b`` becomes ``a + -b`` and ``fma(a, b, c)`` becomes ``a * b + c``;
* identities such as ``x * 1``, ``x + 0``, ``x / 1``, ``mix(a, b, 0)`` vanish
  and ``x * 0`` becomes ``0``;
* negation is normalised (``--x``, ``x * -1``, ``-a * b``);
* ``1 / (1 / x)`` collapses to ``x``;
* constants reassociate across nested sums and products;
* nested sums and products flatten into one operand list, sorted by
  :func:`sort_key` and rebuilt left nested, so ``(a + b) + c`` and
  ``a + (b + c)`` share a shape;
* arguments of other commutative operations are ordered by :func:`sort_key`;
* dot product lanes are ordered, so ``dot(u, v)`` equals ``dot(v, u)``.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from .dependency import to_f32
from .expr import Expr, Func, Value, constant, constant_value, is_constant, sort_key
from .ops import ARITY, ASSOCIATIVE_OPS, COMMUTATIVE_OPS, FOLDABLE_OPS, Op

logger = logging.getLogger(__name__)


def evaluate(op: Op, values: Sequence[float]) -> Optional[float]:
    """Evaluate ``op`` over constant ``values`` in single precision.

    Returns ``None`` when the operation is undefined for the inputs or the
    result is not finite.
    """

    try:
        result = _evaluate(op, values)
    except (ArithmeticError, ValueError):
        return None
    if result is None:
        return None
    result = to_f32(result)
    if not math.isfinite(result):
        return None
    return result


def _evaluate(op: Op, values: Sequence[float]) -> Optional[float]:
    if op is Op.DOT:
        if len(values) % 2:
            return None
        half = len(values) // 2
        return sum(a * b for a, b in zip(values[:half], values[half:]))
    if ARITY.get(op) != len(values):
        return None

    if op is Op.ADD:
        return values[0] + values[1]
    if op is Op.SUB:
        return values[0] - values[1]
    if op is Op.MUL:
        return values[0] * values[1]
    if op is Op.DIV:
        return values[0] / values[1]
    if op is Op.FMA:
        return values[0] * values[1] + values[2]
    if op is Op.MIX:
        a, b, t = values
        return a + (b - a) * t
    if op is Op.POWER:
        return math.pow(values[0], values[1])
    if op is Op.NEGATE:
        return -values[0]
    if op is Op.ABS:
        return abs(values[0])
    if op is Op.MIN:
        return min(values)
    if op is Op.MAX:
        return max(values)
    if op is Op.CLAMP:
        value, low, high = values
        return min(max(value, low), high)
    if op is Op.SQRT:
        return math.sqrt(values[0])
    if op is Op.INVERSE_SQRT:
        return 1.0 / math.sqrt(values[0])
    if op is Op.FLOOR:
        return float(math.floor(values[0]))
    if op is Op.FRACT:
        return values[0] - math.floor(values[0])
    if op is Op.EXP2:
        return math.pow(2.0, values[0])
    if op is Op.LOG2:
        return math.log2(values[0])
    if op is Op.SELECT:
        return values[1] if values[0] != 0.0 else values[2]
    if op is Op.EQUAL:
        return float(values[0] == values[1])
    if op is Op.NOT_EQUAL:
        return float(values[0] != values[1])
    if op is Op.LESS:
        return float(values[0] < values[1])
    if op is Op.GREATER:
        return float(values[0] > values[1])
    if op is Op.LESS_EQUAL:
        return float(values[0] <= values[1])
    if op is Op.GREATER_EQUAL:
        return float(values[0] >= values[1])
    return None


def chain_terms(op: Op, expr: Expr) -> List[Expr]:
    """Return the operands of a nested ``op`` chain from left to right."""

    terms: List[Expr] = []
    stack = [expr]
    while stack:
        node = stack.pop()
        if isinstance(node, Func) and node.op is op and len(node.args) == 2:
            stack.extend(reversed(node.args))
        else:
            terms.append(node)
    return terms


def build_chain(op: Op, terms: Sequence[Expr]) -> Expr:
    """Sort ``terms`` and rebuild them as a left nested chain of ``op``."""

    ordered = sorted(terms, key=sort_key)
    result = ordered[0]
    for term in ordered[1:]:
        result = Func(op, (result, term))
    return result


class Canonicalizer:
    """Rewrite expressions into a canonical form."""

    def __init__(self, max_passes: int = 64) -> None:
        if max_passes <= 0:
            raise ValueError("max_passes must be positive")
        self.max_passes = max_passes

    def canonicalize(self, expr: Expr) -> Expr:
        current = expr
        for _ in range(self.max_passes):
            rewritten = self._rewrite_tree(current)
            if rewritten is current:
                return current
            current = rewritten
        logger.warning(
            "canonicalization did not converge after %d passes", self.max_passes
        )
        return current

    # ------------------------------------------------------------------
    def _rewrite_tree(self, root: Expr) -> Expr:
        results: Dict[int, Expr] = {}
        stack: List[Expr] = [root]
        while stack:
            node = stack[-1]
            if id(node) in results:
                stack.pop()
                continue
            if isinstance(node, Value):
                results[id(node)] = node
                stack.pop()
                continue
            pending = [arg for arg in node.args if id(arg) not in results]
            if pending:
                stack.extend(pending)
                continue
            args = tuple(results[id(arg)] for arg in node.args)
            rewritten = self._rewrite(node.op, args)
            if rewritten is None:
                if all(new is old for new, old in zip(args, node.args)):
                    rewritten = node
                else:
                    rewritten = Func(node.op, args)
            results[id(node)] = rewritten
            stack.pop()
        return results[id(root)]

    def _make(self, op: Op, args: Tuple[Expr, ...]) -> Expr:
        rewritten = self._rewrite(op, args)
        if rewritten is None:
            return Func(op, args)
        return rewritten

    def _rewrite(self, op: Op, args: Tuple[Expr, ...]) -> Optional[Expr]:
        """Apply the first matching rule or return ``None``."""

        arity = ARITY.get(op)
        if arity is not None and arity != len(args):
            return None

        if op in FOLDABLE_OPS:
            values = [constant_value(arg) for arg in args]
            if all(value is not None for value in values):
                folded = evaluate(op, values)  # type: ignore[arg-type]
                if folded is not None:
                    return constant(folded)

        if op is Op.SUB:
            return self._make(Op.ADD, (args[0], self._make(Op.NEGATE, (args[1],))))
        if op is Op.FMA:
            return self._make(Op.ADD, (self._make(Op.MUL, args[:2]), args[2]))
        if op is Op.NEGATE:
            inner = args[0]
            if isinstance(inner, Func) and inner.op is Op.NEGATE:
                return inner.args[0]
            return None
        if op is Op.MUL:
            rewritten = self._rewrite_mul(args)
        elif op is Op.ADD:
            rewritten = self._rewrite_add(args)
        elif op is Op.DIV:
            rewritten = self._rewrite_div(args)
        elif op is Op.MIX:
            rewritten = self._rewrite_mix(args)
        else:
            rewritten = None
        if rewritten is not None:
            return rewritten

        if op in ASSOCIATIVE_OPS:
            return self._flatten(op, args)
        if op is Op.DOT:
            return self._order_dot(args)
        if op in COMMUTATIVE_OPS and len(args) == 2 and sort_key(args[1]) < sort_key(args[0]):
            return Func(op, (args[1], args[0]))
        return None

    def _flatten(self, op: Op, args: Tuple[Expr, ...]) -> Optional[Expr]:
        terms = chain_terms(op, args[0]) + chain_terms(op, args[1])
        rebuilt = build_chain(op, terms)
        if isinstance(rebuilt, Func) and rebuilt.args == args:
            return None
        return rebuilt

    def _order_dot(self, args: Tuple[Expr, ...]) -> Optional[Expr]:
        if not args or len(args) % 2:
            return None
        half = len(args) // 2
        lanes = sorted(
            (tuple(sorted(lane, key=sort_key)) for lane in zip(args[:half], args[half:])),
            key=lambda lane: (sort_key(lane[0]), sort_key(lane[1])),
        )
        ordered = tuple(lane[0] for lane in lanes) + tuple(lane[1] for lane in lanes)
        if ordered == args:
            return None
        return Func(Op.DOT, ordered)

    def _rewrite_mul(self, args: Tuple[Expr, ...]) -> Optional[Expr]:
        a, b = args
        for value, other in ((a, b), (b, a)):
            if is_constant(value, 1.0):
                return other
            if is_constant(value, 0.0):
                return constant(0.0)
            if is_constant(value, -1.0):
                return self._make(Op.NEGATE, (other,))

        a_negated = isinstance(a, Func) and a.op is Op.NEGATE
        b_negated = isinstance(b, Func) and b.op is Op.NEGATE
        if a_negated and b_negated:
            return self._make(Op.MUL, (a.args[0], b.args[0]))  # type: ignore[union-attr]
        if a_negated:
            return self._make(Op.NEGATE, (self._make(Op.MUL, (a.args[0], b)),))  # type: ignore[union-attr]
        if b_negated:
            return self._make(Op.NEGATE, (self._make(Op.MUL, (a, b.args[0])),))  # type: ignore[union-attr]
        return self._reassociate(Op.MUL, a, b)

    def _rewrite_add(self, args: Tuple[Expr, ...]) -> Optional[Expr]:
        a, b = args
        if is_constant(a, 0.0):
            return b
        if is_constant(b, 0.0):
            return a
        return self._reassociate(Op.ADD, a, b)

    def _rewrite_div(self, args: Tuple[Expr, ...]) -> Optional[Expr]:
        numerator, denominator = args
        if is_constant(denominator, 1.0):
            return numerator
        if (
            is_constant(numerator, 1.0)
            and isinstance(denominator, Func)
            and denominator.op is Op.DIV
            and is_constant(denominator.args[0], 1.0)
        ):
            return denominator.args[1]
        return None

    def _rewrite_mix(self, args: Tuple[Expr, ...]) -> Optional[Expr]:
        a, b, ratio = args
        if is_constant(ratio, 0.0):
            return a
        if is_constant(ratio, 1.0):
            return b
        if a == b:
            return a
        return None

    def _reassociate(self, op: Op, a: Expr, b: Expr) -> Optional[Expr]:
        """Fold ``(x op c1) op c2`` into ``x op (c1 op c2)``."""

        for outer_constant, nested in ((a, b), (b, a)):
            c2 = constant_value(outer_constant)
            if c2 is None or not isinstance(nested, Func) or nested.op is not op:
                continue
            for position in (0, 1):
                c1 = constant_value(nested.args[position])
                if c1 is None:
                    continue
                folded = evaluate(op, (c1, c2))
                if folded is None:
                    continue
                rest = nested.args[1 - position]
                return self._make(op, (rest, constant(folded)))
        return None


def canonicalize(expr: Expr, max_passes: int = 64) -> Expr:
    return Canonicalizer(max_passes).canonicalize(expr)


__all__ = ["Canonicalizer", "build_chain", "canonicalize", "chain_terms", "evaluate"]
