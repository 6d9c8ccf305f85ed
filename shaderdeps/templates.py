"""Idiom templates written in the pseudo-C dialect and a structural matcher.

A template is a short snippet whose final assignment to ``result`` describes
the shape to look for.  Free identifiers listed in ``holes`` are wildcards;
repeated holes must bind structurally equal subtrees.  Templates go through
the same frontend, slicer and canonicalizer as shaders so they match the
canonical form rather than one particular compiler's instruction order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Dict, Iterator, List, Mapping, Optional, Sequence

from .canonical import Canonicalizer, build_chain, chain_terms
from .dependency import Attribute, Buffer, Constant
from .expr import Expr, Func, Value
from .frontend.glsl import GlslFrontend
from .opcodes import OpcodeTable
from .ops import ASSOCIATIVE_OPS, COMMUTATIVE_OPS, Op
from .slicer import slice_output


class HoleKind(Enum):
    ANY = "any"
    CONSTANT = "constant"
    PARAMETER = "parameter"
    LEAF = "leaf"
    DOT_LIKE = "dot_like"

    def accepts(self, expr: Expr) -> bool:
        if self is HoleKind.ANY:
            return True
        if self is HoleKind.LEAF:
            return isinstance(expr, Value)
        if self is HoleKind.CONSTANT:
            return isinstance(expr, Value) and isinstance(expr.leaf, Constant)
        if self is HoleKind.PARAMETER:
            return isinstance(expr, Value) and isinstance(expr.leaf, (Buffer, Constant))
        return _is_dot_like(expr)


def _is_dot_like(expr: Expr) -> bool:
    """Return ``True`` for dot products, expanded or not."""

    if not isinstance(expr, Func):
        return False
    if expr.op is Op.DOT:
        return True
    if expr.op is not Op.ADD:
        return False
    # dot(a, b) compiled to fma chains canonicalises to nested sums of products.
    return all(
        (isinstance(arg, Func) and arg.op is Op.MUL) or _is_dot_like(arg)
        for arg in expr.args
    )


@dataclass(frozen=True)
class Template:
    """Pseudo-C description of an expression shape."""

    name: str
    source: str
    holes: Mapping[str, HoleKind] = field(default_factory=dict)
    replacement: Optional[str] = None


@dataclass(frozen=True)
class CompiledTemplate:
    template: Template
    pattern: Expr
    replacement: Optional[Expr] = None

    @property
    def name(self) -> str:
        return self.template.name

    def match(self, expr: Expr) -> Optional[Dict[str, Expr]]:
        return first_match(self.pattern, expr, self.template.holes)

    def rewrite(self, bindings: Mapping[str, Expr]) -> Expr:
        if self.replacement is None:
            raise ValueError(f"template {self.name} has no replacement")
        return substitute(self.replacement, bindings)


class TemplateCompiler:
    """Lower template snippets with the analysis pipeline."""

    def __init__(
        self,
        canonicalizer: Optional[Canonicalizer] = None,
        opcodes: Optional[OpcodeTable] = None,
    ) -> None:
        self.canonicalizer = canonicalizer or Canonicalizer()
        self.frontend = GlslFrontend(opcodes)

    def compile(self, template: Template) -> CompiledTemplate:
        pattern = self._lower(template.source, template.name)
        replacement = None
        if template.replacement is not None:
            replacement = self._lower(template.replacement, template.name)
        return CompiledTemplate(template, pattern, replacement)

    def compile_all(self, templates: Sequence[Template]) -> tuple:
        return tuple(self.compile(template) for template in templates)

    def _lower(self, source: str, name: str) -> Expr:
        graph = self.frontend.parse(source, path=f"<template {name}>")
        expr = slice_output(graph, "result")
        if expr is None:
            raise ValueError(f"template {name} never assigns 'result'")
        return self.canonicalizer.canonicalize(expr)


# ----------------------------------------------------------------------
# matching
# ----------------------------------------------------------------------
def _hole_name(pattern: Expr, holes: Mapping[str, HoleKind]) -> Optional[str]:
    if (
        isinstance(pattern, Value)
        and isinstance(pattern.leaf, Attribute)
        and pattern.leaf.channel is None
        and pattern.leaf.name in holes
    ):
        return pattern.leaf.name
    return None


def match(
    pattern: Expr,
    expr: Expr,
    holes: Mapping[str, HoleKind],
    bindings: Optional[Dict[str, Expr]] = None,
) -> Iterator[Dict[str, Expr]]:
    """Yield every consistent binding of ``holes`` that makes ``pattern`` equal ``expr``.

    Both argument orders of commutative operations are tried, so a failure
    deeper in the tree backtracks into the alternative order.  Sums and
    products match operand by operand in any grouping; a hole in such a chain
    may bind several operands, rebuilt as a canonical chain.
    """

    bindings = bindings if bindings is not None else {}
    name = _hole_name(pattern, holes)
    if name is not None:
        bound = bindings.get(name)
        if bound is not None:
            if bound == expr:
                yield bindings
            return
        if holes[name].accepts(expr):
            extended = dict(bindings)
            extended[name] = expr
            yield extended
        return

    if isinstance(pattern, Value):
        if isinstance(expr, Value) and expr.leaf == pattern.leaf:
            yield bindings
        return

    if not isinstance(expr, Func) or expr.op is not pattern.op:
        return
    if pattern.op in ASSOCIATIVE_OPS:
        operands = chain_terms(pattern.op, pattern)
        yield from _match_fixed_terms(
            pattern.op,
            [term for term in operands if _hole_name(term, holes) is None],
            [term for term in operands if _hole_name(term, holes) is not None],
            chain_terms(pattern.op, expr),
            holes,
            bindings,
        )
        return
    if len(expr.args) != len(pattern.args):
        return
    orders = [expr.args]
    if pattern.op in COMMUTATIVE_OPS and len(expr.args) == 2 and expr.args[0] != expr.args[1]:
        orders.append((expr.args[1], expr.args[0]))
    for args in orders:
        yield from _match_args(pattern.args, args, holes, bindings)


def _match_args(
    patterns: Sequence[Expr],
    exprs: Sequence[Expr],
    holes: Mapping[str, HoleKind],
    bindings: Dict[str, Expr],
) -> Iterator[Dict[str, Expr]]:
    if not patterns:
        yield bindings
        return
    for extended in match(patterns[0], exprs[0], holes, bindings):
        yield from _match_args(patterns[1:], exprs[1:], holes, extended)


def _match_fixed_terms(
    op: Op,
    fixed: Sequence[Expr],
    free: Sequence[Expr],
    terms: List[Expr],
    holes: Mapping[str, HoleKind],
    bindings: Dict[str, Expr],
) -> Iterator[Dict[str, Expr]]:
    if not fixed:
        yield from _match_hole_terms(op, free, terms, holes, bindings)
        return
    tried: List[Expr] = []
    for position, term in enumerate(terms):
        if term in tried:
            continue
        tried.append(term)
        remaining = terms[:position] + terms[position + 1 :]
        for extended in match(fixed[0], term, holes, bindings):
            yield from _match_fixed_terms(op, fixed[1:], free, remaining, holes, extended)


def _match_hole_terms(
    op: Op,
    free: Sequence[Expr],
    terms: List[Expr],
    holes: Mapping[str, HoleKind],
    bindings: Dict[str, Expr],
) -> Iterator[Dict[str, Expr]]:
    if not free:
        if not terms:
            yield bindings
        return
    name = _hole_name(free[0], holes)
    assert name is not None
    bound = bindings.get(name)
    if bound is not None:
        remaining = list(terms)
        for term in chain_terms(op, bound):
            if term not in remaining:
                return
            remaining.remove(term)
        yield from _match_hole_terms(op, free[1:], remaining, holes, bindings)
        return

    if len(free) == 1:
        choices = [tuple(terms)] if terms else []
    else:
        choices = [
            chosen
            for size in range(1, len(terms) + 1)
            for chosen in combinations(terms, size)
        ]
    for chosen in choices:
        value = chosen[0] if len(chosen) == 1 else build_chain(op, chosen)
        if not holes[name].accepts(value):
            continue
        remaining = list(terms)
        for term in chosen:
            remaining.remove(term)
        extended = dict(bindings)
        extended[name] = value
        yield from _match_hole_terms(op, free[1:], remaining, holes, extended)


def first_match(
    pattern: Expr, expr: Expr, holes: Mapping[str, HoleKind]
) -> Optional[Dict[str, Expr]]:
    for bindings in match(pattern, expr, holes):
        return bindings
    return None


def substitute(expr: Expr, bindings: Mapping[str, Expr]) -> Expr:
    """Replace hole placeholders in ``expr`` with their bound subtrees."""

    cache: Dict[int, Expr] = {}

    def visit(node: Expr) -> Expr:
        cached = cache.get(id(node))
        if cached is not None:
            return cached
        if isinstance(node, Value):
            leaf = node.leaf
            if isinstance(leaf, Attribute) and leaf.channel is None and leaf.name in bindings:
                result = bindings[leaf.name]
            else:
                result = node
        else:
            result = Func(node.op, tuple(visit(arg) for arg in node.args))
        cache[id(node)] = result
        return result

    return visit(expr)


# ----------------------------------------------------------------------
# default templates
# ----------------------------------------------------------------------
_ANY = HoleKind.ANY

POW_ABS = Template(
    "pow_abs",
    """
    a = abs(a);
    a = log2(a);
    a = a * b;
    result = exp2(a);
    """,
    {"a": _ANY, "b": _ANY},
    "result = pow(a, b);",
)

POW = Template(
    "pow",
    "result = exp2(log2(a) * b);",
    {"a": _ANY, "b": _ANY},
    "result = pow(a, b);",
)

MIX_FMA = Template(
    "mix_fma",
    """
    neg_a = 0.0 - a;
    b_minus_a = neg_a + b;
    result = fma(b_minus_a, ratio, a);
    """,
    {"a": _ANY, "b": _ANY, "ratio": _ANY},
    "result = mix(a, b, ratio);",
)

MIX_FMA_INVERSE = Template(
    "mix_fma_inverse",
    """
    neg_ratio = 0.0 - ratio;
    a_inv_ratio = fma(a, neg_ratio, a);
    result = fma(b, ratio, a_inv_ratio);
    """,
    {"a": _ANY, "b": _ANY, "ratio": _ANY},
    "result = mix(a, b, ratio);",
)

MIX_RATIO_FMA = Template(
    "mix_ratio_fma",
    """
    neg_a = 0.0 - a;
    ab_minus_a = fma(a, b, neg_a);
    result = fma(ab_minus_a, ratio, a);
    """,
    {"a": _ANY, "b": _ANY, "ratio": _ANY},
    "result = mix(a, a * b, ratio);",
)

OVERLAY_EXPANDED = Template(
    "overlay_expanded",
    """
    neg_b = 0.0 - b;
    one_minus_b = neg_b + 1.0;
    two_b = b * 2.0;
    multiply = two_b * a;
    a_minus_half = a + -0.5;
    neg_one_minus_b = 0.0 - one_minus_b;
    screen = fma(a, neg_one_minus_b, one_minus_b);
    a_minus_half = a_minus_half * 1000.0;
    is_a_gt_half = clamp(a_minus_half, 0.0, 1.0);
    neg_multiply = 0.0 - multiply;
    screen = fma(screen, -2.0, neg_multiply);
    blended = fma(is_a_gt_half, screen, is_a_gt_half);
    result = multiply + blended;
    """,
    {"a": _ANY, "b": _ANY},
    "result = overlay(a, b);",
)

# Collapsed bottom-up before layering, most specific first.
DEFAULT_IDIOMS = (
    POW_ABS,
    POW,
    OVERLAY_EXPANDED,
    MIX_RATIO_FMA,
    MIX_FMA_INVERSE,
    MIX_FMA,
)

OVERLAY_RATIO_LAYER = Template(
    "overlay_ratio_layer",
    "result = mix(a, overlay(a, b), ratio);",
    {"a": _ANY, "b": _ANY, "ratio": _ANY},
)
OVERLAY_LAYER = Template("overlay_layer", "result = overlay(a, b);", {"a": _ANY, "b": _ANY})
MIX_RATIO_LAYER = Template(
    "mix_ratio_layer",
    "result = mix(a, a * b, ratio);",
    {"a": _ANY, "b": _ANY, "ratio": _ANY},
)
MIX_LAYER = Template(
    "mix_layer", "result = mix(a, b, ratio);", {"a": _ANY, "b": _ANY, "ratio": _ANY}
)
# Reoriented normal blending of n2 onto n1, one channel at a time:
# t = n1 + (0, 0, 1), u = n2 * (-1, -1, 1), r = t * dot(t, u) - u * t.z.
ADD_NORMAL_LAYER = Template(
    "add_normal_layer",
    """
    t_z = n1_z + 1.0;
    dot_t_u = 0.0 - a * b;
    dot_t_u = dot_t_u - c * d;
    dot_t_u = fma(t_z, n2_z, dot_t_u);
    r = a * dot_t_u + b * t_z;
    result = mix(a, r, ratio);
    """,
    {
        "a": _ANY,
        "b": _ANY,
        "c": _ANY,
        "d": _ANY,
        "n1_z": _ANY,
        "n2_z": _ANY,
        "ratio": _ANY,
    },
)
MONOCHROME_LAYER = Template(
    "monochrome_layer",
    "result = mix(a, x * 0.01 + y * 0.01 + z * 0.01, ratio);",
    {"a": _ANY, "x": _ANY, "y": _ANY, "z": _ANY, "ratio": _ANY},
    "result = x * 0.01 + y * 0.01 + z * 0.01;",
)
MONOCHROME_LUMA_LAYER = Template(
    "monochrome_luma_layer",
    "result = mix(a, x * 0.3 + y * 0.59 + z * 0.11, ratio);",
    {"a": _ANY, "x": _ANY, "y": _ANY, "z": _ANY, "ratio": _ANY},
    "result = x * 0.3 + y * 0.59 + z * 0.11;",
)
ADD_LAYER = Template(
    "add_layer",
    "result = a + b * ratio;",
    {"a": _ANY, "b": _ANY, "ratio": HoleKind.PARAMETER},
)
POWER_LAYER = Template("power_layer", "result = pow(a, b);", {"a": _ANY, "b": _ANY})
MIN_LAYER = Template("min_layer", "result = min(a, b);", {"a": _ANY, "b": _ANY})
MAX_LAYER = Template("max_layer", "result = max(a, b);", {"a": _ANY, "b": _ANY})

FRESNEL_ABS = Template(
    "fresnel_abs",
    "result = pow(1.0 - abs(n_dot_v), ratio * 5.0);",
    {"n_dot_v": HoleKind.DOT_LIKE, "ratio": _ANY},
)
FRESNEL = Template(
    "fresnel",
    "result = pow(1.0 - n_dot_v, ratio * 5.0);",
    {"n_dot_v": HoleKind.DOT_LIKE, "ratio": _ANY},
)
FRESNEL_EXPONENT_ABS = Template(
    "fresnel_exponent_abs",
    "result = pow(1.0 - abs(n_dot_v), ratio);",
    {"n_dot_v": HoleKind.DOT_LIKE, "ratio": _ANY},
)
FRESNEL_EXPONENT = Template(
    "fresnel_exponent",
    "result = pow(1.0 - n_dot_v, ratio);",
    {"n_dot_v": HoleKind.DOT_LIKE, "ratio": _ANY},
)

DEFAULT_FRESNEL = (FRESNEL_ABS, FRESNEL, FRESNEL_EXPONENT_ABS, FRESNEL_EXPONENT)


__all__ = [
    "ADD_LAYER",
    "ADD_NORMAL_LAYER",
    "CompiledTemplate",
    "DEFAULT_FRESNEL",
    "DEFAULT_IDIOMS",
    "HoleKind",
    "MAX_LAYER",
    "MIN_LAYER",
    "MIX_LAYER",
    "MIX_RATIO_LAYER",
    "MONOCHROME_LAYER",
    "MONOCHROME_LUMA_LAYER",
    "OVERLAY_LAYER",
    "OVERLAY_RATIO_LAYER",
    "POWER_LAYER",
    "Template",
    "TemplateCompiler",
    "first_match",
    "match",
    "substitute",
]
