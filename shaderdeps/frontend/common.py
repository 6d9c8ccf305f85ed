"""Helpers shared by the pseudo-C and clause assembly frontends."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Union

from ..canonical import canonicalize, chain_terms
from ..dependency import Attribute, Buffer, Constant, TexCoord, TexCoordParams, Texture
from ..expr import Expr, Func, Value, constant
from ..graph import FuncNode, InstructionGraph, NodeRef, ValueNode
from ..ops import Op
from ..slicer import slice_expr

CHANNELS = "xyzw"

# Alternative swizzle alphabets used by GLSL.
SWIZZLE_ALIASES = {
    "r": "x",
    "g": "y",
    "b": "z",
    "a": "w",
    "s": "x",
    "t": "y",
    "p": "z",
    "q": "w",
}

_OUTPUT_NAME = re.compile(r"^(?:out_attr|o)(\d+)$")


class ShaderParseError(ValueError):
    """Raised when shader text cannot be structured at all."""

    def __init__(
        self,
        message: str,
        *,
        path: Union[str, Path, None] = None,
        line: Optional[int] = None,
    ) -> None:
        self.message = message
        self.path = str(path) if path is not None else None
        self.line = line
        super().__init__(self.describe())

    def describe(self) -> str:
        location = self.path or "<shader>"
        if self.line is not None:
            location = f"{location}:{self.line}"
        return f"{location}: {self.message}"


def normalize_channel(channel: str) -> str:
    return SWIZZLE_ALIASES.get(channel, channel)


def is_swizzle(text: str) -> bool:
    if not 1 <= len(text) <= 4:
        return False
    alphabets = ("xyzw", "rgba", "stpq")
    return any(all(char in alphabet for char in text) for alphabet in alphabets)


def output_index(name: str) -> Optional[int]:
    """Return the fragment output location encoded in ``name`` if any."""

    match = _OUTPUT_NAME.match(name)
    if match is None:
        return None
    return int(match.group(1))


def output_id(index: int, channel: str) -> str:
    return f"o{index}.{channel}"


def resolve_texcoord(graph: InstructionGraph, ref: NodeRef) -> TexCoord:
    """Describe the coordinate source computed by ``ref``.

    Plain attributes map directly.  ``attr * scale``, ``fma(attr, scale,
    offset)`` and ``dot(vec4(u, v, 0, 1), row)`` keep their buffer parameters,
    as does the height ratio of ``attr + ratio * (t1 * 0.7 + t2)`` parallax
    offsets.  Anything else is named after the first attribute (or leaf) it
    reads.
    """

    node = graph.resolve(ref)
    if isinstance(node, ValueNode) and isinstance(node.leaf, Attribute):
        return TexCoord(node.leaf.name, node.leaf.channel)

    if isinstance(node, FuncNode):
        leaves = [_leaf_of(graph, arg) for arg in node.args]
        if node.op is Op.MUL and len(leaves) == 2:
            attribute, scale = _split_attribute(leaves)
            if attribute is not None and isinstance(scale, Buffer):
                return TexCoord(
                    attribute.name, attribute.channel, TexCoordParams(scale=scale)
                )
        if node.op is Op.FMA and len(leaves) == 3:
            attribute, scale = _split_attribute(leaves[:2])
            offset = leaves[2]
            if (
                attribute is not None
                and isinstance(scale, Buffer)
                and isinstance(offset, Buffer)
            ):
                return TexCoord(
                    attribute.name,
                    attribute.channel,
                    TexCoordParams(scale=scale, offset=offset),
                )
        if node.op is Op.DOT and len(leaves) == 8:
            coords, row = leaves[:4], leaves[4:]
            if isinstance(row[0], Attribute):
                coords, row = row, coords
            if (
                isinstance(coords[0], Attribute)
                and all(isinstance(value, Buffer) for value in row)
            ):
                return TexCoord(
                    coords[0].name,
                    coords[0].channel,
                    TexCoordParams(matrix=tuple(row)),  # type: ignore[arg-type]
                )
        if node.op in _PARALLAX_ROOTS:
            parallax = _parallax_texcoord(slice_expr(graph, ref))
            if parallax is not None:
                return parallax

    return _fallback_texcoord(graph, ref)


_PARALLAX_ROOTS = frozenset({Op.ADD, Op.FMA, Op.ABS})
_PARALLAX_SCALE = constant(0.7)


def _parallax_texcoord(expr: Expr) -> Optional[TexCoord]:
    expr = canonicalize(expr)
    if isinstance(expr, Func) and expr.op is Op.ABS:
        expr = expr.args[0]
    if not isinstance(expr, Func) or expr.op is not Op.ADD:
        return None
    terms = chain_terms(Op.ADD, expr)
    if len(terms) != 2:
        return None
    coords = [term for term in terms if _is_leaf(term, Attribute)]
    if len(coords) != 1:
        return None
    offset = terms[1] if terms[0] is coords[0] else terms[0]

    factors = chain_terms(Op.MUL, offset)
    ratios = [factor for factor in factors if _is_leaf(factor, Buffer)]
    if len(ratios) != 1 or len(factors) != 2:
        return None
    direction = factors[1] if factors[0] is ratios[0] else factors[0]
    scaled = any(
        _PARALLAX_SCALE in chain_terms(Op.MUL, term)
        for term in chain_terms(Op.ADD, direction)
    )
    if not scaled:
        return None
    coord = coords[0].leaf
    return TexCoord(
        coord.name,  # type: ignore[union-attr]
        coord.channel,  # type: ignore[union-attr]
        TexCoordParams(parallax=ratios[0].leaf),  # type: ignore[arg-type]
    )


def _is_leaf(expr: Expr, kind: type) -> bool:
    return isinstance(expr, Value) and isinstance(expr.leaf, kind)


def _leaf_of(graph: InstructionGraph, ref: NodeRef):
    node = graph.resolve(ref)
    if isinstance(node, ValueNode):
        return node.leaf
    return None


def _split_attribute(leaves):
    first, second = leaves
    if isinstance(first, Attribute):
        return first, second
    if isinstance(second, Attribute):
        return second, first
    return None, None


def _fallback_texcoord(graph: InstructionGraph, ref: NodeRef) -> TexCoord:
    first_leaf = None
    seen = set()
    stack: List[NodeRef] = [ref]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        node = graph.resolve(current)
        if isinstance(node, ValueNode):
            if isinstance(node.leaf, Attribute):
                return TexCoord(node.leaf.name, node.leaf.channel)
            if first_leaf is None:
                first_leaf = node.leaf
            continue
        stack.extend(reversed(node.args))

    if isinstance(first_leaf, Buffer):
        return TexCoord(
            Buffer(first_leaf.name, first_leaf.field, first_leaf.index).describe(),
            first_leaf.channel,
        )
    if isinstance(first_leaf, Texture):
        return TexCoord(first_leaf.name, first_leaf.channel)
    if isinstance(first_leaf, Constant):
        return TexCoord(first_leaf.describe())
    return TexCoord("")


__all__ = [
    "CHANNELS",
    "ShaderParseError",
    "is_swizzle",
    "normalize_channel",
    "output_id",
    "output_index",
    "resolve_texcoord",
]
