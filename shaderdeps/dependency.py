"""Terminal data sources referenced by shader expressions.

Leaves are the only things an output can ultimately depend on: immediate
constants, interpolated attributes, uniform buffer fields and texture samples.
They are frozen dataclasses so that identical accesses compare and hash equal
regardless of which frontend produced them.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


def to_f32(value: float) -> float:
    """Round ``value`` to the nearest IEEE single precision float."""

    try:
        return struct.unpack("<f", struct.pack("<f", float(value)))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _channel_suffix(channel: Optional[str]) -> str:
    return f".{channel}" if channel else ""


@dataclass(frozen=True, eq=False)
class Constant:
    """Immediate float value.

    Constants compare by their single precision bit pattern so that NaN
    literals equal themselves.
    """

    value: float

    def __post_init__(self) -> None:
        value = to_f32(self.value)
        if math.isnan(value):
            value = math.nan
        elif value == 0.0:
            # -0.0 and 0.0 are one constant for analysis purposes.
            value = 0.0
        object.__setattr__(self, "value", value)

    def _bits(self) -> bytes:
        return struct.pack("<f", self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Constant):
            return NotImplemented
        return self._bits() == other._bits()

    def __hash__(self) -> int:
        return hash(self._bits())

    def describe(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class Attribute:
    """Single channel of an interpolated input like ``in_attr0.x``."""

    name: str
    channel: Optional[str] = None

    def describe(self) -> str:
        return f"{self.name}{_channel_suffix(self.channel)}"


@dataclass(frozen=True)
class Buffer:
    """Scalar buffer access like ``U_Mate.gWrkFl4[1].y`` or ``KC0[3].x``."""

    name: str
    field: str = ""
    index: Optional[int] = None
    channel: Optional[str] = None

    def describe(self) -> str:
        rendered = self.name
        if self.field:
            rendered += f".{self.field}"
        if self.index is not None:
            rendered += f"[{self.index}]"
        return rendered + _channel_suffix(self.channel)


@dataclass(frozen=True)
class TexCoordParams:
    """Transform applied to a texture coordinate before sampling."""

    scale: Optional[Buffer] = None
    offset: Optional[Buffer] = None
    matrix: Tuple[Buffer, ...] = field(default_factory=tuple)
    # Height ratio of a parallax offset applied to the coordinate.
    parallax: Optional[Buffer] = None

    def describe(self) -> str:
        parts = []
        if self.scale is not None:
            parts.append(f"scale={self.scale.describe()}")
        if self.offset is not None:
            parts.append(f"offset={self.offset.describe()}")
        if self.matrix:
            rows = ", ".join(value.describe() for value in self.matrix)
            parts.append(f"matrix=[{rows}]")
        if self.parallax is not None:
            parts.append(f"parallax={self.parallax.describe()}")
        return " ".join(parts)


@dataclass(frozen=True)
class TexCoord:
    """Coordinate source feeding a texture sample."""

    name: str
    channel: Optional[str] = None
    params: Optional[TexCoordParams] = None

    def describe(self) -> str:
        rendered = f"{self.name}{_channel_suffix(self.channel)}"
        if self.params is not None:
            rendered += f"{{{self.params.describe()}}}"
        return rendered


@dataclass(frozen=True)
class Texture:
    """Single sampled channel of a named texture resource."""

    name: str
    channel: Optional[str] = None
    texcoords: Tuple[TexCoord, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        coords = ", ".join(coord.describe() for coord in self.texcoords)
        return f"Texture({self.name}, {coords}){_channel_suffix(self.channel)}"


Leaf = Union[Constant, Attribute, Buffer, Texture]


def _buffer_key(buffer: Optional[Buffer]) -> Tuple:
    if buffer is None:
        return ()
    index = -1 if buffer.index is None else buffer.index
    return (buffer.name, buffer.field, index, buffer.channel or "")


def _texcoord_key(coord: TexCoord) -> Tuple:
    params: Tuple = ()
    if coord.params is not None:
        params = (
            _buffer_key(coord.params.scale),
            _buffer_key(coord.params.offset),
            tuple(_buffer_key(value) for value in coord.params.matrix),
            _buffer_key(coord.params.parallax),
        )
    return (coord.name, coord.channel or "", params)


def leaf_sort_key(leaf: Leaf) -> Tuple:
    """Return a total ordering key for leaves.

    The first element ranks the leaf kind so tuples of different kinds never
    compare their payloads against each other.
    """

    if isinstance(leaf, Constant):
        if math.isnan(leaf.value):
            return (0, 1, 0.0)
        return (0, 0, leaf.value)
    if isinstance(leaf, Attribute):
        return (1, leaf.name, leaf.channel or "")
    if isinstance(leaf, Buffer):
        return (2,) + _buffer_key(leaf)
    if isinstance(leaf, Texture):
        coords = tuple(_texcoord_key(coord) for coord in leaf.texcoords)
        return (3, leaf.name, leaf.channel or "", coords)
    raise TypeError(f"unsupported leaf type: {type(leaf)!r}")


__all__ = [
    "Attribute",
    "Buffer",
    "Constant",
    "Leaf",
    "TexCoord",
    "TexCoordParams",
    "Texture",
    "leaf_sort_key",
    "to_f32",
]
