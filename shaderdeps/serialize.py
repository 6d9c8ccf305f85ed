"""JSON codec for expressions, layers and shader programs.

Expressions of one program are interned into a shared ``exprs`` table in
post-order, so arguments always refer to earlier entries and subtrees shared
between outputs or layers are stored once::

    {
      "exprs": [
        {"value": {"kind": "buffer", "name": "KC0", "field": "", "index": 1, "channel": "x"}},
        {"op": "mul", "args": [0, 0]}
      ],
      "output_dependencies": {"o0.x": {"layers": [...]}},
      "outline_width": null,
      "normal_intensity": null
    }

An output entry with a ``layers`` list is layered; an entry with only an
``expr`` index is a raw expression.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .dependency import Attribute, Buffer, Constant, Leaf, TexCoord, TexCoordParams, Texture
from .expr import Expr, Func, Value
from .layers import BlendMode, Layer
from .ops import Op
from .program import OutputDependencies, ShaderProgram


# ----------------------------------------------------------------------
# leaves
# ----------------------------------------------------------------------
def serialize_buffer(buffer: Buffer) -> Dict[str, Any]:
    return {
        "kind": "buffer",
        "name": buffer.name,
        "field": buffer.field,
        "index": buffer.index,
        "channel": buffer.channel,
    }


def serialize_texcoord(coord: TexCoord) -> Dict[str, Any]:
    params = None
    if coord.params is not None:
        params = {
            "scale": serialize_buffer(coord.params.scale) if coord.params.scale else None,
            "offset": serialize_buffer(coord.params.offset) if coord.params.offset else None,
            "matrix": [serialize_buffer(value) for value in coord.params.matrix],
            "parallax": (
                serialize_buffer(coord.params.parallax) if coord.params.parallax else None
            ),
        }
    return {"name": coord.name, "channel": coord.channel, "params": params}


def serialize_leaf(leaf: Leaf) -> Dict[str, Any]:
    """Serialise a leaf dependency into a dictionary with a ``kind`` tag."""

    if isinstance(leaf, Constant):
        return {"kind": "constant", "value": leaf.value}
    if isinstance(leaf, Attribute):
        return {"kind": "attribute", "name": leaf.name, "channel": leaf.channel}
    if isinstance(leaf, Buffer):
        return serialize_buffer(leaf)
    if isinstance(leaf, Texture):
        return {
            "kind": "texture",
            "name": leaf.name,
            "channel": leaf.channel,
            "texcoords": [serialize_texcoord(coord) for coord in leaf.texcoords],
        }
    raise TypeError(f"unsupported leaf type: {type(leaf)!r}")


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return None if value is None else str(value)


def deserialize_buffer(data: Mapping[str, Any]) -> Buffer:
    index = data.get("index")
    return Buffer(
        str(data["name"]),
        str(data.get("field") or ""),
        None if index is None else int(index),
        _optional_str(data, "channel"),
    )


def deserialize_texcoord(data: Mapping[str, Any]) -> TexCoord:
    params = None
    raw = data.get("params")
    if raw is not None:
        params = TexCoordParams(
            scale=deserialize_buffer(raw["scale"]) if raw.get("scale") else None,
            offset=deserialize_buffer(raw["offset"]) if raw.get("offset") else None,
            matrix=tuple(deserialize_buffer(value) for value in raw.get("matrix", [])),
            parallax=deserialize_buffer(raw["parallax"]) if raw.get("parallax") else None,
        )
    return TexCoord(str(data["name"]), _optional_str(data, "channel"), params)


def deserialize_leaf(data: Mapping[str, Any]) -> Leaf:
    kind = data.get("kind")
    if kind == "constant":
        return Constant(float(data["value"]))
    if kind == "attribute":
        return Attribute(str(data["name"]), _optional_str(data, "channel"))
    if kind == "buffer":
        return deserialize_buffer(data)
    if kind == "texture":
        return Texture(
            str(data["name"]),
            _optional_str(data, "channel"),
            tuple(deserialize_texcoord(coord) for coord in data.get("texcoords", [])),
        )
    raise ValueError(f"unknown leaf kind: {kind!r}")


# ----------------------------------------------------------------------
# expressions
# ----------------------------------------------------------------------
class ExprTable:
    """Intern expressions into a post-ordered list of JSON entries."""

    def __init__(self) -> None:
        self.entries: List[Dict[str, Any]] = []
        self._indices: Dict[Expr, int] = {}

    def add(self, expr: Expr) -> int:
        stack: List[Expr] = [expr]
        while stack:
            node = stack[-1]
            if node in self._indices:
                stack.pop()
                continue
            if isinstance(node, Value):
                entry: Dict[str, Any] = {"value": serialize_leaf(node.leaf)}
            else:
                pending = [arg for arg in node.args if arg not in self._indices]
                if pending:
                    stack.extend(pending)
                    continue
                entry = {
                    "op": node.op.value,
                    "args": [self._indices[arg] for arg in node.args],
                }
            self._indices[node] = len(self.entries)
            self.entries.append(entry)
            stack.pop()
        return self._indices[expr]


def deserialize_exprs(entries: List[Mapping[str, Any]]) -> List[Expr]:
    exprs: List[Expr] = []
    for position, entry in enumerate(entries):
        if "value" in entry:
            exprs.append(Value(deserialize_leaf(entry["value"])))
            continue
        args = []
        for index in entry.get("args", []):
            if not isinstance(index, int) or not 0 <= index < position:
                raise ValueError(f"expression {position} references invalid entry {index!r}")
            args.append(exprs[index])
        exprs.append(Func(Op.from_name(str(entry["op"])), tuple(args)))
    return exprs


def _lookup(exprs: List[Expr], index: Any) -> Expr:
    if not isinstance(index, int) or not 0 <= index < len(exprs):
        raise ValueError(f"invalid expression index {index!r}")
    return exprs[index]


# ----------------------------------------------------------------------
# programs
# ----------------------------------------------------------------------
def serialize_program(program: ShaderProgram) -> Dict[str, Any]:
    table = ExprTable()
    outputs: Dict[str, Any] = {}
    for output in program.outputs():
        value = program.output_dependencies[output]
        if isinstance(value, OutputDependencies):
            outputs[output] = {
                "layers": [
                    {
                        "value": table.add(layer.value),
                        "ratio": table.add(layer.ratio),
                        "blend_mode": layer.blend_mode.value,
                        "is_fresnel": layer.is_fresnel,
                    }
                    for layer in value.layers
                ]
            }
        else:
            outputs[output] = {"expr": table.add(value)}

    outline = None if program.outline_width is None else table.add(program.outline_width)
    intensity = (
        None if program.normal_intensity is None else table.add(program.normal_intensity)
    )
    return {
        "exprs": table.entries,
        "output_dependencies": outputs,
        "outline_width": outline,
        "normal_intensity": intensity,
    }


def deserialize_program(data: Mapping[str, Any]) -> ShaderProgram:
    exprs = deserialize_exprs(list(data.get("exprs", [])))
    program = ShaderProgram()
    for output, entry in data.get("output_dependencies", {}).items():
        if "layers" in entry:
            layers = tuple(
                Layer(
                    _lookup(exprs, layer["value"]),
                    _lookup(exprs, layer["ratio"]),
                    BlendMode(layer.get("blend_mode", "mix")),
                    bool(layer.get("is_fresnel", False)),
                )
                for layer in entry["layers"]
            )
            program.output_dependencies[output] = OutputDependencies(layers)
        else:
            program.output_dependencies[output] = _lookup(exprs, entry["expr"])
    if data.get("outline_width") is not None:
        program.outline_width = _lookup(exprs, data["outline_width"])
    if data.get("normal_intensity") is not None:
        program.normal_intensity = _lookup(exprs, data["normal_intensity"])
    return program


__all__ = [
    "ExprTable",
    "deserialize_leaf",
    "deserialize_program",
    "serialize_leaf",
    "serialize_program",
]
