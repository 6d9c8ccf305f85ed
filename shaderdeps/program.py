"""Per-shader analysis producing :class:`ShaderProgram` values."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .canonical import Canonicalizer
from .config import AnalysisConfig
from .dependency import Attribute, Buffer, Constant
from .expr import Expr, Value, count_unknown
from .frontend import GlslFrontend, LatteFrontend
from .graph import FuncNode, InstructionGraph, ValueNode
from .layers import BlendMode, Layer, LayeringEngine
from .ops import Op
from .slicer import slice_output

logger = logging.getLogger(__name__)


class ShaderKind(Enum):
    """Text format of a shader input."""

    GLSL = "glsl"
    LATTE = "latte"

    @classmethod
    def from_path(cls, path: Path) -> "ShaderKind":
        # Disassembler listings are stored as ``<name>.<index>.frag.txt``.
        if path.name.endswith(".txt"):
            return cls.LATTE
        return cls.GLSL


@dataclass(frozen=True)
class OutputDependencies:
    """Ordered blend layers computing one output channel."""

    layers: Tuple[Layer, ...] = ()

    def expressions(self) -> Iterator[Expr]:
        for layer in self.layers:
            yield layer.value
            yield layer.ratio


OutputValue = Union[OutputDependencies, Expr]


@dataclass
class ShaderProgram:
    """Dependencies of every written output of one shader program.

    Outputs map either to layered :class:`OutputDependencies` or, for data
    produced by older analyses, to a single raw expression.
    """

    output_dependencies: Dict[str, OutputValue] = field(default_factory=dict)
    outline_width: Optional[Expr] = None
    normal_intensity: Optional[Expr] = None

    def outputs(self) -> List[str]:
        return sorted(self.output_dependencies)

    def expressions(self) -> Iterator[Expr]:
        for output in self.outputs():
            value = self.output_dependencies[output]
            if isinstance(value, OutputDependencies):
                yield from value.expressions()
            else:
                yield value
        if self.outline_width is not None:
            yield self.outline_width
        if self.normal_intensity is not None:
            yield self.normal_intensity

    def unknown_count(self) -> int:
        return sum(count_unknown(expr) for expr in self.expressions())


class ShaderAnalyzer:
    """Run the frontend, slicer, canonicalizer and layering for shaders."""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        self.canonicalizer = Canonicalizer(self.config.max_canonical_passes)
        self.engine = LayeringEngine(self.canonicalizer, self.config.opcodes)
        self.frontends = {
            ShaderKind.GLSL: GlslFrontend(self.config.opcodes),
            ShaderKind.LATTE: LatteFrontend(self.config.opcodes),
        }

    def parse(
        self, text: str, kind: ShaderKind, *, path: Union[str, Path, None] = None
    ) -> InstructionGraph:
        return self.frontends[kind].parse(text, path=path)

    def tracked_outputs(self, graph: InstructionGraph) -> List[str]:
        channels = self.config.output_channels
        tracked = []
        for output in graph.outputs():
            _, _, channel = output.rpartition(".")
            if channel in channels:
                tracked.append(output)
        return sorted(tracked)

    def output_expr(self, graph: InstructionGraph, output: str) -> Optional[Expr]:
        """Return the canonical expression of ``output`` or ``None`` if unwritten."""

        expr = slice_output(graph, output)
        if expr is None:
            return None
        return self.canonicalizer.canonicalize(expr)

    def output_layers(self, graph: InstructionGraph, output: str) -> Optional[List[Layer]]:
        expr = self.output_expr(graph, output)
        if expr is None:
            return None
        return self.engine.layers(expr)

    def analyze_graph(
        self,
        graph: InstructionGraph,
        *,
        vertex: Optional[InstructionGraph] = None,
        outputs: Optional[Sequence[str]] = None,
    ) -> ShaderProgram:
        program = ShaderProgram()
        for output in outputs if outputs is not None else self.tracked_outputs(graph):
            layers = self.output_layers(graph, output)
            if layers is None:
                continue
            program.output_dependencies[output] = OutputDependencies(tuple(layers))

        if vertex is not None:
            program.outline_width = outline_width(vertex, self.config)
        program.normal_intensity = normal_intensity(program, self.config)
        return program

    def analyze(
        self,
        text: str,
        kind: ShaderKind,
        *,
        vertex_text: Optional[str] = None,
        path: Union[str, Path, None] = None,
        vertex_path: Union[str, Path, None] = None,
        outputs: Optional[Sequence[str]] = None,
    ) -> ShaderProgram:
        graph = self.parse(text, kind, path=path)
        vertex = None
        if vertex_text is not None:
            vertex = self.parse(vertex_text, kind, path=vertex_path)
        if graph.discard:
            logger.debug("%s discards fragments", path or "<shader>")
        return self.analyze_graph(graph, vertex=vertex, outputs=outputs)


def analyze_shader(
    text: str,
    kind: ShaderKind = ShaderKind.GLSL,
    *,
    vertex_text: Optional[str] = None,
    outputs: Optional[Sequence[str]] = None,
    config: Optional[AnalysisConfig] = None,
) -> ShaderProgram:
    return ShaderAnalyzer(config).analyze(
        text, kind, vertex_text=vertex_text, outputs=outputs
    )


def outline_width(vertex: InstructionGraph, config: AnalysisConfig) -> Optional[Expr]:
    """Find the buffer parameter scaling the outline attribute channel.

    Outline shaders extrude vertices by ``vColor.w * param``; the parameter is
    the outline width.
    """

    for _, node in vertex:
        if not isinstance(node, FuncNode) or node.op is not Op.MUL or len(node.args) != 2:
            continue
        leaves = []
        for arg in node.args:
            resolved = vertex.resolve(arg)
            leaves.append(resolved.leaf if isinstance(resolved, ValueNode) else None)
        for first, second in (leaves, leaves[::-1]):
            if (
                isinstance(first, Attribute)
                and first.name == config.outline_attribute
                and first.channel == config.outline_channel
                and isinstance(second, Buffer)
            ):
                return Value(second)
    return None


def normal_intensity(program: ShaderProgram, config: AnalysisConfig) -> Optional[Expr]:
    """Return the ratio blending a normal map over the flat normal if present."""

    for output in config.normal_outputs:
        value = program.output_dependencies.get(output)
        if not isinstance(value, OutputDependencies) or len(value.layers) < 2:
            continue
        base, blend = value.layers[0], value.layers[1]
        if (
            isinstance(base.value, Value)
            and isinstance(base.value.leaf, Constant)
            and blend.blend_mode is BlendMode.MIX
        ):
            return blend.ratio
    return None


__all__ = [
    "BlendMode",
    "Layer",
    "OutputDependencies",
    "OutputValue",
    "ShaderAnalyzer",
    "ShaderKind",
    "ShaderProgram",
    "analyze_shader",
    "normal_intensity",
    "outline_width",
]
