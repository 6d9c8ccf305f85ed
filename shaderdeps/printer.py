"""Human readable dumps of expressions, layers and raw instruction chains."""

from __future__ import annotations

from typing import Dict, List, Sequence

from .expr import Expr, Func
from .graph import InstructionGraph, NodeRef
from .layers import Layer
from .program import OutputDependencies, ShaderProgram
from .slicer import dependency_chain


def format_expr(expr: Expr) -> List[str]:
    """Render ``expr`` as numbered assignments, one per distinct subtree.

    Shared subtrees are printed once and referenced as ``$N``.
    """

    names: Dict[Expr, str] = {}
    lines: List[str] = []
    stack: List[Expr] = [expr]
    while stack:
        node = stack[-1]
        if node in names:
            stack.pop()
            continue
        if isinstance(node, Func):
            pending = [arg for arg in node.args if arg not in names]
            if pending:
                stack.extend(reversed(pending))
                continue
            rendered = ", ".join(names[arg] for arg in node.args)
            text = f"{node.op.describe()}({rendered})"
        else:
            text = node.describe()
        name = f"${len(lines)}"
        names[node] = name
        lines.append(f"{name} = {text}")
        stack.pop()
    return lines


def format_layers(layers: Sequence[Layer]) -> List[str]:
    if not layers:
        return ["(no layers)"]
    lines = []
    for position, layer in enumerate(layers):
        fresnel = " fresnel" if layer.is_fresnel else ""
        lines.append(
            f"layer {position}: {layer.blend_mode.value}{fresnel}"
            f" ratio={layer.ratio.describe()}"
        )
        lines.extend(f"    {line}" for line in format_expr(layer.value))
    return lines


def format_program(program: ShaderProgram) -> List[str]:
    lines = []
    for output in program.outputs():
        value = program.output_dependencies[output]
        lines.append(f"{output}:")
        if isinstance(value, OutputDependencies):
            lines.extend(f"  {line}" for line in format_layers(value.layers))
        else:
            lines.extend(f"  {line}" for line in format_expr(value))
    if program.outline_width is not None:
        lines.append(f"outline_width: {program.outline_width.describe()}")
    if program.normal_intensity is not None:
        lines.append(f"normal_intensity: {program.normal_intensity.describe()}")
    return lines


def format_chain(graph: InstructionGraph, ref: NodeRef) -> List[str]:
    """Render the raw nodes ``ref`` depends on in program order."""

    lines = []
    for current in dependency_chain(graph, ref):
        text = f"%{current} = {graph.resolve(current).describe()}"
        source = graph.source(current)
        if source:
            text = f"{text} ; {source}"
        lines.append(text)
    return lines


__all__ = ["format_chain", "format_expr", "format_layers", "format_program"]
