"""Extract detached expression trees for single outputs of a graph."""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from .expr import Expr, Func, Value
from .graph import FuncNode, InstructionGraph, NodeRef, ValueNode


def slice_expr(graph: InstructionGraph, ref: NodeRef) -> Expr:
    """Return the expression computed by ``ref``.

    The walk is iterative so long dependency chains do not hit the recursion
    limit.  Each node is converted once; shared nodes yield shared objects.
    """

    built: Dict[NodeRef, Expr] = {}
    stack: List[NodeRef] = [ref]
    while stack:
        current = stack[-1]
        if current in built:
            stack.pop()
            continue
        node = graph.resolve(current)
        if isinstance(node, ValueNode):
            built[current] = Value(node.leaf)
            stack.pop()
            continue
        pending = [arg for arg in node.args if arg not in built]
        if pending:
            stack.extend(pending)
            continue
        built[current] = Func(node.op, tuple(built[arg] for arg in node.args))
        stack.pop()
    return built[ref]


def slice_output(graph: InstructionGraph, output: str) -> Optional[Expr]:
    """Slice the last value written to ``output`` or ``None`` if never written."""

    ref = graph.last_write(output)
    if ref is None:
        return None
    return slice_expr(graph, ref)


def dependency_chain(graph: InstructionGraph, ref: NodeRef) -> List[NodeRef]:
    """Return every node ``ref`` depends on, itself included, in program order."""

    seen: Set[NodeRef] = set()
    stack = [ref]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        node = graph.resolve(current)
        if isinstance(node, FuncNode):
            stack.extend(node.args)
    return sorted(seen)


__all__ = ["dependency_chain", "slice_expr", "slice_output"]
