"""Append-only instruction graph shared by both frontends.

Each shader gets a private :class:`InstructionGraph`.  Nodes are addressed by
integer :data:`NodeRef` indices and may only reference nodes inserted before
them, which keeps the graph acyclic by construction.  Destinations such as
registers, temporaries and shader outputs are tracked separately: a later write
to the same destination replaces the earlier one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .dependency import Leaf
from .ops import Op

NodeRef = int


@dataclass(frozen=True)
class ValueNode:
    """Graph node wrapping a leaf dependency."""

    leaf: Leaf

    def describe(self) -> str:
        return self.leaf.describe()


@dataclass(frozen=True)
class FuncNode:
    """Operation over previously inserted nodes."""

    op: Op
    args: Tuple[NodeRef, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        rendered = ", ".join(f"%{arg}" for arg in self.args)
        return f"{self.op.describe()}({rendered})"


Node = Union[ValueNode, FuncNode]


class InstructionGraph:
    """Indexed node store for a single shader."""

    def __init__(self) -> None:
        self._nodes: List[Node] = []
        self._sources: List[Optional[str]] = []
        self._numbering: Dict[Node, NodeRef] = {}
        self._writes: Dict[str, NodeRef] = {}
        self._outputs: List[str] = []
        self.discard = False

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Tuple[NodeRef, Node]]:
        return iter(enumerate(self._nodes))

    # ------------------------------------------------------------------
    # nodes
    # ------------------------------------------------------------------
    def insert(self, node: Node, *, source: Optional[str] = None) -> NodeRef:
        """Append ``node`` and return its reference.

        Structurally identical nodes are value numbered and share one
        reference.  ``UNK`` nodes are never merged since two unclassified
        operations over the same inputs need not compute the same thing.
        """

        if isinstance(node, FuncNode):
            for arg in node.args:
                if not isinstance(arg, int) or arg < 0 or arg >= len(self._nodes):
                    raise ValueError(
                        f"node argument %{arg} does not precede node %{len(self._nodes)}"
                    )
        elif not isinstance(node, ValueNode):
            raise TypeError(f"unsupported graph node type: {type(node)!r}")

        numbered = not (isinstance(node, FuncNode) and node.op is Op.UNK)
        if numbered:
            existing = self._numbering.get(node)
            if existing is not None:
                if self._sources[existing] is None:
                    self._sources[existing] = source
                return existing

        ref = len(self._nodes)
        self._nodes.append(node)
        self._sources.append(source)
        if numbered:
            self._numbering[node] = ref
        return ref

    def add_leaf(self, leaf: Leaf, *, source: Optional[str] = None) -> NodeRef:
        return self.insert(ValueNode(leaf), source=source)

    def add_func(
        self, op: Op, args: Iterable[NodeRef], *, source: Optional[str] = None
    ) -> NodeRef:
        return self.insert(FuncNode(op, tuple(args)), source=source)

    def resolve(self, ref: NodeRef) -> Node:
        return self._nodes[ref]

    def source(self, ref: NodeRef) -> Optional[str]:
        """Return the source text annotation recorded for ``ref`` if any."""

        return self._sources[ref]

    # ------------------------------------------------------------------
    # destinations
    # ------------------------------------------------------------------
    def record_write(self, destination: str, ref: NodeRef) -> None:
        if ref < 0 or ref >= len(self._nodes):
            raise ValueError(f"write to {destination} references unknown node %{ref}")
        self._writes[destination] = ref

    def last_write(self, destination: str) -> Optional[NodeRef]:
        return self._writes.get(destination)

    def destinations(self) -> List[str]:
        return list(self._writes)

    def mark_output(self, destination: str) -> None:
        """Flag ``destination`` as a shader output tracked by the analysis."""

        if destination not in self._outputs:
            self._outputs.append(destination)

    def outputs(self) -> List[str]:
        return list(self._outputs)

    # ------------------------------------------------------------------
    # invariants
    # ------------------------------------------------------------------
    def is_acyclic(self) -> bool:
        """Return ``True`` if no node reaches itself through its arguments."""

        for ref, node in enumerate(self._nodes):
            if isinstance(node, FuncNode) and any(arg >= ref for arg in node.args):
                return False
        return True


__all__ = ["FuncNode", "InstructionGraph", "Node", "NodeRef", "ValueNode"]
