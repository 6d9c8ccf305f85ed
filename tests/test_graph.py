import pytest

from shaderdeps.dependency import Attribute, Constant
from shaderdeps.graph import FuncNode, InstructionGraph, ValueNode
from shaderdeps.ops import Op
from shaderdeps.slicer import dependency_chain, slice_expr, slice_output
from shaderdeps.expr import Func, Value


def test_insert_rejects_forward_references():
    graph = InstructionGraph()
    leaf = graph.add_leaf(Attribute("a", "x"))
    with pytest.raises(ValueError):
        graph.add_func(Op.ADD, [leaf, leaf + 1])
    assert len(graph) == 1
    assert graph.is_acyclic()


def test_structurally_equal_nodes_are_numbered_once():
    graph = InstructionGraph()
    a = graph.add_leaf(Attribute("a", "x"))
    b = graph.add_leaf(Attribute("a", "x"))
    first = graph.add_func(Op.MUL, [a, a])
    second = graph.add_func(Op.MUL, [b, b])
    assert a == b
    assert first == second
    assert len(graph) == 2


def test_unknown_nodes_are_never_merged():
    graph = InstructionGraph()
    a = graph.add_leaf(Attribute("a", "x"))
    first = graph.add_func(Op.UNK, [a])
    second = graph.add_func(Op.UNK, [a])
    assert first != second


def test_writes_and_outputs():
    graph = InstructionGraph()
    one = graph.add_leaf(Constant(1.0))
    two = graph.add_leaf(Constant(2.0))
    graph.record_write("o0.x", one)
    graph.record_write("o0.x", two)
    graph.mark_output("o0.x")
    graph.mark_output("o0.x")
    assert graph.last_write("o0.x") == two
    assert graph.last_write("o0.y") is None
    assert graph.outputs() == ["o0.x"]
    with pytest.raises(ValueError):
        graph.record_write("r0", 7)


def test_source_annotation_is_kept_for_first_insert():
    graph = InstructionGraph()
    ref = graph.add_leaf(Constant(1.0), source="line 1")
    graph.add_leaf(Constant(1.0), source="line 2")
    assert graph.source(ref) == "line 1"
    assert isinstance(graph.resolve(ref), ValueNode)


def test_slice_shares_objects_for_shared_nodes():
    graph = InstructionGraph()
    a = graph.add_leaf(Attribute("a", "x"))
    square = graph.add_func(Op.MUL, [a, a])
    total = graph.add_func(Op.ADD, [square, square])
    graph.record_write("o0.x", total)

    expr = slice_output(graph, "o0.x")
    assert isinstance(expr, Func)
    assert expr.args[0] is expr.args[1]
    assert expr == Func(
        Op.ADD,
        (
            Func(Op.MUL, (Value(Attribute("a", "x")),) * 2),
            Func(Op.MUL, (Value(Attribute("a", "x")),) * 2),
        ),
    )
    assert slice_output(graph, "o1.x") is None


def test_slice_handles_long_chains():
    graph = InstructionGraph()
    ref = graph.add_leaf(Attribute("a", "x"))
    for _ in range(5000):
        ref = graph.add_func(Op.UNK, [ref])
    expr = slice_expr(graph, ref)
    depth = 0
    while isinstance(expr, Func):
        expr = expr.args[0]
        depth += 1
    assert depth == 5000


def test_dependency_chain_is_in_program_order():
    graph = InstructionGraph()
    unused = graph.add_leaf(Constant(3.0))
    a = graph.add_leaf(Attribute("a", "x"))
    b = graph.add_leaf(Attribute("b", "x"))
    total = graph.add_func(Op.ADD, [b, a])
    assert dependency_chain(graph, total) == [a, b, total]
    assert unused not in dependency_chain(graph, total)
    assert isinstance(graph.resolve(total), FuncNode)
