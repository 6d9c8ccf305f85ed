import logging

import pytest

from shaderdeps.dependency import Attribute, Buffer, Constant, TexCoord, Texture
from shaderdeps.expr import Func, Value
from shaderdeps.frontend import LatteFrontend, ShaderParseError
from shaderdeps.frontend.latte import parse_literal, split_operands
from shaderdeps.graph import FuncNode
from shaderdeps.ops import Op
from shaderdeps.slicer import slice_output


def _parse(source: str):
    return LatteFrontend().parse(source, path="test.frag.txt")


def test_sample_multiply_export():
    source = """
00 TEX: ADDR(16) CNT(1) VALID_PIX
      0  SAMPLE R2.xyzw, R1.xy0x, t0, s0
01 ALU: ADDR(32) CNT(1) KCACHE0(CB1:0-15)
      1  x: MUL    R0.x, KC0[1].x, R2.x
02 EXP_DONE: PIX0, R0.xyzw
END_OF_PROGRAM
"""
    graph = _parse(source)
    texture = Texture("t0", "x", (TexCoord("R1", "x"), TexCoord("R1", "y")))
    assert slice_output(graph, "o0.x") == Func(
        Op.MUL, (Value(Buffer("KC0", "", 1, "x")), Value(texture))
    )
    assert slice_output(graph, "o0.y") == Value(Attribute("R0", "y"))
    assert graph.outputs() == ["o0.x", "o0.y", "o0.z", "o0.w"]


def test_group_reads_before_writes():
    source = """
00 ALU: ADDR(32) CNT(2)
      0  x: MOV    R0.x, R0.y
         y: MOV    R0.y, R0.x
01 EXP_DONE: PIX0, R0.xyzw
"""
    graph = _parse(source)
    assert slice_output(graph, "o0.x") == Value(Attribute("R0", "y"))
    assert slice_output(graph, "o0.y") == Value(Attribute("R0", "x"))


def test_previous_vector_and_scalar_results():
    source = """
00 ALU: ADDR(32) CNT(3)
      0  x: MUL    ____, R1.x, KC0[0].x
         t: RECIP_IEEE  ____, R1.y
      1  y: ADD    R3.y, PV0.x, PS0
01 EXP_DONE: PIX0, R3.xyzw
"""
    expr = slice_output(_parse(source), "o0.y")
    assert expr == Func(
        Op.ADD,
        (
            Func(Op.MUL, (Value(Attribute("R1", "x")), Value(Buffer("KC0", "", 0, "x")))),
            Func(Op.DIV, (Value(Constant(1.0)), Value(Attribute("R1", "y")))),
        ),
    )


def test_dot4_builds_one_dot_node():
    source = """
00 ALU: ADDR(32) CNT(4)
      0  x: DOT4   R2.x, R1.x, KC0[0].x
         y: DOT4   ____, R1.y, KC0[0].y
         z: DOT4   ____, R1.z, KC0[0].z
         w: DOT4   ____, R1.w, KC0[0].w
      1  x: MOV    R2.y, PV0.w
01 EXP_DONE: PIX0, R2.xyzw
"""
    graph = _parse(source)
    node = graph.resolve(graph.last_write("o0.x"))
    assert isinstance(node, FuncNode)
    assert node.op is Op.DOT
    assert len(node.args) == 8
    assert graph.last_write("o0.y") == graph.last_write("o0.x")


def test_modifiers_and_literals():
    source = """
00 ALU: ADDR(32) CNT(2)
      0  x: MUL*2  R0.x, -R1.x, |KC0[0].x|
         y: ADD    R0.y, R1.y, (0x3F000000, 0.5f) CLAMP
01 EXP_DONE: PIX0, R0.xy__
"""
    graph = _parse(source)
    x = Value(Attribute("R1", "x"))
    param = Value(Buffer("KC0", "", 0, "x"))
    assert slice_output(graph, "o0.x") == Func(
        Op.MUL,
        (
            Func(Op.MUL, (Func(Op.NEGATE, (x,)), Func(Op.ABS, (param,)))),
            Value(Constant(2.0)),
        ),
    )
    assert slice_output(graph, "o0.y") == Func(
        Op.CLAMP,
        (
            Func(Op.ADD, (Value(Attribute("R1", "y")), Value(Constant(0.5)))),
            Value(Constant(0.0)),
            Value(Constant(1.0)),
        ),
    )
    assert slice_output(graph, "o0.z") is None


def test_unknown_opcode_keeps_operands(caplog):
    source = """
00 ALU: ADDR(32) CNT(1)
      0  t: SIN    R0.x, R1.x
01 EXP_DONE: PIX0, R0.xyzw
"""
    with caplog.at_level(logging.WARNING):
        expr = slice_output(_parse(source), "o0.x")
    assert expr == Func(Op.UNK, (Value(Attribute("R1", "x")),))
    assert "unsupported opcode SIN" in caplog.text


def test_burst_exports_and_position_targets():
    source = """
00 ALU: ADDR(32) CNT(2)
      0  x: MOV    R4.x, KC0[0].x
         y: MOV    R5.x, KC0[1].x
01 EXP: POS0, R4.xyzw
02 EXP_DONE: PIX0, R4.xyzw BURSTCNT(1)
"""
    graph = _parse(source)
    assert slice_output(graph, "pos0.x") == Value(Buffer("KC0", "", 0, "x"))
    assert slice_output(graph, "o0.x") == Value(Buffer("KC0", "", 0, "x"))
    assert slice_output(graph, "o1.x") == Value(Buffer("KC0", "", 1, "x"))


def test_fetch_and_kill_lines():
    source = """
00 VTX: ADDR(48) CNT(1)
      0  VFETCH R1.xyzw, R0.x, fc0 MEGA(16)
01 ALU: ADDR(32) CNT(1)
      0  x: KILLGT ____, R1.x, 0.0f
02 EXP_DONE: PIX0, R1.xyzw
END_OF_PROGRAM
03 garbage after the end
"""
    graph = _parse(source)
    assert graph.discard
    assert slice_output(graph, "o0.x") == Value(Attribute("R1", "x"))


def test_unrecognized_clause_line_is_skipped(caplog):
    source = """
00 ALU: ADDR(32) CNT(1)
  this is not an instruction
      0  x: MOV    R0.x, KC0[2].x
01 EXP_DONE: PIX0, R0.xyzw
END_OF_PROGRAM
"""
    with caplog.at_level(logging.WARNING):
        graph = _parse(source)
    assert slice_output(graph, "o0.x") == Value(Buffer("KC0", "", 2, "x"))
    assert "test.frag.txt:3" in caplog.text


def test_line_outside_any_clause_raises_with_location():
    source = (
        "00 ALU: ADDR(32) CNT(1)\n"
        "      0  x: MOV    R0.x, R1.x\n"
        "01 EXP_DONE: PIX0, R0.xyzw\n"
        "  stray text\n"
    )
    with pytest.raises(ShaderParseError) as error:
        _parse(source)
    assert error.value.line == 4
    assert error.value.path == "test.frag.txt"


def test_malformed_sample_writes_unknown():
    source = """
00 TEX: ADDR(16) CNT(2) VALID_PIX
      0  SAMPLE R2.xyzw, R1, t0, s0
      1  SAMPLE R3.xyzw, R1.xy0x, t1, s1
01 ALU: ADDR(32) CNT(1)
      2  x: MUL    R0.x, R2.x, R3.x
02 EXP_DONE: PIX0, R0.xyzw
END_OF_PROGRAM
"""
    graph = _parse(source)
    texture = Texture("t1", "x", (TexCoord("R1", "x"), TexCoord("R1", "y")))
    assert slice_output(graph, "o0.x") == Func(
        Op.MUL,
        (Func(Op.UNK, (Value(Attribute("R1")),)), Value(texture)),
    )


def test_malformed_export_is_skipped():
    source = """
00 ALU: ADDR(32) CNT(1)
      0  x: MOV    R0.x, KC0[2].x
01 EXP: PIX0
02 EXP_DONE: PIX1, R0.xyzw
END_OF_PROGRAM
"""
    graph = _parse(source)
    assert "o0.x" not in graph.outputs()
    assert slice_output(graph, "o1.x") == Value(Buffer("KC0", "", 2, "x"))


def test_parse_literal():
    assert parse_literal("0x3F000000") == 0.5
    assert parse_literal("(0x3F800000, 1.0f)") == 1.0
    assert parse_literal("0.25f") == 0.25
    assert parse_literal("R0.x") is None


def test_split_operands_strips_flags():
    operands, flags = split_operands("R0.x, R1.x, (0x3F000000, 0.5f) CLAMP")
    assert operands == ["R0.x", "R1.x", "(0x3F000000, 0.5f)"]
    assert flags == ["CLAMP"]
