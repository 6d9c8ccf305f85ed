import logging

import pytest

from shaderdeps.dependency import Attribute, Buffer, Constant, TexCoord, TexCoordParams, Texture
from shaderdeps.expr import Func, Value, leaves
from shaderdeps.frontend import GlslFrontend, ShaderParseError
from shaderdeps.frontend.glsl import find_output_locations, tokenize
from shaderdeps.graph import FuncNode, ValueNode
from shaderdeps.ops import Op
from shaderdeps.slicer import slice_output


def _parse(source: str):
    return GlslFrontend().parse(source, path="test.frag")


def test_texture_sample_slices_to_single_leaf():
    graph = _parse("o0.x = texture(s0, vTex0.xy).x;")
    expr = slice_output(graph, "o0.x")
    assert expr == Value(
        Texture("s0", "x", (TexCoord("vTex0", "x"), TexCoord("vTex0", "y")))
    )
    assert graph.outputs() == ["o0.x"]


def test_main_body_and_output_locations():
    source = """
    #version 450
    layout(location = 0) out vec4 out_color;
    layout(location = 1) out vec4 out_normal;
    layout(binding = 0, std140) uniform U_Mate { vec4 gWrkFl4[8]; } U_Mate;

    void main() {
        vec4 color = texture(texBase, vTex0.xy);
        out_color.xyz = color.rgb * U_Mate.gWrkFl4[2].xyz;
        out_normal.x = 0.5;
    }
    """
    graph = _parse(source)
    assert sorted(graph.outputs()) == ["o0.x", "o0.y", "o0.z", "o1.x"]
    expr = slice_output(graph, "o0.y")
    texture = Texture("texBase", "y", (TexCoord("vTex0", "x"), TexCoord("vTex0", "y")))
    assert expr == Func(
        Op.MUL, (Value(texture), Value(Buffer("U_Mate", "gWrkFl4", 2, "y")))
    )
    assert slice_output(graph, "o1.x") == Value(Constant(0.5))
    assert slice_output(graph, "o0.w") is None


def test_find_output_locations():
    source = "layout(location = 3) out vec4 out_attr3;\nlayout(location=1) out vec4 fragNormal;"
    assert find_output_locations(source) == {"out_attr3": 3, "fragNormal": 1}


def test_temporaries_and_compound_assignment():
    source = """
    void main() {
        float temp_0 = vColor.w;
        temp_0 *= 2.0;
        temp_0 -= fp_c9_data[3].x;
        out_attr0.w = temp_0;
    }
    """
    expr = slice_output(_parse(source), "o0.w")
    assert expr == Func(
        Op.SUB,
        (
            Func(Op.MUL, (Value(Attribute("vColor", "w")), Value(Constant(2.0)))),
            Value(Buffer("fp_c9_data", "", 3, "x")),
        ),
    )


def test_control_flow_is_flattened():
    source = """
    void main() {
        if (vTex0.x > 0.5) {
            o0.x = 1.0;
        } else {
            o0.x = KC0[0].x;
        }
        for (int i = 0; i < 4; i++) {
            o0.y = vTex0.y;
        }
        if (vColor.a < 0.1) discard;
    }
    """
    graph = _parse(source)
    assert slice_output(graph, "o0.x") == Value(Buffer("KC0", "", 0, "x"))
    assert slice_output(graph, "o0.y") == Value(Attribute("vTex0", "y"))
    assert graph.discard


def test_functions_map_through_opcode_table():
    source = "o0.x = clamp(fma(vTex0.x, KC0[1].x, 0.5), 0.0, 1.0);"
    expr = slice_output(_parse(source), "o0.x")
    assert isinstance(expr, Func)
    assert expr.op is Op.CLAMP
    assert expr.args[0].op is Op.FMA


def test_dot_product_flattens_channels():
    source = "o0.x = dot(vNormal.xyz, KC0[4].xyz);"
    graph = _parse(source)
    node = graph.resolve(graph.last_write("o0.x"))
    assert isinstance(node, FuncNode)
    assert node.op is Op.DOT
    assert len(node.args) == 6


def test_unknown_function_keeps_operands():
    expr = slice_output(_parse("o0.x = foo(vTex0.x, KC0[1].x);"), "o0.x")
    assert expr == Func(
        Op.UNK, (Value(Attribute("vTex0", "x")), Value(Buffer("KC0", "", 1, "x")))
    )


def test_malformed_statement_lowers_to_unknown(caplog):
    with caplog.at_level(logging.WARNING):
        graph = _parse("o0.x = vTex0.x +* KC0[1].x;\no0.y = 1.0;")
    expr = slice_output(graph, "o0.x")
    assert isinstance(expr, Func)
    assert expr.op is Op.UNK
    assert {leaf.name for leaf in leaves(expr)} == {"vTex0", "KC0"}
    assert slice_output(graph, "o0.y") == Value(Constant(1.0))
    assert "test.frag:1" in caplog.text


def test_value_numbering_shares_nodes():
    graph = _parse("o0.x = vTex0.x * 2.0;\no0.y = vTex0.x * 2.0;")
    assert graph.last_write("o0.x") == graph.last_write("o0.y")


def test_source_annotations_record_lines():
    graph = _parse("o0.x = vTex0.x;\no0.y = vTex0.y * 2.0;")
    ref = graph.last_write("o0.y")
    assert graph.source(ref) == "line 2: o0 . y = vTex0 . y * 2.0;"


def test_bit_casts_pass_through():
    expr = slice_output(_parse("o0.x = uintBitsToFloat(floatBitsToUint(vTex0.x));"), "o0.x")
    assert expr == Value(Attribute("vTex0", "x"))


def test_scaled_texture_coordinates():
    source = "o0.x = texture(t0, vTex0.xy * U_Mate.gWrkFl4[0].xy).x;"
    expr = slice_output(_parse(source), "o0.x")
    assert isinstance(expr, Value)
    coords = expr.leaf.texcoords
    assert coords[0] == TexCoord(
        "vTex0", "x", TexCoordParams(scale=Buffer("U_Mate", "gWrkFl4", 0, "x"))
    )
    assert coords[1].params.scale == Buffer("U_Mate", "gWrkFl4", 0, "y")


def test_parallax_texture_coordinates():
    source = """
    vec2 offset = vNormal.x * vTan.xy * 0.7 + vNormal.y * vBitan.xy;
    vec2 uv = vTex0.xy + U_Mate.gWrkFl4[3].x * offset;
    o0.x = texture(texEye, uv).x;
    """
    expr = slice_output(_parse(source), "o0.x")
    assert isinstance(expr, Value)
    params = TexCoordParams(parallax=Buffer("U_Mate", "gWrkFl4", 3, "x"))
    assert expr.leaf.texcoords == (
        TexCoord("vTex0", "x", params),
        TexCoord("vTex0", "y", params),
    )
    assert expr.leaf.texcoords[0].describe() == "vTex0.x{parallax=U_Mate.gWrkFl4[3].x}"


def test_offset_without_parallax_scale_keeps_plain_coordinate():
    source = """
    vec2 uv = vTex0.xy + U_Mate.gWrkFl4[3].x * (vNormal.x * vTan.xy);
    o0.x = texture(texEye, uv).x;
    """
    expr = slice_output(_parse(source), "o0.x")
    assert expr.leaf.texcoords[0] == TexCoord("vTex0", "x")


def test_dynamic_buffer_index_keeps_index_inputs():
    expr = slice_output(_parse("o0.x = U_Bones.data[vIndex.x].x;"), "o0.x")
    assert isinstance(expr, Func)
    assert expr.op is Op.UNK
    assert leaves(expr) == {Buffer("U_Bones", "data", None, "x"), Attribute("vIndex", "x")}


def test_unbalanced_braces_raise_with_location():
    with pytest.raises(ShaderParseError) as error:
        _parse("void main() {\n    o0.x = 1.0;\n")
    assert error.value.path == "test.frag"
    assert error.value.line == 2


def test_missing_semicolon_raises():
    with pytest.raises(ShaderParseError, match="missing ';'"):
        _parse("void main() {\n    o0.x = 1.0\n}\n")


def test_tokenizer_skips_comments_and_tracks_lines():
    tokens = tokenize("// header\n/* block\ncomment */ o0.x = 1.0f; # ignored\n")
    assert [token.text for token in tokens] == ["o0", ".", "x", "=", "1.0f", ";"]
    assert tokens[0].line == 3


def test_tokenizer_rejects_stray_characters():
    with pytest.raises(ShaderParseError) as error:
        tokenize("o0.x = 1.0;\n@", path="bad.frag")
    assert error.value.line == 2


def test_vector_constructor_broadcasts():
    graph = _parse("vec4 v = vec4(KC0[0].x);\no0.w = v.w;")
    assert slice_output(graph, "o0.w") == Value(Buffer("KC0", "", 0, "x"))
    assert isinstance(graph.resolve(graph.last_write("v.w")), ValueNode)


def test_undeclared_variable_takes_width_of_latest_assignment():
    graph = _parse(
        """
        a = vec2(vTex0.x, vTex0.y);
        a = vColor.x;
        out_attr0.x = a;
        out_attr0.y = a.x;
        b = vColor.w;
        b = vec2(vTex0.x, vTex0.y);
        out_attr0.z = b.x;
        out_attr0.w = b.y;
        """
    )
    assert slice_output(graph, "o0.x") == Value(Attribute("vColor", "x"))
    assert slice_output(graph, "o0.y") == Value(Attribute("vColor", "x"))
    assert slice_output(graph, "o0.z") == Value(Attribute("vTex0", "x"))
    assert slice_output(graph, "o0.w") == Value(Attribute("vTex0", "y"))
