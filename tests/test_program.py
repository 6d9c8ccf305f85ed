from pathlib import Path

from shaderdeps.config import AnalysisConfig
from shaderdeps.dependency import Buffer, TexCoord, Texture
from shaderdeps.expr import Value, constant
from shaderdeps.layers import BlendMode, Layer
from shaderdeps.program import (
    OutputDependencies,
    ShaderAnalyzer,
    ShaderKind,
    analyze_shader,
)


def test_texture_output_has_implicit_mix_layer():
    program = analyze_shader("o0.x = texture(s0, vTex0.xy).x;")
    texture = Texture("s0", "x", (TexCoord("vTex0", "x"), TexCoord("vTex0", "y")))
    assert program.output_dependencies == {
        "o0.x": OutputDependencies(
            (Layer(Value(texture), constant(1.0), BlendMode.MIX, False),)
        )
    }


def test_unwritten_outputs_are_absent():
    program = analyze_shader("o0.x = 1.0;\no1.y = 0.0;")
    assert program.outputs() == ["o0.x", "o1.y"]
    assert "o0.y" not in program.output_dependencies
    assert program.output_dependencies["o1.y"] == OutputDependencies(())


def test_tracked_channels_and_explicit_outputs():
    source = "o0.x = vTex0.x;\no0.w = vTex0.y;"
    config = AnalysisConfig(output_channels="xyz")
    assert analyze_shader(source, config=config).outputs() == ["o0.x"]
    assert analyze_shader(source, outputs=["o0.w", "o3.x"]).outputs() == ["o0.w"]


def test_outline_width_from_vertex_shader():
    vertex = "out_attr0.x = vPos.x + vColor.w * U_Mate.gWrkFl4[3].x * vNormal.x;"
    program = analyze_shader("o0.x = 1.0;", vertex_text=vertex)
    assert program.outline_width == Value(Buffer("U_Mate", "gWrkFl4", 3, "x"))
    assert analyze_shader("o0.x = 1.0;").outline_width is None


def test_normal_intensity_from_flat_normal_blend():
    source = "o2.x = mix(0.5, texture(texNormal, vTex0.xy).x, U_Mate.gWrkFl4[2].x);"
    program = analyze_shader(source)
    assert program.normal_intensity == Value(Buffer("U_Mate", "gWrkFl4", 2, "x"))


def test_unknown_count_covers_all_outputs():
    program = analyze_shader("o0.x = foo(vTex0.x);\no0.y = bar(vTex0.y, vTex0.x);")
    assert program.unknown_count() == 2


def test_shader_kind_from_path():
    assert ShaderKind.from_path(Path("model/shader.0.frag.txt")) is ShaderKind.LATTE
    assert ShaderKind.from_path(Path("model/shader.0.frag")) is ShaderKind.GLSL


def test_output_expr_is_canonical():
    analyzer = ShaderAnalyzer()
    graph = analyzer.parse("o0.x = (vTex0.x + 1.0) + 2.0;", ShaderKind.GLSL)
    expr = analyzer.output_expr(graph, "o0.x")
    assert expr is not None
    assert expr.describe() == "Add(3.0, vTex0.x)"
    assert analyzer.output_expr(graph, "o0.y") is None
