from shaderdeps.printer import format_chain, format_expr, format_layers, format_program
from shaderdeps.program import ShaderAnalyzer, ShaderKind


def test_printer_output():
    analyzer = ShaderAnalyzer()
    graph = analyzer.parse(
        "float t = vTex0.x * KC0[0].x;\no0.x = t + t;", ShaderKind.GLSL, path="p.frag"
    )
    expr = analyzer.output_expr(graph, "o0.x")
    assert format_expr(expr) == [
        "$0 = vTex0.x",
        "$1 = KC0[0].x",
        "$2 = Mul($0, $1)",
        "$3 = Add($2, $2)",
    ]
    assert format_layers([]) == ["(no layers)"]
    assert format_layers(analyzer.engine.layers(expr))[0] == "layer 0: mix ratio=1.0"
    chain = format_chain(graph, graph.last_write("o0.x"))
    assert chain[-1] == "%3 = Add(%2, %2) ; line 2: o0 . x = t + t;"
    assert chain[0] == "%0 = vTex0.x ; line 1: float t = vTex0 . x * KC0 [ 0 ] . x;"


def test_program_dump_lists_outputs_and_extras():
    analyzer = ShaderAnalyzer()
    program = analyzer.analyze(
        "o0.y = KC0[1].x;\no0.x = 0.0;",
        ShaderKind.GLSL,
        vertex_text="o0.x = vColor.w * KC0[4].x;",
    )
    lines = format_program(program)
    assert lines[0] == "o0.x:"
    assert lines[1] == "  (no layers)"
    assert lines[2] == "o0.y:"
    assert lines[-1] == "outline_width: KC0[4].x"
