import pickle

from shaderdeps.dependency import (
    Attribute,
    Buffer,
    Constant,
    TexCoord,
    TexCoordParams,
    Texture,
    leaf_sort_key,
    to_f32,
)
from shaderdeps.expr import Func, Value, constant, count_unknown, leaves, sort_key
from shaderdeps.ops import Op


def test_constant_rounds_to_single_precision():
    assert Constant(0.1).value == to_f32(0.1)
    assert Constant(0.1).value != 0.1
    assert Constant(0.1) == Constant(to_f32(0.1))


def test_negative_zero_is_zero():
    assert Constant(-0.0) == Constant(0.0)
    assert hash(Constant(-0.0)) == hash(Constant(0.0))


def test_nan_constants_are_equal():
    nan = float("nan")
    assert Constant(nan) == Constant(nan)
    assert hash(Constant(nan)) == hash(Constant(-nan))
    assert Value(Constant(nan)) == constant(nan)
    assert Constant(nan) != Constant(0.0)
    assert sorted([Constant(nan), Constant(1.0)], key=leaf_sort_key) == [
        Constant(1.0),
        Constant(nan),
    ]


def test_leaf_descriptions():
    assert Attribute("vTex0", "x").describe() == "vTex0.x"
    assert Buffer("U_Mate", "gWrkFl4", 1, "y").describe() == "U_Mate.gWrkFl4[1].y"
    assert Buffer("KC0", "", 3, "x").describe() == "KC0[3].x"
    coord = TexCoord("vTex0", "x", TexCoordParams(scale=Buffer("U", "scale", None, "x")))
    assert coord.describe() == "vTex0.x{scale=U.scale.x}"
    texture = Texture("s0", "w", (TexCoord("vTex0", "x"), TexCoord("vTex0", "y")))
    assert texture.describe() == "Texture(s0, vTex0.x, vTex0.y).w"


def test_leaf_sort_key_ranks_kinds():
    ordered = [
        Constant(2.0),
        Attribute("a", "x"),
        Buffer("KC0", "", 0, "x"),
        Texture("s0", "x"),
    ]
    assert sorted(reversed(ordered), key=leaf_sort_key) == ordered


def test_expression_hash_survives_pickling():
    expr = Func(
        Op.MUL,
        (Value(Buffer("KC0", "", 1, "x")), Value(Texture("t0", "x", (TexCoord("R1", "x"),)))),
    )
    restored = pickle.loads(pickle.dumps(expr))
    assert restored == expr
    assert hash(restored) == hash(expr)
    assert sort_key(restored) == sort_key(expr)


def test_leaves_and_unknown_count_share_subtrees():
    x = Value(Attribute("x", "x"))
    shared = Func(Op.UNK, (x,))
    expr = Func(Op.ADD, (shared, Func(Op.MUL, (shared, constant(2.0)))))
    assert leaves(expr) == {Attribute("x", "x"), Constant(2.0)}
    assert count_unknown(expr) == 2


def test_values_sort_before_functions():
    value = Value(Texture("t0", "x"))
    func = Func(Op.NEGATE, (constant(1.0),))
    assert sort_key(value) < sort_key(func)
