import json
from pathlib import Path

import pytest

from shaderdeps.config import AnalysisConfig
from shaderdeps.opcodes import OpcodeTable
from shaderdeps.ops import Op
from shaderdeps.program import analyze_shader


def test_missing_config_file_yields_defaults(tmp_path: Path):
    config = AnalysisConfig.load(tmp_path / "missing.json")
    assert config.output_channels == "xyzw"
    assert config.normal_outputs == ("o2.x", "o2.y")
    assert config.merge_policy == "last-writer"
    assert config.opcodes.glsl_function("mix") is Op.MIX


def test_config_overrides(tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "output_channels": "xy",
                "normal_outputs": ["o1.x"],
                "merge_policy": "structural",
                "opcodes": {"glsl": {"saturate": "clamp"}, "latte": {"sin": "unk"}},
            }
        ),
        "utf-8",
    )
    config = AnalysisConfig.load(path)
    assert config.output_channels == "xy"
    assert config.normal_outputs == ("o1.x",)
    assert config.merge_policy == "structural"
    assert config.opcodes.glsl_function("saturate") is Op.CLAMP
    assert config.opcodes.latte_mnemonic("SIN") is Op.UNK
    assert config.opcodes.latte_mnemonic("MUL") is Op.MUL


def test_invalid_config_values(tmp_path: Path):
    with pytest.raises(ValueError):
        AnalysisConfig.from_json({"opcodes": {"glsl": {"foo": "teleport"}}})
    with pytest.raises(ValueError):
        AnalysisConfig.from_json({"max_canonical_passes": 0})
    path = tmp_path / "list.json"
    path.write_text("[]", "utf-8")
    with pytest.raises(ValueError):
        AnalysisConfig.load(path)


def test_opcode_override_changes_lowering():
    config = AnalysisConfig(opcodes=OpcodeTable({"saturate": Op.CLAMP}))
    source = "o0.x = saturate(vTex0.x, 0.0, 1.0);"
    layers = analyze_shader(source, config=config).output_dependencies["o0.x"].layers
    assert layers[0].value.op is Op.CLAMP
    assert OpcodeTable().to_json()["latte"]["DOT4"] == "dot"

