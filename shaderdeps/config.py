"""Analysis settings loaded from an optional JSON file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Tuple

from .opcodes import OpcodeTable


@dataclass
class AnalysisConfig:
    """Tunable parameters shared by the CLI and the batch driver."""

    output_channels: str = "xyzw"
    normal_outputs: Tuple[str, ...] = ("o2.x", "o2.y")
    outline_attribute: str = "vColor"
    outline_channel: str = "w"
    merge_policy: str = "last-writer"
    max_canonical_passes: int = 64
    opcodes: OpcodeTable = field(default_factory=OpcodeTable)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        config = cls()
        if "output_channels" in data:
            config.output_channels = str(data["output_channels"])
        if "normal_outputs" in data:
            outputs = data["normal_outputs"]
            if not isinstance(outputs, list):
                raise ValueError("'normal_outputs' must be a list of output names")
            config.normal_outputs = tuple(str(name) for name in outputs)
        if "outline_attribute" in data:
            config.outline_attribute = str(data["outline_attribute"])
        if "outline_channel" in data:
            config.outline_channel = str(data["outline_channel"])
        if "merge_policy" in data:
            config.merge_policy = str(data["merge_policy"])
        if "max_canonical_passes" in data:
            passes = int(data["max_canonical_passes"])
            if passes <= 0:
                raise ValueError("'max_canonical_passes' must be positive")
            config.max_canonical_passes = passes
        if "opcodes" in data:
            opcodes = data["opcodes"]
            if not isinstance(opcodes, Mapping):
                raise ValueError("'opcodes' must be a JSON object")
            config.opcodes = OpcodeTable.from_json(opcodes)
        return config

    @classmethod
    def load(cls, path: Path) -> "AnalysisConfig":
        """Load settings from ``path``; a missing file yields the defaults."""

        if not path.exists():
            return cls()
        data = json.loads(path.read_text("utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("configuration file must contain a JSON object")
        return cls.from_json(data)


__all__ = ["AnalysisConfig"]
