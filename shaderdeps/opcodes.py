"""Lookup tables mapping frontend function names and mnemonics to :class:`Op`."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .ops import Op

DEFAULT_GLSL_FUNCTIONS: Mapping[str, Op] = {
    "fma": Op.FMA,
    "mix": Op.MIX,
    "pow": Op.POWER,
    "abs": Op.ABS,
    "min": Op.MIN,
    "max": Op.MAX,
    "clamp": Op.CLAMP,
    "sqrt": Op.SQRT,
    "inversesqrt": Op.INVERSE_SQRT,
    "floor": Op.FLOOR,
    "fract": Op.FRACT,
    "exp2": Op.EXP2,
    "log2": Op.LOG2,
    "dot": Op.DOT,
    "overlay": Op.OVERLAY,
}

# https://www.techpowerup.com/gpu-specs/docs/ati-r600-isa.pdf
DEFAULT_LATTE_MNEMONICS: Mapping[str, Op] = {
    "ADD": Op.ADD,
    "ADD_INT": Op.ADD,
    "MUL": Op.MUL,
    "MUL_IEEE": Op.MUL,
    "MULLO_INT": Op.MUL,
    "MULADD": Op.FMA,
    "MULADD_IEEE": Op.FMA,
    "MIN": Op.MIN,
    "MIN_DX10": Op.MIN,
    "MAX": Op.MAX,
    "MAX_DX10": Op.MAX,
    "FLOOR": Op.FLOOR,
    "FRACT": Op.FRACT,
    "SQRT_IEEE": Op.SQRT,
    "RECIPSQRT_IEEE": Op.INVERSE_SQRT,
    "RECIPSQRT_CLAMPED": Op.INVERSE_SQRT,
    "RECIPSQRT_FF": Op.INVERSE_SQRT,
    "EXP_IEEE": Op.EXP2,
    "LOG_CLAMPED": Op.LOG2,
    "LOG_IEEE": Op.LOG2,
    "SETE": Op.EQUAL,
    "SETE_DX10": Op.EQUAL,
    "SETNE": Op.NOT_EQUAL,
    "SETNE_DX10": Op.NOT_EQUAL,
    "SETGT": Op.GREATER,
    "SETGT_DX10": Op.GREATER,
    "SETGE": Op.GREATER_EQUAL,
    "SETGE_DX10": Op.GREATER_EQUAL,
    "DOT4": Op.DOT,
    "DOT4_IEEE": Op.DOT,
}


class OpcodeTable:
    """Resolve pseudo-C function names and assembly mnemonics to operations.

    The built-in tables cover the instructions seen in practice.  A JSON file
    with ``"glsl"`` and ``"latte"`` objects mapping names to operation names
    (``{"latte": {"SIN": "unk"}}``) extends or overrides them.
    """

    def __init__(
        self,
        glsl_functions: Optional[Mapping[str, Op]] = None,
        latte_mnemonics: Optional[Mapping[str, Op]] = None,
    ) -> None:
        self._glsl: Dict[str, Op] = dict(DEFAULT_GLSL_FUNCTIONS)
        self._latte: Dict[str, Op] = dict(DEFAULT_LATTE_MNEMONICS)
        self._glsl.update(glsl_functions or {})
        self._latte.update({key.upper(): op for key, op in (latte_mnemonics or {}).items()})

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "OpcodeTable":
        glsl = _parse_section(data.get("glsl"), "glsl")
        latte = _parse_section(data.get("latte"), "latte")
        return cls(glsl, latte)

    def glsl_function(self, name: str) -> Optional[Op]:
        return self._glsl.get(name)

    def latte_mnemonic(self, mnemonic: str) -> Optional[Op]:
        return self._latte.get(mnemonic.upper())

    def to_json(self) -> Dict[str, Dict[str, str]]:
        return {
            "glsl": {name: op.value for name, op in sorted(self._glsl.items())},
            "latte": {name: op.value for name, op in sorted(self._latte.items())},
        }


def _parse_section(section: Any, label: str) -> Dict[str, Op]:
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ValueError(f"opcode table section '{label}' must be a JSON object")
    parsed: Dict[str, Op] = {}
    for name, op_name in section.items():
        if not isinstance(op_name, str):
            raise ValueError(f"opcode table entry {label}.{name} must be a string")
        parsed[str(name)] = Op.from_name(op_name)
    return parsed


__all__ = ["DEFAULT_GLSL_FUNCTIONS", "DEFAULT_LATTE_MNEMONICS", "OpcodeTable"]
