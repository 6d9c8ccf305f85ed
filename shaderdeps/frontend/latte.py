"""Frontend for clause based VLIW shader assembly (R600 "Latte" listings).

A listing is a sequence of control flow instructions.  ``TEX`` clauses sample
textures, ``ALU`` clauses hold instruction groups of up to five scalar slots
(``x``, ``y``, ``z``, ``w`` and the transcendental ``t`` unit) and ``EXP``
instructions export registers to shader outputs::

    00 TEX: ADDR(208) CNT(1) VALID_PIX
          0  SAMPLE R1.xyzw, R0.xy0x, t0, s0
    01 ALU: ADDR(32) CNT(2) KCACHE0(CB1:0-15)
          1  x: MUL    ____, R1.x, KC0[1].x
             y: MOV    R2.x, PV1.x
    02 EXP_DONE: PIX0, R2.xyzw
    END_OF_PROGRAM

Every slot of a group reads its sources before any slot of the group writes.
``PV<n>.<c>`` and ``PS<n>`` name the result of unit ``c`` (or ``t``) in group
``n`` even when the slot did not write a register.
"""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..dependency import Attribute, Buffer, Constant, Texture
from ..graph import InstructionGraph, NodeRef
from ..opcodes import OpcodeTable
from ..ops import ARITY, Op
from .common import CHANNELS, ShaderParseError, output_id, resolve_texcoord

logger = logging.getLogger(__name__)

PathLike = Union[str, Path, None]

_CF_LINE = re.compile(r"^\s*(\d+)\s+([A-Z][A-Z0-9_]*)\s*:\s*(.*)$")
_ALU_LINE = re.compile(
    r"^\s*(?:(\d+)\s+)?([xyzwt])\s*:\s*([A-Z][A-Z0-9_]*)(?:([*/])([24]))?\s*(.*)$"
)
_TEX_LINE = re.compile(r"^\s*(\d+)\s+([A-Z][A-Z0-9_]*)\s+(.*)$")
_EXPORT = re.compile(r"(PIX|POS|PARAM)(\d+)\s*,\s*R(\d+)(?:\.([xyzw01_]{1,4}))?")
_BURST = re.compile(r"BURSTCNT\((\d+)\)")
_TRAILING_FLAG = re.compile(r"(?<=[^,\s])\s+([A-Z][A-Z0-9_]*)\s*$")

_REGISTER = re.compile(r"^([A-Z]+\d+)(?:\.([xyzw]))?$")
_REGISTER_PREFIX = re.compile(r"^\s*(R\d+)(?:\.([xyzw01_]{1,4}))?")
_CONSTANT_CACHE = re.compile(r"^(KC[01])\[(\d+)\](?:\.([xyzw]))?$")
_CONSTANT_FILE = re.compile(r"^C(\d+)(?:\.([xyzw]))?$")
_PREVIOUS_VECTOR = re.compile(r"^PV(\d+)(?:\.([xyzw]))?$")
_PREVIOUS_SCALAR = re.compile(r"^PS(\d+)(?:\.[xyzw])?$")
_PAIRED_LITERAL = re.compile(r"^\(\s*0[xX][0-9a-fA-F]+\s*,\s*([^)]*)\)(?:\.[xyzw])?$")
_HEX_LITERAL = re.compile(r"^0[xX]([0-9a-fA-F]{1,8})$")
_FLOAT_LITERAL = re.compile(r"^[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?[fF]?$")

_PASS_THROUGH = {
    "MOV",
    "FLT_TO_INT",
    "INT_TO_FLT",
    "FLT_TO_UINT",
    "UINT_TO_FLT",
    "TRUNC",
}

_RECIPROCAL = {"RECIP_IEEE", "RECIP_CLAMPED", "RECIP_FF"}

_SCALED_MULADD = {
    "MULADD_M2": (Op.MUL, 2.0),
    "MULADD_M4": (Op.MUL, 4.0),
    "MULADD_D2": (Op.DIV, 2.0),
    "MULADD_D4": (Op.DIV, 4.0),
}

_CONDITIONAL_MOVES = {
    "CNDE": Op.EQUAL,
    "CNDE_INT": Op.EQUAL,
    "CNDGT": Op.GREATER,
    "CNDGT_INT": Op.GREATER,
    "CNDGE": Op.GREATER_EQUAL,
    "CNDGE_INT": Op.GREATER_EQUAL,
}

_EXPORT_PREFIXES = {"PIX": "o", "POS": "pos", "PARAM": "param"}


class _OperandError(Exception):
    """Raised for a source operand that cannot be resolved."""


@dataclass
class _Slot:
    unit: str
    mnemonic: str
    destination: Optional[str]
    operands: List[str]
    scale: Optional[Tuple[Op, float]]
    clamp: bool
    line: int
    text: str
    sources: List[NodeRef] = field(default_factory=list)
    failed: bool = False


@dataclass
class _Group:
    number: int
    slots: List[_Slot] = field(default_factory=list)


def parse_literal(text: str) -> Optional[float]:
    """Parse a float or hexadecimal bit pattern literal."""

    paired = _PAIRED_LITERAL.match(text)
    if paired is not None:
        text = paired.group(1).strip()
    hex_match = _HEX_LITERAL.match(text)
    if hex_match is not None:
        bits = int(hex_match.group(1), 16)
        return struct.unpack("<f", struct.pack("<I", bits))[0]
    if _FLOAT_LITERAL.match(text):
        return float(text.rstrip("fF"))
    return None


def split_operands(text: str) -> Tuple[List[str], List[str]]:
    """Split an operand list into operands and trailing flags like ``CLAMP``."""

    flags: List[str] = []
    text = text.strip()
    while True:
        match = _TRAILING_FLAG.search(text)
        if match is None:
            break
        flags.insert(0, match.group(1))
        text = text[: match.start()].rstrip()

    operands: List[str] = []
    depth = 0
    current = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            operands.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    tail = "".join(current).strip()
    if tail:
        operands.append(tail)
    return operands, flags


class _LatteBuilder:
    def __init__(self, opcodes: OpcodeTable, path: PathLike) -> None:
        self.graph = InstructionGraph()
        self.opcodes = opcodes
        self.path = path
        self.previous_vector: Dict[Tuple[int, str], NodeRef] = {}
        self.previous_scalar: Dict[int, NodeRef] = {}
        self.group: Optional[_Group] = None

    # -- helpers -------------------------------------------------------
    def leaf(self, leaf, source: Optional[str]) -> NodeRef:
        return self.graph.add_leaf(leaf, source=source)

    def func(self, op: Op, args: Sequence[NodeRef], source: Optional[str]) -> NodeRef:
        return self.graph.add_func(op, args, source=source)

    def register(self, name: str, channel: Optional[str], source: Optional[str]) -> NodeRef:
        destination = f"{name}.{channel}" if channel else name
        ref = self.graph.last_write(destination)
        if ref is None:
            ref = self.leaf(Attribute(name, channel), source)
        return ref

    # -- operands ------------------------------------------------------
    def operand(self, text: str, source: Optional[str]) -> NodeRef:
        text = text.strip()
        negate = False
        if text.startswith("-"):
            negate = True
            text = text[1:].strip()
        absolute = False
        if text.startswith("|"):
            if not text.endswith("|") or len(text) < 2:
                raise _OperandError(f"unterminated absolute value {text!r}")
            absolute = True
            text = text[1:-1].strip()

        if negate and not absolute:
            literal = parse_literal(text)
            if literal is not None:
                return self.leaf(Constant(-literal), source)

        ref = self.value(text, source)
        if absolute:
            ref = self.func(Op.ABS, [ref], source)
        if negate:
            ref = self.func(Op.NEGATE, [ref], source)
        return ref

    def value(self, text: str, source: Optional[str]) -> NodeRef:
        match = _PREVIOUS_VECTOR.match(text)
        if match is not None:
            group, channel = int(match.group(1)), match.group(2) or "x"
            ref = self.previous_vector.get((group, channel))
            if ref is None:
                ref = self.leaf(Attribute(f"PV{group}", channel), source)
            return ref
        match = _PREVIOUS_SCALAR.match(text)
        if match is not None:
            group = int(match.group(1))
            ref = self.previous_scalar.get(group)
            if ref is None:
                ref = self.leaf(Attribute(f"PS{group}"), source)
            return ref
        match = _CONSTANT_CACHE.match(text)
        if match is not None:
            return self.leaf(
                Buffer(match.group(1), "", int(match.group(2)), match.group(3)), source
            )
        match = _CONSTANT_FILE.match(text)
        if match is not None:
            return self.leaf(Buffer("C", "", int(match.group(1)), match.group(2)), source)
        match = _REGISTER.match(text)
        if match is not None:
            return self.register(match.group(1), match.group(2), source)
        literal = parse_literal(text)
        if literal is not None:
            return self.leaf(Constant(literal), source)
        raise _OperandError(f"unsupported operand {text!r}")

    # -- ALU clauses ---------------------------------------------------
    def alu_line(self, match: "re.Match[str]", line: int, text: str) -> None:
        number, unit, mnemonic, scale_op, scale, rest = match.groups()
        if number is not None:
            self.flush_group()
            self.group = _Group(int(number))
        elif self.group is None:
            raise ShaderParseError("ALU slot outside an instruction group", path=self.path, line=line)

        operands, flags = split_operands(rest)
        destination = None
        if operands:
            destination = operands[0]
            operands = operands[1:]
            if destination == "____" or set(destination) == {"_"}:
                destination = None
        scaling = None
        if scale_op is not None:
            scaling = (Op.MUL if scale_op == "*" else Op.DIV, float(scale))
        self.group.slots.append(
            _Slot(
                unit=unit,
                mnemonic=mnemonic,
                destination=destination,
                operands=operands,
                scale=scaling,
                clamp="CLAMP" in flags,
                line=line,
                text=text.strip(),
            )
        )

    def flush_group(self) -> None:
        group = self.group
        self.group = None
        if group is None:
            return

        # Every slot reads before any slot of the group writes.
        for slot in group.slots:
            source = self.describe_slot(slot)
            for text in slot.operands:
                try:
                    slot.sources.append(self.operand(text, source))
                except _OperandError as error:
                    logger.warning("%s:%d: %s", self.path or "<shader>", slot.line, error)
                    slot.failed = True

        dot_ref = self.dot_product(group)
        results: List[Tuple[_Slot, NodeRef]] = []
        for slot in group.slots:
            source = self.describe_slot(slot)
            if slot.mnemonic.startswith("DOT4") and dot_ref is not None:
                ref: Optional[NodeRef] = dot_ref
            else:
                ref = self.evaluate(slot, source)
            if ref is None:
                continue
            if slot.scale is not None:
                op, factor = slot.scale
                ref = self.func(op, [ref, self.leaf(Constant(factor), source)], source)
            if slot.clamp:
                ref = self.func(
                    Op.CLAMP,
                    [ref, self.leaf(Constant(0.0), source), self.leaf(Constant(1.0), source)],
                    source,
                )
            results.append((slot, ref))

        for slot, ref in results:
            if slot.destination is not None:
                self.write_destination(slot, ref)
            if slot.unit == "t":
                self.previous_scalar[group.number] = ref
            else:
                self.previous_vector[(group.number, slot.unit)] = ref

    def describe_slot(self, slot: _Slot) -> str:
        return f"line {slot.line}: {slot.text}"

    def dot_product(self, group: _Group) -> Optional[NodeRef]:
        slots = [slot for slot in group.slots if slot.mnemonic.startswith("DOT4")]
        if not slots or any(slot.failed or len(slot.sources) != 2 for slot in slots):
            return None
        first = [slot.sources[0] for slot in slots]
        second = [slot.sources[1] for slot in slots]
        return self.func(Op.DOT, first + second, self.describe_slot(slots[0]))

    def evaluate(self, slot: _Slot, source: str) -> Optional[NodeRef]:
        mnemonic = slot.mnemonic
        sources = slot.sources
        if slot.failed:
            return self.func(Op.UNK, sources, source)
        if mnemonic == "NOP":
            return None
        if mnemonic.startswith("KILL"):
            self.graph.discard = True
            return None
        if mnemonic in _PASS_THROUGH and len(sources) == 1:
            return sources[0]
        if mnemonic in _RECIPROCAL and len(sources) == 1:
            one = self.leaf(Constant(1.0), source)
            return self.func(Op.DIV, [one, sources[0]], source)
        if mnemonic in _SCALED_MULADD and len(sources) == 3:
            op, factor = _SCALED_MULADD[mnemonic]
            fma = self.func(Op.FMA, sources, source)
            return self.func(op, [fma, self.leaf(Constant(factor), source)], source)
        if mnemonic in _CONDITIONAL_MOVES and len(sources) == 3:
            zero = self.leaf(Constant(0.0), source)
            condition = self.func(_CONDITIONAL_MOVES[mnemonic], [sources[0], zero], source)
            return self.func(Op.SELECT, [condition, sources[1], sources[2]], source)

        op = self.opcodes.latte_mnemonic(mnemonic)
        if op is not None and op is not Op.DOT:
            arity = ARITY.get(op)
            if arity is None or arity == len(sources):
                return self.func(op, sources, source)
            logger.warning(
                "%s:%d: %s expects %d operands but got %d",
                self.path or "<shader>",
                slot.line,
                mnemonic,
                arity,
                len(sources),
            )
        else:
            logger.warning(
                "%s:%d: unsupported opcode %s lowered as unk",
                self.path or "<shader>",
                slot.line,
                mnemonic,
            )
        return self.func(Op.UNK, sources, source)

    def write_destination(self, slot: _Slot, ref: NodeRef) -> None:
        match = _REGISTER.match(slot.destination or "")
        if match is None:
            logger.warning(
                "%s:%d: unsupported destination %s",
                self.path or "<shader>",
                slot.line,
                slot.destination,
            )
            return
        name, channel = match.group(1), match.group(2)
        destination = f"{name}.{channel}" if channel else name
        self.graph.record_write(destination, ref)

    # -- TEX clauses ---------------------------------------------------
    def tex_line(self, mnemonic: str, operands_text: str, line: int, text: str) -> None:
        source = f"line {line}: {text.strip()}"
        if not mnemonic.startswith("SAMPLE"):
            logger.debug("skipping texture instruction %s", mnemonic)
            return
        operands, _ = split_operands(operands_text)
        destination = _split_register(operands[0]) if operands else None
        coordinates = _split_register(operands[1]) if len(operands) > 1 else None
        if len(operands) < 3 or destination is None or coordinates is None:
            logger.warning(
                "%s:%d: malformed %s operands lowered as unk",
                self.path or "<shader>",
                line,
                mnemonic,
            )
            self.unknown_sample(operands, source)
            return
        texture = operands[2]

        coordinate_refs = []
        register, swizzle = coordinates
        for char in swizzle[:2]:
            if char in "01":
                coordinate_refs.append(self.leaf(Constant(float(char)), source))
            elif char in CHANNELS:
                coordinate_refs.append(self.register(register, char, source))
        texcoords = tuple(resolve_texcoord(self.graph, ref) for ref in coordinate_refs)

        writes = []
        target, mask = destination
        for output_channel, texture_channel in zip(CHANNELS, mask):
            if texture_channel == "_":
                continue
            if texture_channel in "01":
                ref = self.leaf(Constant(float(texture_channel)), source)
            else:
                ref = self.leaf(Texture(texture, texture_channel, texcoords), source)
            writes.append((f"{target}.{output_channel}", ref))
        for name, ref in writes:
            self.graph.record_write(name, ref)

    def unknown_sample(self, operands: Sequence[str], source: str) -> None:
        refs = []
        for text in operands[1:]:
            try:
                refs.append(self.operand(text, source))
            except _OperandError:
                continue
        target = _REGISTER_PREFIX.match(operands[0]) if operands else None
        if target is None:
            return
        mask = target.group(2) or CHANNELS
        unknown = self.func(Op.UNK, refs, source)
        for output_channel, channel in zip(CHANNELS, mask):
            if channel != "_":
                self.graph.record_write(f"{target.group(1)}.{output_channel}", unknown)

    # -- exports -------------------------------------------------------
    def export(self, properties: str, line: int) -> None:
        match = _EXPORT.search(properties)
        if match is None:
            logger.warning(
                "%s:%d: skipping malformed export %r",
                self.path or "<shader>",
                line,
                properties.strip(),
            )
            return
        kind, target, register, swizzle = match.groups()
        burst = _BURST.search(properties)
        count = int(burst.group(1)) if burst is not None else 0
        source = f"line {line}: EXP {properties.strip()}"

        for offset in range(count + 1):
            name = f"R{int(register) + offset}"
            for output_channel, channel in zip(CHANNELS, swizzle or CHANNELS):
                if channel == "_":
                    continue
                if channel in "01":
                    ref = self.leaf(Constant(float(channel)), source)
                else:
                    ref = self.register(name, channel, source)
                index = int(target) + offset
                if kind == "PIX":
                    destination = output_id(index, output_channel)
                else:
                    destination = f"{_EXPORT_PREFIXES[kind]}{index}.{output_channel}"
                self.graph.record_write(destination, ref)
                self.graph.mark_output(destination)


def _split_register(text: str) -> Optional[Tuple[str, str]]:
    match = re.match(r"^([A-Z]+\d+)\.([xyzw01_]{1,4})$", text.strip())
    if match is None:
        return None
    return match.group(1), match.group(2)


class LatteFrontend:
    """Build an :class:`InstructionGraph` from a clause assembly listing."""

    def __init__(self, opcodes: Optional[OpcodeTable] = None) -> None:
        self.opcodes = opcodes or OpcodeTable()

    def parse(self, source: str, *, path: PathLike = None) -> InstructionGraph:
        builder = _LatteBuilder(self.opcodes, path)
        mode = None
        for line_number, text in enumerate(source.splitlines(), start=1):
            stripped = text.strip()
            if not stripped or stripped.startswith(("#", ";", "//")):
                continue
            if "FETCH" in stripped:
                continue
            if stripped.startswith("END_OF_PROGRAM"):
                break

            cf = _CF_LINE.match(text)
            if cf is not None:
                builder.flush_group()
                mnemonic = cf.group(2)
                if mnemonic.startswith("TEX") or mnemonic.startswith("VTX"):
                    mode = "tex"
                elif mnemonic.startswith("ALU"):
                    mode = "alu"
                elif mnemonic.startswith("EXP"):
                    mode = None
                    builder.export(cf.group(3), line_number)
                else:
                    mode = None
                continue

            if mode == "alu":
                alu = _ALU_LINE.match(text)
                if alu is not None:
                    builder.alu_line(alu, line_number, text)
                    continue
            elif mode == "tex":
                tex = _TEX_LINE.match(text)
                if tex is not None:
                    builder.tex_line(tex.group(2), tex.group(3), line_number, text)
                    continue
            if mode is None:
                raise ShaderParseError(
                    f"unrecognized line {stripped!r}", path=path, line=line_number
                )
            logger.warning(
                "%s:%d: skipping unrecognized %s clause line %r",
                path or "<shader>",
                line_number,
                mode,
                stripped,
            )
        builder.flush_group()
        return builder.graph

    def parse_file(self, path: Path) -> InstructionGraph:
        return self.parse(path.read_text("utf-8"), path=path)


__all__ = ["LatteFrontend", "parse_literal", "split_operands"]
