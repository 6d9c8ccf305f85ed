"""Frontend for decompiled pseudo-C (GLSL-like) shader source.

The frontend tokenizes the source, parses each statement of ``main()`` into a
small expression AST and lowers it channel by channel into an
:class:`~shaderdeps.graph.InstructionGraph`.  Vector values are represented as
lists of scalar node references so ``vTex0.xy`` lowers to two attribute nodes
and ``texture(s0, vTex0.xy)`` to four texture channel leaves.

Control statements are flattened: conditions and loop heads are dropped and
their bodies are lowered in source order so the last write to a destination
wins.  A statement that cannot be parsed or lowered becomes an ``UNK`` node
over every value it mentions; only unbalanced structure (missing ``;``,
unmatched braces, stray characters) aborts the whole shader.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from ..dependency import Attribute, Buffer, Constant, Texture
from ..graph import InstructionGraph, NodeRef
from ..opcodes import OpcodeTable
from ..ops import Op
from .common import (
    CHANNELS,
    ShaderParseError,
    is_swizzle,
    normalize_channel,
    output_id,
    output_index,
    resolve_texcoord,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path, None]


# ----------------------------------------------------------------------
# tokens
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>[ \t\r\f\v]+)
    |(?P<newline>\n)
    |(?P<comment>//[^\n]*|/\*.*?\*/)
    |(?P<preprocessor>\#[^\n]*)
    |(?P<number>0[xX][0-9a-fA-F]+[uU]?|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?[fFuU]?)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>\+\+|--|\+=|-=|\*=|/=|==|!=|<=|>=|&&|\|\||\^\^|<<|>>|[-+*/%=<>!?:;,.(){}\[\]&|^~])
    """,
    re.VERBOSE | re.DOTALL,
)


def tokenize(source: str, *, path: PathLike = None) -> List[Token]:
    """Split ``source`` into tokens annotated with 1-based line numbers."""

    tokens: List[Token] = []
    line = 1
    position = 0
    while position < len(source):
        match = _TOKEN_PATTERN.match(source, position)
        if match is None:
            raise ShaderParseError(
                f"unexpected character {source[position]!r}", path=path, line=line
            )
        kind = match.lastgroup or ""
        text = match.group()
        if kind in {"number", "ident", "op"}:
            tokens.append(Token(kind, text, line))
        line += text.count("\n")
        position = match.end()
    return tokens


# ----------------------------------------------------------------------
# expression AST
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class _Number:
    value: float


@dataclass(frozen=True)
class _Name:
    name: str


@dataclass(frozen=True)
class _Member:
    base: "_Ast"
    name: str


@dataclass(frozen=True)
class _Index:
    base: "_Ast"
    index: "_Ast"


@dataclass(frozen=True)
class _Call:
    name: str
    args: Tuple["_Ast", ...]


@dataclass(frozen=True)
class _Unary:
    op: str
    operand: "_Ast"


@dataclass(frozen=True)
class _Binary:
    op: str
    left: "_Ast"
    right: "_Ast"


@dataclass(frozen=True)
class _Ternary:
    condition: "_Ast"
    if_true: "_Ast"
    if_false: "_Ast"


_Ast = Union[_Number, _Name, _Member, _Index, _Call, _Unary, _Binary, _Ternary]


class _StatementError(Exception):
    """Local failure for a single statement."""


_BINARY_PRECEDENCE = {
    "||": 1,
    "^^": 2,
    "&&": 3,
    "|": 4,
    "^": 5,
    "&": 6,
    "==": 7,
    "!=": 7,
    "<": 8,
    ">": 8,
    "<=": 8,
    ">=": 8,
    "<<": 9,
    ">>": 9,
    "+": 10,
    "-": 10,
    "*": 11,
    "/": 11,
    "%": 11,
}


def parse_number(text: str) -> float:
    cleaned = text.rstrip("uU")
    if cleaned.lower().startswith("0x"):
        return float(int(cleaned, 16))
    return float(cleaned.rstrip("fF"))


def _index_literal(node: _Number) -> int:
    try:
        return int(node.value)
    except (OverflowError, ValueError):
        raise _StatementError(f"invalid index {node.value!r}") from None


class _ExpressionParser:
    """Precedence climbing parser over a token slice."""

    def __init__(self, tokens: Sequence[Token]) -> None:
        self.tokens = tokens
        self.position = 0

    def parse_all(self) -> _Ast:
        if not self.tokens:
            raise _StatementError("empty expression")
        expr = self.parse_expression()
        if self.position != len(self.tokens):
            raise _StatementError(f"unexpected token {self.tokens[self.position].text!r}")
        return expr

    def peek(self) -> Optional[str]:
        if self.position < len(self.tokens):
            return self.tokens[self.position].text
        return None

    def take(self) -> Token:
        if self.position >= len(self.tokens):
            raise _StatementError("unexpected end of expression")
        token = self.tokens[self.position]
        self.position += 1
        return token

    def expect(self, text: str) -> None:
        token = self.take()
        if token.text != text:
            raise _StatementError(f"expected {text!r} but found {token.text!r}")

    def parse_expression(self) -> _Ast:
        condition = self.parse_binary(1)
        if self.peek() == "?":
            self.take()
            if_true = self.parse_expression()
            self.expect(":")
            if_false = self.parse_expression()
            return _Ternary(condition, if_true, if_false)
        return condition

    def parse_binary(self, min_precedence: int) -> _Ast:
        left = self.parse_unary()
        while True:
            op = self.peek()
            precedence = _BINARY_PRECEDENCE.get(op or "")
            if precedence is None or precedence < min_precedence:
                return left
            self.take()
            right = self.parse_binary(precedence + 1)
            left = _Binary(op, left, right)  # type: ignore[arg-type]

    def parse_unary(self) -> _Ast:
        op = self.peek()
        if op in {"-", "+", "!", "~"}:
            self.take()
            return _Unary(op, self.parse_unary())  # type: ignore[arg-type]
        if op in {"++", "--"}:
            raise _StatementError("increment expressions are not supported")
        return self.parse_postfix()

    def parse_postfix(self) -> _Ast:
        expr = self.parse_primary()
        while True:
            op = self.peek()
            if op == ".":
                self.take()
                token = self.take()
                if token.kind != "ident":
                    raise _StatementError(f"invalid member name {token.text!r}")
                expr = _Member(expr, token.text)
            elif op == "[":
                self.take()
                index = self.parse_expression()
                self.expect("]")
                expr = _Index(expr, index)
            elif op == "(" and isinstance(expr, _Name):
                self.take()
                args: List[_Ast] = []
                if self.peek() != ")":
                    args.append(self.parse_expression())
                    while self.peek() == ",":
                        self.take()
                        args.append(self.parse_expression())
                self.expect(")")
                expr = _Call(expr.name, tuple(args))
            elif op in {"++", "--"}:
                raise _StatementError("increment expressions are not supported")
            else:
                return expr

    def parse_primary(self) -> _Ast:
        token = self.take()
        if token.kind == "number":
            return _Number(parse_number(token.text))
        if token.kind == "ident":
            if token.text == "true":
                return _Number(1.0)
            if token.text == "false":
                return _Number(0.0)
            return _Name(token.text)
        if token.text == "(":
            expr = self.parse_expression()
            self.expect(")")
            return expr
        raise _StatementError(f"unexpected token {token.text!r}")


# ----------------------------------------------------------------------
# lowering
# ----------------------------------------------------------------------
_TYPE_WIDTH: Dict[str, int] = {
    "float": 1,
    "int": 1,
    "uint": 1,
    "bool": 1,
    "double": 1,
}
for _prefix in ("", "i", "u", "b", "d"):
    for _width in (2, 3, 4):
        _TYPE_WIDTH[f"{_prefix}vec{_width}"] = _width
for _size in ("2", "3", "4", "2x2", "3x3", "4x4", "2x3", "2x4", "3x2", "3x4", "4x2", "4x3"):
    _TYPE_WIDTH[f"mat{_size}"] = 4

_CONSTRUCTORS = dict(_TYPE_WIDTH)

_QUALIFIERS = {
    "const",
    "precise",
    "highp",
    "mediump",
    "lowp",
    "invariant",
    "flat",
    "smooth",
    "noperspective",
}

_GLOBAL_DECLARATIONS = {
    "layout",
    "uniform",
    "in",
    "out",
    "inout",
    "buffer",
    "precision",
    "struct",
    "attribute",
    "varying",
    "shared",
}

_BIT_CASTS = {
    "floatBitsToInt",
    "floatBitsToUint",
    "intBitsToFloat",
    "uintBitsToFloat",
}

_TEXTURE_FUNCTIONS = {
    "texture",
    "textureLod",
    "textureGrad",
    "textureOffset",
    "textureLodOffset",
    "textureGradOffset",
    "textureProj",
    "textureGather",
    "texelFetch",
    "texture2D",
}

# Unknown functions whose channels depend on every argument channel.
_VECTOR_UNKNOWN = {"normalize", "reflect", "refract", "cross", "faceforward"}
_REDUCING_UNKNOWN = {"length", "distance", "determinant", "any", "all"}

_BINARY_OPS = {
    "+": Op.ADD,
    "-": Op.SUB,
    "*": Op.MUL,
    "/": Op.DIV,
    "<": Op.LESS,
    ">": Op.GREATER,
    "<=": Op.LESS_EQUAL,
    ">=": Op.GREATER_EQUAL,
    "==": Op.EQUAL,
    "!=": Op.NOT_EQUAL,
}

_ASSIGN_OPS = {"=": None, "+=": "+", "-=": "-", "*=": "*", "/=": "/"}

_OUTPUT_LAYOUT = re.compile(
    r"layout\s*\(([^)]*)\)\s*(?:\w+\s+)*?out\s+\w+\s+(\w+)\s*;", re.MULTILINE
)
_LOCATION = re.compile(r"location\s*=\s*(\d+)")


@dataclass(frozen=True)
class _BufferPath:
    name: str
    field: str
    index: Optional[int]
    dynamic: Tuple[NodeRef, ...] = ()


class _Lowering:
    """Lower parsed statements into graph nodes for one shader."""

    def __init__(
        self,
        graph: InstructionGraph,
        opcodes: OpcodeTable,
        output_locations: Dict[str, int],
    ) -> None:
        self.graph = graph
        self.opcodes = opcodes
        self.output_locations = output_locations
        self.widths: Dict[str, int] = {}
        self.declared: Set[str] = set()
        self.variables: Set[str] = set()
        self.source: Optional[str] = None

    # -- graph helpers -------------------------------------------------
    def leaf(self, leaf) -> NodeRef:
        return self.graph.add_leaf(leaf, source=self.source)

    def func(self, op: Op, args: Sequence[NodeRef]) -> NodeRef:
        return self.graph.add_func(op, args, source=self.source)

    # -- destinations --------------------------------------------------
    def destination(self, name: str, channel: Optional[str]) -> Tuple[str, bool]:
        index = self.output_locations.get(name)
        if index is None:
            index = output_index(name)
        if index is not None:
            return output_id(index, channel or "x"), True
        if channel is None:
            return name, False
        return f"{name}.{channel}", False

    def write(self, name: str, channel: Optional[str], ref: NodeRef) -> None:
        destination, is_output = self.destination(name, channel)
        self.graph.record_write(destination, ref)
        if is_output:
            self.graph.mark_output(destination)
        self.variables.add(name)

    def assign(
        self, name: str, channels: Optional[Sequence[str]], values: List[NodeRef]
    ) -> None:
        if not values:
            raise _StatementError(f"assignment to {name} has no value")
        if channels is None:
            is_output = self.destination(name, None)[1]
            if is_output or name in self.declared:
                width = self.widths.get(name, len(values))
            else:
                # Undeclared locals take the width of their latest value.
                width = self.widths[name] = min(len(values), len(CHANNELS))
            if width == 1 and not is_output:
                self.write(name, None, values[0])
                return
            channels = CHANNELS[:width]
        for position, channel in enumerate(channels):
            self.write(name, channel, _broadcast(values, position))

    # -- reads ---------------------------------------------------------
    def read_channel(self, name: str, channel: str) -> NodeRef:
        if channel == "x" and self.widths.get(name) == 1:
            scalar = self.graph.last_write(name)
            if scalar is not None:
                return scalar
        destination, _ = self.destination(name, channel)
        ref = self.graph.last_write(destination)
        if ref is None and channel == "x":
            ref = self.graph.last_write(name)
        if ref is None:
            ref = self.leaf(Attribute(name, channel))
        return ref

    def read_variable(self, name: str) -> Optional[List[NodeRef]]:
        width = self.widths.get(name)
        scalar = self.graph.last_write(name)
        if width == 1:
            return [scalar] if scalar is not None else None

        refs: List[NodeRef] = []
        for channel in CHANNELS[: width or 4]:
            destination, _ = self.destination(name, channel)
            ref = self.graph.last_write(destination)
            if ref is None:
                if width is None:
                    break
                ref = self.leaf(Attribute(name, channel))
            refs.append(ref)
        if width is None and not refs and scalar is not None:
            return [scalar]
        return refs or None

    # -- statements ----------------------------------------------------
    def statement(self, tokens: Sequence[Token]) -> None:
        tokens = _strip_qualifiers(tokens)
        if not tokens:
            return
        head = tokens[0].text
        if head in _GLOBAL_DECLARATIONS:
            return
        if head in _TYPE_WIDTH and len(tokens) > 1 and tokens[1].kind == "ident":
            self.declaration(_TYPE_WIDTH[head], tokens[1:])
            return

        position = _find_assignment(tokens)
        if position is None:
            # Calls evaluated for side effects do not feed any destination.
            return
        operator = tokens[position].text
        target = _ExpressionParser(tokens[:position]).parse_all()
        value = _ExpressionParser(tokens[position + 1 :]).parse_all()
        binary = _ASSIGN_OPS[operator]
        if binary is not None:
            value = _Binary(binary, target, value)
        name, channels = self.lvalue(target)
        self.assign(name, channels, self.lower(value))

    def declaration(self, width: int, tokens: Sequence[Token]) -> None:
        for declarator in _split_commas(tokens):
            if not declarator or declarator[0].kind != "ident":
                raise _StatementError("invalid declaration")
            name = declarator[0].text
            rest = declarator[1:]
            if rest and rest[0].text == "[":
                # Local arrays are addressed element by element.
                self.variables.add(name)
                continue
            self.widths[name] = width
            self.declared.add(name)
            self.variables.add(name)
            if not rest:
                continue
            if rest[0].text != "=":
                raise _StatementError(f"unexpected token {rest[0].text!r} in declaration")
            value = _ExpressionParser(rest[1:]).parse_all()
            self.assign(name, None, self.lower(value))

    def lvalue(self, target: _Ast) -> Tuple[str, Optional[List[str]]]:
        channels: Optional[List[str]] = None
        if isinstance(target, _Member):
            if not is_swizzle(target.name):
                raise _StatementError(f"cannot assign to field {target.name}")
            channels = [normalize_channel(char) for char in target.name]
            target = target.base
        name = self.variable_name(target, assigning=True)
        if name is None:
            raise _StatementError("unsupported assignment target")
        return name, channels

    def variable_name(self, node: _Ast, *, assigning: bool = False) -> Optional[str]:
        if isinstance(node, _Name):
            if assigning or node.name in self.variables:
                return node.name
            return None
        if (
            isinstance(node, _Index)
            and isinstance(node.base, _Name)
            and isinstance(node.index, _Number)
        ):
            name = f"{node.base.name}[{_index_literal(node.index)}]"
            if assigning or name in self.variables:
                return name
        return None

    # -- expressions ---------------------------------------------------
    def lower(self, node: _Ast) -> List[NodeRef]:
        if isinstance(node, _Number):
            return [self.leaf(Constant(node.value))]
        if isinstance(node, _Name):
            values = self.read_variable(node.name)
            if values is None:
                return [self.leaf(Attribute(node.name))]
            return values
        if isinstance(node, _Member):
            return self.lower_member(node)
        if isinstance(node, _Index):
            variable = self.variable_name(node)
            if variable is not None:
                values = self.read_variable(variable)
                if values is not None:
                    return values
            path = self.buffer_path(node)
            if path is None:
                raise _StatementError("unsupported index expression")
            return [self.buffer_leaf(path, None)]
        if isinstance(node, _Call):
            return self.lower_call(node)
        if isinstance(node, _Unary):
            if node.op == "+":
                return self.lower(node.operand)
            if node.op == "-":
                if isinstance(node.operand, _Number):
                    return [self.leaf(Constant(-node.operand.value))]
                return self.elementwise(Op.NEGATE, [self.lower(node.operand)])
            return self.elementwise(Op.UNK, [self.lower(node.operand)])
        if isinstance(node, _Binary):
            op = _BINARY_OPS.get(node.op, Op.UNK)
            return self.elementwise(op, [self.lower(node.left), self.lower(node.right)])
        if isinstance(node, _Ternary):
            return self.elementwise(
                Op.SELECT,
                [self.lower(node.condition), self.lower(node.if_true), self.lower(node.if_false)],
            )
        raise _StatementError(f"unsupported expression {node!r}")

    def lower_member(self, node: _Member) -> List[NodeRef]:
        if not is_swizzle(node.name):
            path = self.buffer_path(node)
            if path is None:
                raise _StatementError(f"unsupported field access .{node.name}")
            return [self.buffer_leaf(path, None)]

        channels = [normalize_channel(char) for char in node.name]
        variable = self.variable_name(node.base)
        if variable is not None:
            return [self.read_channel(variable, channel) for channel in channels]
        if isinstance(node.base, _Name):
            return [self.read_channel(node.base.name, channel) for channel in channels]
        path = self.buffer_path(node.base)
        if path is not None:
            return [self.buffer_leaf(path, channel) for channel in channels]
        values = self.lower(node.base)
        return [_pick(values, channel) for channel in channels]

    def buffer_path(self, node: _Ast) -> Optional[_BufferPath]:
        if isinstance(node, _Member) and isinstance(node.base, _Name):
            return _BufferPath(node.base.name, node.name, None)
        if isinstance(node, _Index):
            base = node.base
            if isinstance(base, _Name):
                name, field = base.name, ""
            elif isinstance(base, _Member) and isinstance(base.base, _Name):
                name, field = base.base.name, base.name
            else:
                return None
            if isinstance(node.index, _Number):
                return _BufferPath(name, field, _index_literal(node.index))
            return _BufferPath(name, field, None, tuple(self.lower(node.index)))
        return None

    def buffer_leaf(self, path: _BufferPath, channel: Optional[str]) -> NodeRef:
        ref = self.leaf(Buffer(path.name, path.field, path.index, channel))
        if path.dynamic:
            # Dynamically indexed buffers keep the index inputs as arguments.
            return self.func(Op.UNK, (ref,) + path.dynamic)
        return ref

    def lower_call(self, node: _Call) -> List[NodeRef]:
        name = node.name
        if name in _CONSTRUCTORS:
            width = _CONSTRUCTORS[name]
            values: List[NodeRef] = []
            for arg in node.args:
                values.extend(self.lower(arg))
            if not values:
                raise _StatementError(f"empty constructor {name}")
            if len(values) == 1 and width > 1:
                values = values * width
            return values[:width]
        if name in _BIT_CASTS:
            if len(node.args) != 1:
                raise _StatementError(f"{name} expects one argument")
            return self.lower(node.args[0])
        if name in _TEXTURE_FUNCTIONS:
            return self.lower_texture(node)

        args = [self.lower(arg) for arg in node.args]
        op = self.opcodes.glsl_function(name)
        if op is Op.DOT:
            if len(args) != 2:
                raise _StatementError("dot expects two arguments")
            width = max(len(args[0]), len(args[1]))
            flat = [_broadcast(args[0], i) for i in range(width)]
            flat += [_broadcast(args[1], i) for i in range(width)]
            return [self.func(Op.DOT, flat)]
        if op is not None:
            return self.elementwise(op, args)

        flattened = [ref for values in args for ref in values]
        if name in _VECTOR_UNKNOWN:
            width = len(args[0]) if args else 1
            return [self.func(Op.UNK, flattened) for _ in range(width)]
        if name in _REDUCING_UNKNOWN:
            return [self.func(Op.UNK, flattened)]
        logger.debug("unknown function %s lowered as unk", name)
        return self.elementwise(Op.UNK, args)

    def lower_texture(self, node: _Call) -> List[NodeRef]:
        if not node.args:
            raise _StatementError(f"{node.name} without a sampler")
        sampler = node.args[0]
        if isinstance(sampler, _Name):
            name = sampler.name
        elif (
            isinstance(sampler, _Index)
            and isinstance(sampler.base, _Name)
            and isinstance(sampler.index, _Number)
        ):
            name = f"{sampler.base.name}[{_index_literal(sampler.index)}]"
        else:
            raise _StatementError("unsupported sampler expression")

        coordinates = self.lower(node.args[1]) if len(node.args) > 1 else []
        texcoords = tuple(resolve_texcoord(self.graph, ref) for ref in coordinates)
        return [self.leaf(Texture(name, channel, texcoords)) for channel in CHANNELS]

    def elementwise(self, op: Op, args: List[List[NodeRef]]) -> List[NodeRef]:
        width = max((len(values) for values in args), default=1)
        return [
            self.func(op, [_broadcast(values, position) for values in args])
            for position in range(width)
        ]

    # -- recovery ------------------------------------------------------
    def fallback(self, tokens: Sequence[Token]) -> None:
        """Write an ``UNK`` node over every value mentioned by ``tokens``."""

        tokens = _strip_qualifiers(tokens)
        position = _find_assignment(tokens)
        declared_width = None
        if position is None:
            return
        if tokens[0].text in _TYPE_WIDTH:
            declared_width = _TYPE_WIDTH[tokens[0].text]
            tokens = tokens[1:]
            position -= 1

        refs: List[NodeRef] = []
        rhs = tokens[position + 1 :]
        for offset, token in enumerate(rhs):
            if token.kind != "ident" or token.text in _TYPE_WIDTH:
                continue
            following = rhs[offset + 1].text if offset + 1 < len(rhs) else None
            previous = rhs[offset - 1].text if offset > 0 else None
            if following == "(" or previous == ".":
                continue
            values = self.read_variable(token.text)
            if values is None:
                values = [self.leaf(Attribute(token.text))]
            for ref in values:
                if ref not in refs:
                    refs.append(ref)
        unknown = self.func(Op.UNK, refs)

        try:
            target = _ExpressionParser(tokens[:position]).parse_all()
            name, channels = self.lvalue(target)
        except _StatementError as error:
            logger.warning("dropping statement with unsupported target: %s", error)
            return
        if declared_width is not None:
            self.widths[name] = declared_width
            self.declared.add(name)
        self.assign(name, channels, [unknown])


def _broadcast(values: Sequence[NodeRef], position: int) -> NodeRef:
    if position < len(values):
        return values[position]
    return values[-1]


def _pick(values: Sequence[NodeRef], channel: str) -> NodeRef:
    position = CHANNELS.index(channel)
    if position < len(values):
        return values[position]
    if len(values) == 1:
        return values[0]
    raise _StatementError(f"swizzle .{channel} out of range")


def _strip_qualifiers(tokens: Sequence[Token]) -> Sequence[Token]:
    start = 0
    while start < len(tokens) and tokens[start].text in _QUALIFIERS:
        start += 1
    return tokens[start:]


def _find_assignment(tokens: Sequence[Token]) -> Optional[int]:
    depth = 0
    for position, token in enumerate(tokens):
        if token.text in {"(", "["}:
            depth += 1
        elif token.text in {")", "]"}:
            depth -= 1
        elif depth == 0 and token.text in _ASSIGN_OPS:
            return position
    return None


def _split_commas(tokens: Sequence[Token]) -> List[Sequence[Token]]:
    parts: List[Sequence[Token]] = []
    depth = 0
    start = 0
    for position, token in enumerate(tokens):
        if token.text in {"(", "["}:
            depth += 1
        elif token.text in {")", "]"}:
            depth -= 1
        elif token.text == "," and depth == 0:
            parts.append(tokens[start:position])
            start = position + 1
    parts.append(tokens[start:])
    return parts


# ----------------------------------------------------------------------
# statement structure
# ----------------------------------------------------------------------
class _StatementWalker:
    """Walk the statement structure of a token stream."""

    def __init__(self, tokens: Sequence[Token], lowering: _Lowering, path: PathLike) -> None:
        self.tokens = tokens
        self.lowering = lowering
        self.path = path
        self.position = 0

    def run(self) -> None:
        while self.position < len(self.tokens):
            self.statement()

    def error(self, message: str) -> ShaderParseError:
        if self.position < len(self.tokens):
            line = self.tokens[self.position].line
        else:
            line = self.tokens[-1].line if self.tokens else None
        return ShaderParseError(message, path=self.path, line=line)

    def peek(self) -> Optional[str]:
        if self.position < len(self.tokens):
            return self.tokens[self.position].text
        return None

    def statement(self) -> None:
        head = self.peek()
        if head is None:
            raise self.error("unexpected end of input")
        if head == "{":
            self.position += 1
            while self.peek() != "}":
                if self.peek() is None:
                    raise self.error("missing '}'")
                self.statement()
            self.position += 1
        elif head == "if":
            self.position += 1
            self.skip_parentheses()
            self.statement()
            if self.peek() == "else":
                self.position += 1
                self.statement()
        elif head in {"for", "while", "switch"}:
            self.position += 1
            self.skip_parentheses()
            self.statement()
        elif head == "do":
            self.position += 1
            self.statement()
            if self.peek() != "while":
                raise self.error("expected 'while' after do block")
            self.position += 1
            self.skip_parentheses()
            self.skip_statement()
        elif head in {"case", "default"}:
            while self.peek() not in {":", None}:
                self.position += 1
            if self.peek() is None:
                raise self.error("missing ':' after case label")
            self.position += 1
        elif head == "discard":
            self.lowering.graph.discard = True
            self.skip_statement()
        elif head in {"return", "break", "continue", ";"}:
            self.skip_statement()
        elif head in _GLOBAL_DECLARATIONS:
            self.skip_declaration()
        else:
            self.simple_statement()

    def skip_parentheses(self) -> None:
        if self.peek() != "(":
            raise self.error("expected '('")
        depth = 0
        while self.position < len(self.tokens):
            text = self.tokens[self.position].text
            self.position += 1
            if text == "(":
                depth += 1
            elif text == ")":
                depth -= 1
                if depth == 0:
                    return
        raise self.error("missing ')'")

    def statement_end(self) -> int:
        depth = 0
        position = self.position
        while position < len(self.tokens):
            text = self.tokens[position].text
            if text in {"(", "["}:
                depth += 1
            elif text in {")", "]"}:
                depth -= 1
            elif text in {"{", "}"} and depth == 0:
                break
            elif text == ";" and depth == 0:
                return position
            position += 1
        raise self.error("missing ';'")

    def skip_statement(self) -> None:
        self.position = self.statement_end() + 1

    def skip_declaration(self) -> None:
        # Interface blocks carry a braced member list before the ';'.
        depth = 0
        while self.position < len(self.tokens):
            text = self.tokens[self.position].text
            self.position += 1
            if text == "{":
                depth += 1
            elif text == "}":
                depth -= 1
            elif text == ";" and depth == 0:
                return
        raise self.error("missing ';'")

    def simple_statement(self) -> None:
        end = self.statement_end()
        tokens = self.tokens[self.position : end]
        self.position = end + 1
        line = tokens[0].line
        self.lowering.source = f"line {line}: {' '.join(token.text for token in tokens)};"
        try:
            self.lowering.statement(tokens)
        except _StatementError as error:
            logger.warning(
                "%s:%d: %s; lowering statement as unk", self.path or "<shader>", line, error
            )
            self.lowering.fallback(tokens)
        finally:
            self.lowering.source = None


# ----------------------------------------------------------------------
# public entry point
# ----------------------------------------------------------------------
def find_output_locations(source: str) -> Dict[str, int]:
    """Map ``layout(location = N) out`` variable names to their location."""

    locations: Dict[str, int] = {}
    for match in _OUTPUT_LAYOUT.finditer(source):
        location = _LOCATION.search(match.group(1))
        if location is not None:
            locations[match.group(2)] = int(location.group(1))
    return locations


def _main_body(tokens: List[Token], path: PathLike) -> List[Token]:
    depth = 0
    for token in tokens:
        if token.text in {"{", "("}:
            depth += 1
        elif token.text in {"}", ")"}:
            depth -= 1
        if depth < 0:
            raise ShaderParseError(f"unbalanced {token.text!r}", path=path, line=token.line)
    if depth != 0:
        line = tokens[-1].line if tokens else None
        raise ShaderParseError("unbalanced braces or parentheses", path=path, line=line)

    for position, token in enumerate(tokens):
        if (
            token.text == "main"
            and position + 2 < len(tokens)
            and tokens[position + 1].text == "("
        ):
            start = position + 2
            while start < len(tokens) and tokens[start].text != "{":
                start += 1
            if start >= len(tokens):
                raise ShaderParseError("main() has no body", path=path, line=token.line)
            depth = 0
            for end in range(start, len(tokens)):
                if tokens[end].text == "{":
                    depth += 1
                elif tokens[end].text == "}":
                    depth -= 1
                    if depth == 0:
                        return tokens[start + 1 : end]
    return tokens


class GlslFrontend:
    """Build an :class:`InstructionGraph` from pseudo-C shader source."""

    def __init__(self, opcodes: Optional[OpcodeTable] = None) -> None:
        self.opcodes = opcodes or OpcodeTable()

    def parse(self, source: str, *, path: PathLike = None) -> InstructionGraph:
        tokens = tokenize(source, path=path)
        body = _main_body(tokens, path)
        graph = InstructionGraph()
        lowering = _Lowering(graph, self.opcodes, find_output_locations(source))
        _StatementWalker(body, lowering, path).run()
        return graph

    def parse_file(self, path: Path) -> InstructionGraph:
        return self.parse(path.read_text("utf-8"), path=path)


__all__ = ["GlslFrontend", "Token", "find_output_locations", "parse_number", "tokenize"]
