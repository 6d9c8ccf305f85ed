"""Turn canonical output expressions into ordered blend layers.

Layering runs in two steps.  Idioms that compilers expand into arithmetic
(``pow`` via ``exp2``/``log2``, ``mix`` and overlay via ``fma`` chains) are
first collapsed back into single operations bottom-up.  Layer templates are
then peeled from the root: ``mix(a, b, t)`` yields a layer for ``b`` weighted
by ``t`` and continues with ``a`` as the accumulator.  The innermost
accumulator becomes the first layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .canonical import Canonicalizer
from .expr import Expr, Func, Value, constant, is_constant
from .opcodes import OpcodeTable
from .templates import (
    ADD_LAYER,
    ADD_NORMAL_LAYER,
    DEFAULT_FRESNEL,
    DEFAULT_IDIOMS,
    MAX_LAYER,
    MIN_LAYER,
    MIX_LAYER,
    MIX_RATIO_LAYER,
    MONOCHROME_LAYER,
    MONOCHROME_LUMA_LAYER,
    OVERLAY_LAYER,
    OVERLAY_RATIO_LAYER,
    POWER_LAYER,
    Template,
    TemplateCompiler,
)

logger = logging.getLogger(__name__)


class BlendMode(Enum):
    MIX = "mix"
    MIX_RATIO = "mix_ratio"
    ADD = "add"
    ADD_NORMAL = "add_normal"
    OVERLAY = "overlay"
    POWER = "power"
    MIN = "min"
    MAX = "max"
    MONOCHROME = "monochrome"


@dataclass(frozen=True)
class Layer:
    """One value blended into the accumulator of the previous layers."""

    value: Expr
    ratio: Expr
    blend_mode: BlendMode = BlendMode.MIX
    is_fresnel: bool = False


DEFAULT_LAYER_TEMPLATES: Tuple[Tuple[BlendMode, Template], ...] = (
    (BlendMode.OVERLAY, OVERLAY_RATIO_LAYER),
    (BlendMode.OVERLAY, OVERLAY_LAYER),
    (BlendMode.ADD_NORMAL, ADD_NORMAL_LAYER),
    (BlendMode.MONOCHROME, MONOCHROME_LAYER),
    (BlendMode.MONOCHROME, MONOCHROME_LUMA_LAYER),
    (BlendMode.MIX_RATIO, MIX_RATIO_LAYER),
    (BlendMode.MIX, MIX_LAYER),
    (BlendMode.ADD, ADD_LAYER),
    (BlendMode.POWER, POWER_LAYER),
    (BlendMode.MIN, MIN_LAYER),
    (BlendMode.MAX, MAX_LAYER),
)


class LayeringEngine:
    """Recognise idioms and split expressions into :class:`Layer` lists."""

    def __init__(
        self,
        canonicalizer: Optional[Canonicalizer] = None,
        opcodes: Optional[OpcodeTable] = None,
        *,
        idioms: Sequence[Template] = DEFAULT_IDIOMS,
        layer_templates: Sequence[Tuple[BlendMode, Template]] = DEFAULT_LAYER_TEMPLATES,
        fresnel: Sequence[Template] = DEFAULT_FRESNEL,
    ) -> None:
        self.canonicalizer = canonicalizer or Canonicalizer()
        compiler = TemplateCompiler(self.canonicalizer, opcodes)
        self.idioms = compiler.compile_all(idioms)
        self.layer_templates = tuple(
            (mode, compiler.compile(template)) for mode, template in layer_templates
        )
        self.fresnel = compiler.compile_all(fresnel)

    def layers(self, expr: Expr) -> List[Layer]:
        """Return the layers of a canonical expression.

        A canonical constant zero has no layers.  Structure that no template
        recognises stays as the value of a single ``MIX`` layer with ratio 1.
        """

        if is_constant(expr, 0.0):
            return []
        current = self.collapse(expr)

        peeled: List[Layer] = []
        while True:
            step = self._peel(current)
            if step is None:
                break
            current, layer = step
            peeled.append(layer)
        base = Layer(current, constant(1.0), BlendMode.MIX, False)
        return [base] + peeled[::-1]

    def collapse(self, expr: Expr) -> Expr:
        """Replace recognised idiom subtrees bottom-up and re-canonicalise."""

        results: Dict[int, Expr] = {}
        stack: List[Expr] = [expr]
        while stack:
            node = stack[-1]
            if id(node) in results:
                stack.pop()
                continue
            if isinstance(node, Value):
                results[id(node)] = node
                stack.pop()
                continue
            pending = [arg for arg in node.args if id(arg) not in results]
            if pending:
                stack.extend(pending)
                continue
            args = tuple(results[id(arg)] for arg in node.args)
            rebuilt: Expr = node
            if any(new is not old for new, old in zip(args, node.args)):
                rebuilt = Func(node.op, args)
            results[id(node)] = self._collapse_node(rebuilt)
            stack.pop()
        return self.canonicalizer.canonicalize(results[id(expr)])

    def _collapse_node(self, node: Expr) -> Expr:
        # Replacements are always smaller than the idiom they replace.
        changed = True
        while changed and isinstance(node, Func):
            changed = False
            for idiom in self.idioms:
                bindings = idiom.match(node)
                if bindings is None:
                    continue
                logger.debug("collapsed %s idiom", idiom.name)
                node = self.canonicalizer.canonicalize(idiom.rewrite(bindings))
                changed = True
                break
        return node

    def _peel(self, expr: Expr) -> Optional[Tuple[Expr, Layer]]:
        for mode, template in self.layer_templates:
            bindings = template.match(expr)
            if bindings is None:
                continue
            ratio = bindings.get("ratio", constant(1.0))
            ratio, is_fresnel = self.fresnel_ratio(ratio)
            # A replacement spells out the blended value when it has no hole.
            if template.replacement is not None:
                value = self.canonicalizer.canonicalize(template.rewrite(bindings))
            else:
                value = bindings["b"]
            return bindings["a"], Layer(value, ratio, mode, is_fresnel)
        return None

    def fresnel_ratio(self, ratio: Expr) -> Tuple[Expr, bool]:
        """Strip a view dependent fresnel term from ``ratio`` if present."""

        for template in self.fresnel:
            bindings = template.match(ratio)
            if bindings is not None:
                return bindings["ratio"], True
        return ratio, False


__all__ = ["BlendMode", "DEFAULT_LAYER_TEMPLATES", "Layer", "LayeringEngine"]
