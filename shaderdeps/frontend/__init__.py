"""Shader text frontends producing :class:`~shaderdeps.graph.InstructionGraph`."""

from .common import ShaderParseError
from .glsl import GlslFrontend
from .latte import LatteFrontend

__all__ = ["GlslFrontend", "LatteFrontend", "ShaderParseError"]
