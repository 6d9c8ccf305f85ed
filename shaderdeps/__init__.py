"""Public package exports for the shader output dependency analyser."""

from .batch import BatchResult, find_jobs, run_batch
from .canonical import Canonicalizer, canonicalize
from .config import AnalysisConfig
from .database import MergePolicy, ProgramKey, ShaderDatabase, merge_all
from .dependency import Attribute, Buffer, Constant, TexCoord, TexCoordParams, Texture
from .expr import Func, Value
from .frontend import GlslFrontend, LatteFrontend, ShaderParseError
from .graph import InstructionGraph
from .layers import BlendMode, Layer, LayeringEngine
from .opcodes import OpcodeTable
from .ops import Op
from .program import (
    OutputDependencies,
    ShaderAnalyzer,
    ShaderKind,
    ShaderProgram,
    analyze_shader,
)

__all__ = [
    "AnalysisConfig",
    "Attribute",
    "BatchResult",
    "BlendMode",
    "Buffer",
    "Canonicalizer",
    "Constant",
    "Func",
    "GlslFrontend",
    "InstructionGraph",
    "LatteFrontend",
    "Layer",
    "LayeringEngine",
    "MergePolicy",
    "Op",
    "OpcodeTable",
    "OutputDependencies",
    "ProgramKey",
    "ShaderAnalyzer",
    "ShaderDatabase",
    "ShaderKind",
    "ShaderParseError",
    "ShaderProgram",
    "TexCoord",
    "TexCoordParams",
    "Texture",
    "Value",
    "analyze_shader",
    "canonicalize",
    "find_jobs",
    "merge_all",
    "run_batch",
]
