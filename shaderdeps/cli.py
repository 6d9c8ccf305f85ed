"""Command-line entry points for building and inspecting shader databases."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .batch import find_jobs, run_batch
from .config import AnalysisConfig
from .database import MergePolicy, ShaderDatabase, merge_all
from .frontend import ShaderParseError
from .printer import format_chain, format_expr, format_layers, format_program
from .program import ShaderAnalyzer, ShaderKind


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shader_deps",
        description="Recover per-output dependencies from decompiled shader text.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON file overriding analysis settings and opcode tables",
    )
    parser.add_argument(
        "--merge-policy",
        choices=[policy.value for policy in MergePolicy],
        default=None,
        help="How to resolve conflicting programs for the same key",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    database = subparsers.add_parser(
        "shader-database", help="Analyse every shader below a folder"
    )
    database.add_argument("input_folder", type=Path)
    database.add_argument("output_file", type=Path)
    database.add_argument(
        "--jobs", type=int, default=1, help="Number of worker processes"
    )

    merge = subparsers.add_parser(
        "merge-databases", help="Merge shader databases into one file"
    )
    merge.add_argument("output_file", type=Path)
    merge.add_argument("inputs", type=Path, nargs="+")

    expr = subparsers.add_parser(
        "expr", help="Print the canonical expression and layers of one output"
    )
    expr.add_argument("input", type=Path)
    expr.add_argument("output_id")

    program = subparsers.add_parser(
        "program", help="Print the layers of every output of one shader"
    )
    program.add_argument("input", type=Path)
    program.add_argument(
        "--vertex", type=Path, default=None, help="Vertex shader for the outline width"
    )

    dependencies = subparsers.add_parser(
        "dependencies", help="Print the raw instruction chain of one output"
    )
    dependencies.add_argument("input", type=Path)
    dependencies.add_argument("output_id")
    return parser


def load_config(args: argparse.Namespace) -> AnalysisConfig:
    config = AnalysisConfig()
    if args.config is not None:
        if not args.config.exists():
            raise SystemExit(f"missing config file: {args.config}")
        config = AnalysisConfig.load(args.config)
    if args.merge_policy is not None:
        config.merge_policy = args.merge_policy
    return config


def _shader_database(args: argparse.Namespace, config: AnalysisConfig) -> int:
    if not args.input_folder.is_dir():
        raise SystemExit(f"missing input folder: {args.input_folder}")
    start_time = time.perf_counter()
    jobs = find_jobs(args.input_folder)
    result = run_batch(jobs, workers=max(1, args.jobs), config=config)
    result.database.save(args.output_file)

    for failure in result.failures:
        print(f"failed: {failure.path}: {failure.message}", file=sys.stderr)
    elapsed = time.perf_counter() - start_time
    print(
        f"analysed {len(jobs)} shaders into {len(result.database)} programs"
        f" ({len(result.failures)} failed) in {elapsed:.2f}s"
    )
    print(f"database written to {args.output_file}")
    return 0


def _merge_databases(args: argparse.Namespace, config: AnalysisConfig) -> int:
    for path in args.inputs:
        if not path.exists():
            raise SystemExit(f"missing input file: {path}")
    policy = MergePolicy.from_name(config.merge_policy)
    merged = merge_all((ShaderDatabase.load(path) for path in args.inputs), policy)
    merged.save(args.output_file)
    for conflict in merged.conflicts:
        print(f"conflict: {conflict.key.describe()}", file=sys.stderr)
    print(f"merged {len(args.inputs)} databases into {len(merged)} programs")
    print(f"database written to {args.output_file}")
    return 0


def _parse_input(analyzer: ShaderAnalyzer, path: Path):
    if not path.exists():
        raise SystemExit(f"missing input file: {path}")
    return analyzer.parse(path.read_text("utf-8"), ShaderKind.from_path(path), path=path)


def _expr(args: argparse.Namespace, config: AnalysisConfig) -> int:
    analyzer = ShaderAnalyzer(config)
    graph = _parse_input(analyzer, args.input)
    expr = analyzer.output_expr(graph, args.output_id)
    if expr is None:
        print(f"output {args.output_id} is never written", file=sys.stderr)
        return 1
    print(f"{args.output_id}:")
    for line in format_expr(expr):
        print(f"  {line}")
    print("layers:")
    for line in format_layers(analyzer.engine.layers(expr)):
        print(f"  {line}")
    return 0


def _program(args: argparse.Namespace, config: AnalysisConfig) -> int:
    analyzer = ShaderAnalyzer(config)
    if not args.input.exists():
        raise SystemExit(f"missing input file: {args.input}")
    vertex_text = None
    if args.vertex is not None:
        if not args.vertex.exists():
            raise SystemExit(f"missing input file: {args.vertex}")
        vertex_text = args.vertex.read_text("utf-8")
    program = analyzer.analyze(
        args.input.read_text("utf-8"),
        ShaderKind.from_path(args.input),
        vertex_text=vertex_text,
        path=args.input,
        vertex_path=args.vertex,
    )
    for line in format_program(program):
        print(line)
    return 0


def _dependencies(args: argparse.Namespace, config: AnalysisConfig) -> int:
    analyzer = ShaderAnalyzer(config)
    graph = _parse_input(analyzer, args.input)
    ref = graph.last_write(args.output_id)
    if ref is None:
        print(f"output {args.output_id} is never written", file=sys.stderr)
        return 1
    for line in format_chain(graph, ref):
        print(line)
    return 0


_COMMANDS = {
    "shader-database": _shader_database,
    "merge-databases": _merge_databases,
    "expr": _expr,
    "program": _program,
    "dependencies": _dependencies,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args)
        return _COMMANDS[args.command](args, config)
    except ShaderParseError as error:
        print(f"parse error: {error}", file=sys.stderr)
        return 1
    except ValueError as error:
        parser.error(str(error))
    return 2


__all__ = ["build_parser", "main"]
