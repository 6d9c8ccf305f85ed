"""Analyse a directory of shader files into one :class:`ShaderDatabase`.

Shader files are discovered by name: ``<dir>/<name>.<index>.frag`` holds
pseudo-C source and ``<dir>/<name>.<index>.frag.txt`` an assembly listing.
A sibling ``.vert`` (or ``.vert.txt``) file with the same stem is analysed
for the outline width.  Each file is independent, so jobs run in a process
pool and only the results are folded, in job order, into the database.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .config import AnalysisConfig
from .database import MergePolicy, ProgramKey, ShaderDatabase
from .frontend import ShaderParseError
from .program import ShaderAnalyzer, ShaderKind, ShaderProgram

logger = logging.getLogger(__name__)

_SUFFIXES = (
    (".frag.txt", ShaderKind.LATTE, ".vert.txt"),
    (".frag", ShaderKind.GLSL, ".vert"),
)


@dataclass(frozen=True)
class ShaderJob:
    key: ProgramKey
    path: Path
    kind: ShaderKind
    vertex_path: Optional[Path] = None


@dataclass(frozen=True)
class BatchFailure:
    path: Path
    message: str


@dataclass
class BatchResult:
    database: ShaderDatabase
    failures: List[BatchFailure] = field(default_factory=list)


def job_for_path(root: Path, path: Path) -> Optional[ShaderJob]:
    """Return the job for ``path`` or ``None`` if it is not a fragment shader."""

    for suffix, kind, vertex_suffix in _SUFFIXES:
        if not path.name.endswith(suffix):
            continue
        stem = path.name[: -len(suffix)]
        name, _, index = stem.rpartition(".")
        if not name or not index.isdigit():
            logger.debug("skipping %s without a program index", path)
            return None
        source = (path.parent.relative_to(root) / name).as_posix()
        vertex = path.with_name(stem + vertex_suffix)
        return ShaderJob(
            ProgramKey(source, int(index)),
            path,
            kind,
            vertex if vertex.exists() else None,
        )
    return None


def find_jobs(root: Path) -> List[ShaderJob]:
    jobs = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        job = job_for_path(root, path)
        if job is not None:
            jobs.append(job)
    jobs.sort(key=lambda job: (job.key, job.kind.value))
    return jobs


def analyze_job(
    job: ShaderJob, analyzer: Optional[ShaderAnalyzer] = None
) -> Tuple[ProgramKey, ShaderProgram]:
    analyzer = analyzer or ShaderAnalyzer()
    text = job.path.read_text("utf-8")
    vertex_text = None
    if job.vertex_path is not None:
        vertex_text = job.vertex_path.read_text("utf-8")
    program = analyzer.analyze(
        text,
        job.kind,
        vertex_text=vertex_text,
        path=job.path,
        vertex_path=job.vertex_path,
    )
    return job.key, program


_Outcome = Union[Tuple[ProgramKey, ShaderProgram], BatchFailure]

_worker_analyzer: Optional[ShaderAnalyzer] = None


def _init_worker(config: AnalysisConfig) -> None:
    global _worker_analyzer
    _worker_analyzer = ShaderAnalyzer(config)


def _run_job(job: ShaderJob, analyzer: Optional[ShaderAnalyzer] = None) -> _Outcome:
    try:
        return analyze_job(job, analyzer or _worker_analyzer)
    except (ShaderParseError, OSError, UnicodeDecodeError) as error:
        return BatchFailure(job.path, str(error))
    except Exception as error:
        # One broken shader must not abort the rest of the batch.
        logger.exception("unexpected error while analysing %s", job.path)
        return BatchFailure(job.path, f"{type(error).__name__}: {error}")


def run_batch(
    jobs: Sequence[ShaderJob],
    *,
    workers: int = 1,
    config: Optional[AnalysisConfig] = None,
    policy: Optional[MergePolicy] = None,
) -> BatchResult:
    """Analyse ``jobs`` and fold the programs into a database.

    Parse and I/O errors are collected as :class:`BatchFailure` entries and
    do not stop the batch.
    """

    config = config or AnalysisConfig()
    if policy is None:
        policy = MergePolicy.from_name(config.merge_policy)

    if workers > 1 and len(jobs) > 1:
        with ProcessPoolExecutor(
            max_workers=workers, initializer=_init_worker, initargs=(config,)
        ) as executor:
            outcomes = list(executor.map(_run_job, jobs))
    else:
        analyzer = ShaderAnalyzer(config)
        outcomes = [_run_job(job, analyzer) for job in jobs]

    result = BatchResult(ShaderDatabase())
    for outcome in outcomes:
        if isinstance(outcome, BatchFailure):
            logger.warning("failed to analyse %s: %s", outcome.path, outcome.message)
            result.failures.append(outcome)
            continue
        key, program = outcome
        result.database.add(key, program, policy)
    return result


__all__ = [
    "BatchFailure",
    "BatchResult",
    "ShaderJob",
    "analyze_job",
    "find_jobs",
    "job_for_path",
    "run_batch",
]
