from pathlib import Path

from shaderdeps.batch import find_jobs, job_for_path, run_batch
from shaderdeps.database import ProgramKey
from shaderdeps.dependency import Buffer
from shaderdeps.expr import Value
from shaderdeps.program import ShaderAnalyzer, ShaderKind

FRAGMENT = """
void main() {
    out_attr0.x = texture(s0, vTex0.xy).x * U_Mate.gWrkFl4[0].x;
}
"""

VERTEX = "out_attr0.x = vPos.x + vColor.w * U_Mate.gWrkFl4[3].x;"

LISTING = """
00 ALU: ADDR(32) CNT(1)
      0  x: MOV    R0.x, KC0[2].x
01 EXP_DONE: PIX0, R0.xyzw
END_OF_PROGRAM
"""


def _write_tree(root: Path) -> None:
    model = root / "chr" / "ch01"
    model.mkdir(parents=True)
    (model / "shader.0.frag").write_text(FRAGMENT, "utf-8")
    (model / "shader.0.vert").write_text(VERTEX, "utf-8")
    (model / "shader.1.frag.txt").write_text(LISTING, "utf-8")
    (model / "broken.2.frag").write_text("void main() {\n    o0.x = 1.0;\n", "utf-8")
    (model / "notes.txt").write_text("not a shader", "utf-8")
    (model / "noindex.frag").write_text(FRAGMENT, "utf-8")


def test_job_for_path(tmp_path: Path):
    _write_tree(tmp_path)
    model = tmp_path / "chr" / "ch01"
    job = job_for_path(tmp_path, model / "shader.0.frag")
    assert job is not None
    assert job.key == ProgramKey("chr/ch01/shader", 0)
    assert job.kind is ShaderKind.GLSL
    assert job.vertex_path == model / "shader.0.vert"

    listing = job_for_path(tmp_path, model / "shader.1.frag.txt")
    assert listing is not None
    assert listing.kind is ShaderKind.LATTE
    assert listing.vertex_path is None

    assert job_for_path(tmp_path, model / "notes.txt") is None
    assert job_for_path(tmp_path, model / "noindex.frag") is None
    assert job_for_path(tmp_path, model / "shader.0.vert") is None


def test_find_jobs_is_sorted(tmp_path: Path):
    _write_tree(tmp_path)
    keys = [job.key for job in find_jobs(tmp_path)]
    assert keys == [
        ProgramKey("chr/ch01/broken", 2),
        ProgramKey("chr/ch01/shader", 0),
        ProgramKey("chr/ch01/shader", 1),
    ]


def test_failures_do_not_stop_the_batch(tmp_path: Path):
    _write_tree(tmp_path)
    result = run_batch(find_jobs(tmp_path))

    assert [failure.path.name for failure in result.failures] == ["broken.2.frag"]
    assert "broken.2.frag:2" in result.failures[0].message
    assert list(result.database) == [
        ProgramKey("chr/ch01/shader", 0),
        ProgramKey("chr/ch01/shader", 1),
    ]
    program = result.database.lookup(ProgramKey("chr/ch01/shader", 0))
    assert program.outline_width == Value(Buffer("U_Mate", "gWrkFl4", 3, "x"))
    listing = result.database.lookup(ProgramKey("chr/ch01/shader", 1))
    assert listing.output_dependencies["o0.x"].layers[0].value == Value(
        Buffer("KC0", "", 2, "x")
    )


def test_worker_pool_matches_sequential_run(tmp_path: Path):
    _write_tree(tmp_path)
    jobs = find_jobs(tmp_path)
    sequential = run_batch(jobs)
    pooled = run_batch(jobs, workers=2)
    assert pooled.database == sequential.database
    assert [failure.path for failure in pooled.failures] == [
        failure.path for failure in sequential.failures
    ]


def test_out_of_range_index_falls_back_to_unknown(tmp_path: Path):
    (tmp_path / "good.0.frag").write_text(FRAGMENT, "utf-8")
    (tmp_path / "huge.1.frag").write_text(
        "void main() {\n    out_attr0.x = U_Mate[1e999].x;\n}\n", "utf-8"
    )
    result = run_batch(find_jobs(tmp_path))

    assert result.failures == []
    assert len(result.database) == 2
    program = result.database.lookup(ProgramKey("huge", 1))
    assert program.unknown_count() == 1


def test_unexpected_errors_are_collected(tmp_path: Path, monkeypatch):
    (tmp_path / "good.0.frag").write_text(FRAGMENT, "utf-8")
    (tmp_path / "bad.1.frag").write_text(FRAGMENT, "utf-8")
    original = ShaderAnalyzer.analyze

    def analyze(self, text, kind, **kwargs):
        if kwargs["path"].name == "bad.1.frag":
            raise RuntimeError("analysis exploded")
        return original(self, text, kind, **kwargs)

    monkeypatch.setattr(ShaderAnalyzer, "analyze", analyze)
    result = run_batch(find_jobs(tmp_path))

    assert list(result.database) == [ProgramKey("good", 0)]
    assert [failure.path.name for failure in result.failures] == ["bad.1.frag"]
    assert result.failures[0].message == "RuntimeError: analysis exploded"
