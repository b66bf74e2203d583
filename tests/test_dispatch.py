import os
import subprocess

from blastbait import dispatch
from blastbait.config import DispatchConfig
from blastbait.dispatch import build_command, dispatch_blast, output_path


def test_output_path():
    assert output_path("/data/sample_01.fasta.gz", "out") == os.path.join("out", "sample_01.blast.tsv")
    assert output_path("s2.fa", "out") == os.path.join("out", "s2.blast.tsv")


def test_build_command():
    cfg = DispatchConfig(db="db/ref", out_dir="out", threads=3, outfmt=("qseqid", "sseqid"), perc_identity=97.0)
    cmd = build_command("s.fa", "out/s.blast.tsv", cfg)
    assert cmd[cmd.index("-outfmt") + 1] == "6 qseqid sseqid"
    assert cmd[cmd.index("-num_threads") + 1] == "3"
    assert cmd[cmd.index("-perc_identity") + 1] == "97.0"


def test_dispatch_runs_every_file_and_reports_failures(monkeypatch, tmp_path):
    def fake_run(cmd, **kw):
        query = cmd[cmd.index("-query") + 1]
        if "bad" in query:
            return subprocess.CompletedProcess(cmd, 2, stdout="", stderr="Error: bad query\n")
        with open(cmd[cmd.index("-out") + 1], "w") as fh:
            fh.write("q\ts\n")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(dispatch.subprocess, "run", fake_run)
    fastas = [str(tmp_path / n) for n in ("a.fasta", "b.fasta", "bad.fasta")]
    out_dir = tmp_path / "blast"
    results = dispatch_blast(fastas, DispatchConfig(db="db/ref", out_dir=str(out_dir), jobs=2))

    by_name = {os.path.basename(r.fasta): r for r in results}
    assert sorted(by_name) == ["a.fasta", "b.fasta", "bad.fasta"]
    assert by_name["a.fasta"].ok and by_name["b.fasta"].ok
    assert not by_name["bad.fasta"].ok
    assert by_name["bad.fasta"].stderr == "Error: bad query"
    assert (out_dir / "a.blast.tsv").exists()


def test_missing_blastn(monkeypatch, tmp_path):
    def missing(cmd, **kw):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(dispatch.subprocess, "run", missing)
    results = dispatch_blast([str(tmp_path / "a.fa")], DispatchConfig(db="db", out_dir=str(tmp_path)))
    assert results[0].returncode == 127


def test_unrunnable_blastn_fails_only_that_job(monkeypatch, tmp_path):
    def run(cmd, **kw):
        if "locked" in cmd[cmd.index("-query") + 1]:
            raise PermissionError(13, "Permission denied")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(dispatch.subprocess, "run", run)
    fastas = [str(tmp_path / "locked.fa"), str(tmp_path / "ok.fa")]
    results = dispatch_blast(fastas, DispatchConfig(db="db", out_dir=str(tmp_path / "out"), jobs=2))
    by_name = {os.path.basename(r.fasta): r for r in results}
    assert not by_name["locked.fa"].ok and "Permission denied" in by_name["locked.fa"].stderr
    assert by_name["ok.fa"].ok
