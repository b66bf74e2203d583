import os
import pandas as pd
import pytest

from blastbait.baiting import OutputPaths, run
from blastbait.checkpoint import load_checkpoint
from blastbait.config import BaitConfig
from blastbait.duplicates import Selection
from blastbait.io_utils import SequenceStore, read_fasta
from blastbait.resolver import DuplicateResolver
from blastbait.taxmap import NameMapping

from conftest import FakeAligner, fake_db_builder, hit, read_fasta_headers

SELF_HITS = [hit("A1", "A1"), hit("A1", "A2"), hit("A2", "A2"), hit("A2", "A1"), hit("B1", "B1")]
CONTIG_HITS = [hit("c1", "B1", 100.0), hit("c3", "A1", 100.0), hit("c3", "A2", 99.9), hit("c4", "B1", 90.0)]


def _inputs():
    baits = SequenceStore({"A1": "ACGT" * 160, "A2": "ACGT" * 160, "B1": "TTGA" * 160})
    contigs = SequenceStore({"c1": "TTGA" * 200, "c2": "GGGG" * 200, "c3": "ACGT" * 200, "c4": "TTGC" * 200})
    names = NameMapping({"A1": "Apis", "A2": "Apis", "B1": "Bombus"})
    return baits, contigs, names


def _prompting(*answers):
    answers = list(answers)
    return DuplicateResolver(interactive=True, input_fn=lambda p: answers.pop(0), output_fn=lambda s: None)


def test_identical_baits_are_all_deleted_without_taxonomy(out_prefix):
    baits, contigs, names = _inputs()
    aligner = FakeAligner(SELF_HITS, CONTIG_HITS[:1])
    res = run(baits, contigs, names, out_prefix, BaitConfig(dupcheck=True), align_fn=aligner, db_builder=fake_db_builder)

    assert not res.halted
    assert baits.ids() == ["B1"]
    assert list(read_fasta(res.outputs["baits"])) == ["B1"]
    assert [(a.sequence_id, a.action) for a in res.audit] == [("A1", "deleted"), ("A2", "deleted")]
    # contigs are searched against the deduplicated baits only
    assert len(aligner.calls) == 2
    assert set(aligner.calls[1][0]) == {"c1", "c2", "c3", "c4"}

    audit = pd.read_csv(res.outputs["audit"], sep="\t")
    assert list(audit.columns) == ["set_id", "member", "sequence_id", "length", "action"]
    assert os.path.exists(res.outputs["checkpoint"])


def test_classification_outputs(out_prefix):
    baits, contigs, names = _inputs()
    res = run(baits, contigs, names, out_prefix, BaitConfig(), align_fn=FakeAligner(CONTIG_HITS),
              db_builder=fake_db_builder)

    table = pd.read_csv(res.outputs["classification"], sep="\t", keep_default_na=False)
    assert list(table.columns) == ["contig_id", "matches", "name", "representative", "criterion"]
    assert table["contig_id"].tolist() == ["c1", "c2", "c3", "c4"]
    assert table["criterion"].tolist() == ["only-match", "no-match", "only-name-match", "no-match"]
    assert table["name"].tolist() == ["Bombus", "NA", "Apis", "NA"]

    # zero-hit contigs keep their bare id
    assert read_fasta_headers(res.outputs["contigs"]) == ["c1|Bombus", "c2", "c3|Apis", "c4"]
    raw = pd.read_csv(res.outputs["raw"], sep="\t")
    assert len(raw) == 4
    assert not os.path.exists(OutputPaths(out_prefix).checkpoint)


def test_quit_saves_checkpoint_and_skips_baiting(out_prefix):
    baits, contigs, names = _inputs()
    aligner = FakeAligner(SELF_HITS, CONTIG_HITS)
    res = run(baits, contigs, names, out_prefix, BaitConfig(dupcheck=True, interactive=True),
              resolver=_prompting("q"), align_fn=aligner, db_builder=fake_db_builder)

    assert res.halted
    assert os.path.exists(res.checkpoint)
    assert len(aligner.calls) == 1
    assert len(baits) == 3
    paths = OutputPaths(out_prefix)
    assert not os.path.exists(paths.baits)
    assert not os.path.exists(paths.classification)


def test_resume_continues_from_checkpoint(out_prefix):
    baits, contigs, names = _inputs()
    run(baits, contigs, names, out_prefix, BaitConfig(dupcheck=True, interactive=True),
        resolver=_prompting("q"), align_fn=FakeAligner(SELF_HITS), db_builder=fake_db_builder)

    baits, contigs, names = _inputs()
    aligner = FakeAligner(CONTIG_HITS)
    res = run(baits, contigs, names, out_prefix, BaitConfig(interactive=True),
              resume=OutputPaths(out_prefix).checkpoint, resolver=_prompting("2"),
              align_fn=aligner, db_builder=fake_db_builder)

    assert not res.halted
    # no second self-search
    assert len(aligner.calls) == 1
    assert baits.ids() == ["A2", "B1"]
    assert [(a.sequence_id, a.action) for a in res.audit] == [("A1", "deleted"), ("A2", "selected")]


@pytest.mark.parametrize("fmt,suffix", [("excel", ".xlsx"), ("parquet", ".parquet.snappy")])
def test_other_table_formats(out_prefix, fmt, suffix):
    baits, contigs, names = _inputs()
    res = run(baits, contigs, names, out_prefix, BaitConfig(output_format=fmt),
              align_fn=FakeAligner(CONTIG_HITS), db_builder=fake_db_builder)
    path = res.outputs["classification"]
    assert path.endswith(suffix)
    df = pd.read_excel(path) if fmt == "excel" else pd.read_parquet(path)
    assert df["contig_id"].tolist() == ["c1", "c2", "c3", "c4"]


def test_no_baits_left(out_prefix):
    baits, contigs, names = _inputs()
    baits.remove(baits.ids())
    aligner = FakeAligner()
    res = run(baits, contigs, names, out_prefix, BaitConfig(), align_fn=aligner, db_builder=fake_db_builder)
    assert aligner.calls == []
    assert all(r.assigned_name is None for r in res.results)


def test_closed_stdin_saves_checkpoint_with_earlier_choices(out_prefix):
    baits = SequenceStore({"A1": "ACGT" * 160, "A2": "ACGT" * 160, "B1": "TTGA" * 160, "B2": "TTGA" * 160})
    contigs = SequenceStore({"c1": "TTGA" * 200})
    names = NameMapping({"A1": "Apis", "A2": "Apis", "B1": "Bombus", "B2": "Bombus"})
    self_hits = [hit("A1", "A2"), hit("A2", "A1"), hit("B1", "B2"), hit("B2", "B1")]
    answers = ["1"]

    def read(prompt):
        if answers:
            return answers.pop(0)
        raise EOFError

    resolver = DuplicateResolver(interactive=True, input_fn=read, output_fn=lambda s: None)
    res = run(baits, contigs, names, out_prefix, BaitConfig(dupcheck=True, interactive=True),
              resolver=resolver, align_fn=FakeAligner(self_hits), db_builder=fake_db_builder)

    assert res.halted
    saved = load_checkpoint(res.checkpoint)
    assert saved[0].selection == Selection.keep(1)
    assert saved[1].selection is None
