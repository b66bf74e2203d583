from contextlib import contextmanager
from pathlib import Path
import pytest

from blastbait.alignment import DatabaseHandle, HitRecord


def hit(q, s, pident=100.0, length=650, evalue=0.0, acc="", bits=0.0):
    return HitRecord(q, s, pident, length, evalue, acc, bits)


class FakeAligner:
    """Stands in for alignment.align; returns canned hit lists in call order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, query, database, options, columns):
        self.calls.append((dict(query) if not isinstance(query, str) else query, database, options, tuple(columns)))
        return list(self.responses.pop(0)) if self.responses else []


@contextmanager
def fake_db_builder(sequences, makeblastdb_exe="makeblastdb"):
    yield DatabaseHandle(prefix="fake/ref", workdir="fake")


@pytest.fixture
def fasta_file(tmp_path):
    # fasta_file("baits.fasta", [("A1", "ACGT"), ...]) or fasta_file("x.fa", raw_text)
    def _write(name, records) -> str:
        p = tmp_path / name
        if isinstance(records, str):
            p.write_text(records)
        else:
            p.write_text("".join(f">{i}\n{s}\n" for i, s in records))
        return str(p)
    return _write


@pytest.fixture
def out_prefix(tmp_path) -> str:
    return str(tmp_path / "out" / "run")


def read_fasta_headers(path) -> list:
    return [ln[1:].strip() for ln in Path(path).read_text().splitlines() if ln.startswith(">")]
