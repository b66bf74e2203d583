"""BLAST+ invocation.

Builds throw-away nucleotide databases with makeblastdb and runs blastn with a
caller-chosen tabular column set, returning parsed HitRecord rows in the order
blastn reported them.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Sequence, Union

from .errors import AlignmentError
from .io_utils import write_fasta

logger = logging.getLogger("blastbait")

# blastn column name -> (HitRecord field, converter)
_COLUMN_FIELDS = {
    "qseqid": ("query_id", str),
    "sseqid": ("subject_id", str),
    "pident": ("percent_identity", float),
    "length": ("alignment_length", int),
    "evalue": ("e_value", float),
    "sacc": ("subject_accession", str),
    "saccver": ("subject_accession", str),
    "bitscore": ("bit_score", float),
}


@dataclass(frozen=True)
class HitRecord:
    query_id: str = ""
    subject_id: str = ""
    percent_identity: float = 0.0
    alignment_length: int = 0
    e_value: float = 0.0
    subject_accession: str = ""
    bit_score: float = 0.0


@dataclass(frozen=True)
class DatabaseHandle:
    prefix: str
    workdir: str


@dataclass(frozen=True)
class AlignmentOptions:
    min_identity: Optional[float] = None
    min_length: int = 0
    max_hits: int = 10
    threads: int = 1
    task: str = "megablast"
    # Optional file of subject ids to restrict the search to (-seqidlist).
    restrict_ids: Optional[str] = None
    blastn_exe: str = "blastn"


def _norm(p: str) -> str:
    return p.replace("\\", "/")


def _stderr_tail(text: Optional[str], n: int = 20) -> str:
    lines = (text or "").strip().splitlines()
    return "\n".join(lines[-n:]) or "<empty>"


@contextmanager
def build_database(sequences: Mapping[str, str], makeblastdb_exe: str = "makeblastdb") -> Iterator[DatabaseHandle]:
    """Build a temporary BLAST database from ``sequences``.

    The database and its source FASTA live in a private temp directory that is
    removed when the ``with`` block exits, whatever the reason.
    """
    workdir = tempfile.mkdtemp(prefix="blastbait_db_")
    try:
        fasta = os.path.join(workdir, "ref.fasta")
        write_fasta(fasta, sequences)
        prefix = os.path.join(workdir, "ref")
        cmd = [makeblastdb_exe, "-in", _norm(fasta), "-dbtype", "nucl", "-title", "ref", "-out", _norm(prefix)]
        logger.debug("CMD: %s", shlex.join(cmd))
        try:
            r = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise AlignmentError(f"Cannot run '{makeblastdb_exe}': {e}") from e
        if r.returncode != 0:
            raise AlignmentError(
                f"makeblastdb exited with code {r.returncode}.\n"
                f"Command: {shlex.join(cmd)}\n"
                f"stderr:\n{_stderr_tail(r.stderr)}"
            )
        yield DatabaseHandle(prefix=prefix, workdir=workdir)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


def build_command(query_fa: str, db_prefix: str, options: AlignmentOptions, columns: Sequence[str]) -> List[str]:
    cmd = [options.blastn_exe, "-query", _norm(query_fa), "-db", _norm(db_prefix),
           "-outfmt", "6 " + " ".join(columns),
           "-task", options.task, "-max_hsps", "1",
           "-max_target_seqs", str(options.max_hits), "-num_threads", str(max(1, options.threads))]
    if options.min_identity is not None and options.min_identity > 0:
        cmd += ["-perc_identity", str(options.min_identity)]
    if options.restrict_ids:
        cmd += ["-seqidlist", _norm(options.restrict_ids)]
    return cmd


def parse_rows(lines: Sequence[str], columns: Sequence[str], source: str = "blastn") -> List[HitRecord]:
    """Parse outfmt 6 rows produced with ``columns``."""
    unknown = [c for c in columns if c not in _COLUMN_FIELDS]
    if unknown:
        raise AlignmentError(f"Unsupported output column(s): {', '.join(unknown)}")
    hits: List[HitRecord] = []
    for n, line in enumerate(lines, start=1):
        line = line.rstrip("\r\n")
        if not line.strip() or line.startswith("#"):
            continue
        fields = line.split("\t")
        if len(fields) != len(columns):
            raise AlignmentError(
                f"{source}: row {n} has {len(fields)} fields, expected {len(columns)} ({' '.join(columns)})"
            )
        values = {}
        for col, raw in zip(columns, fields):
            name, conv = _COLUMN_FIELDS[col]
            try:
                values[name] = conv(raw.strip())
            except ValueError as e:
                raise AlignmentError(f"{source}: row {n}, column '{col}': cannot parse {raw!r}") from e
        hits.append(HitRecord(**values))
    return hits


def align(
    query: Union[str, Mapping[str, str]],
    database: Union[str, DatabaseHandle],
    options: AlignmentOptions,
    columns: Sequence[str],
) -> List[HitRecord]:
    """Run blastn synchronously and return its hits.

    ``query`` is a FASTA path or an id -> bases mapping (written to a temp
    file). ``options.min_length`` is applied here, blastn has no such filter.
    """
    db_prefix = database.prefix if isinstance(database, DatabaseHandle) else database
    tmpdir = None
    try:
        if isinstance(query, str):
            query_fa = query
        else:
            tmpdir = tempfile.mkdtemp(prefix="blastbait_q_")
            query_fa = os.path.join(tmpdir, "query.fasta")
            write_fasta(query_fa, query)
        cmd = build_command(query_fa, db_prefix, options, columns)
        logger.debug("CMD: %s", shlex.join(cmd))
        try:
            r = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise AlignmentError(f"Cannot run '{options.blastn_exe}': {e}") from e
        if r.returncode != 0:
            raise AlignmentError(
                f"blastn exited with code {r.returncode}.\n"
                f"Command: {shlex.join(cmd)}\n"
                f"stderr:\n{_stderr_tail(r.stderr)}"
            )
        hits = parse_rows(r.stdout.splitlines(), columns)
    finally:
        if tmpdir:
            shutil.rmtree(tmpdir, ignore_errors=True)

    if options.min_length and "length" in columns:
        hits = [h for h in hits if h.alignment_length >= options.min_length]
    return hits
