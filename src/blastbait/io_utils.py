"""I/O helpers.

FASTA loading with validation, the in-memory SequenceStore, and FASTQ record
iteration. Plain or gzipped text is accepted everywhere.
"""

from __future__ import annotations

import gzip
import logging
import os
import re
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, TextIO, Tuple

from .errors import FormatError, IdentifierError

logger = logging.getLogger("blastbait")

FA_EXTS = (".fa", ".fasta", ".fna", ".fas")

# Nucleotides, IUPAC ambiguity codes and the gap character.
_SEQ_RE = re.compile(r"^[ACGTURYSWKMBDHVN\-]+$", re.I)
_WS_RE = re.compile(r"\s")


def open_text(path: str, mode: str = "r") -> TextIO:
    if path.lower().endswith(".gz"):
        return gzip.open(path, mode + "t", encoding="utf-8")
    return open(path, mode, encoding="utf-8")


def _read_lines(path: str) -> Iterator[str]:
    """Yield the lines of a text file; unreadable or non-UTF-8 input is a FormatError."""
    try:
        with open_text(path) as fh:
            yield from fh
    except UnicodeDecodeError as e:
        raise FormatError(f"{path}: not valid UTF-8 text ({e.reason} at byte {e.start})") from e
    except OSError as e:
        raise FormatError(f"{path}: cannot read file ({e.strerror or e})") from e


def _unique_id(seq_id: str, seen: Mapping[str, str]) -> str:
    n = 1
    while f"{seq_id}_{n}" in seen:
        n += 1
    return f"{seq_id}_{n}"


def read_fasta(path: str) -> Dict[str, str]:
    """Load a FASTA file into an ordered id -> bases dict.

    Ids are the full header text and may not contain whitespace. Repeated ids
    are renamed to ``<id>_N`` (smallest free N) so that no record is lost.
    """
    seqs: Dict[str, str] = {}
    current: Optional[str] = None
    buf: List[str] = []
    renamed = 0

    def commit(lineno: int) -> None:
        if current is None:
            return
        if not buf:
            raise FormatError(f"{path}: record '{current}' ending at line {lineno} has no sequence")
        seqs[current] = "".join(buf)

    lineno = 0
    for lineno, raw in enumerate(_read_lines(path), start=1):
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        if line.startswith(">"):
            commit(lineno - 1)
            seq_id = line[1:].strip()
            if not seq_id:
                raise IdentifierError(f"{path}: empty sequence id at line {lineno}")
            if _WS_RE.search(seq_id):
                raise IdentifierError(f"{path}: sequence id '{seq_id}' at line {lineno} contains whitespace")
            if seq_id in seqs:
                new_id = _unique_id(seq_id, seqs)
                logger.warning("%s: duplicate id '%s' renamed to '%s'", path, seq_id, new_id)
                seq_id = new_id
                renamed += 1
            current = seq_id
            buf = []
            continue
        bases = line.strip()
        if not _SEQ_RE.match(bases):
            raise FormatError(f"{path}: line {lineno} is neither a header nor a valid sequence line")
        if current is None:
            raise FormatError(f"{path}: sequence data before the first header (line {lineno})")
        buf.append(bases)
    commit(lineno)

    if renamed:
        logger.warning("%s: %d duplicate id(s) were renamed", path, renamed)
    return seqs


def write_fasta(path: str, mapping: Mapping[str, str],
                header_fn: Optional[Callable[[str], str]] = None) -> int:
    """Write ``mapping`` as FASTA; ``header_fn(id)`` supplies the header text."""
    n = 0
    with open_text(path, "w") as fh:
        for seq_id, bases in mapping.items():
            header = header_fn(seq_id) if header_fn else seq_id
            fh.write(f">{header}\n{bases}\n")
            n += 1
    return n


class SequenceStore:
    """In-memory id -> bases mapping; only membership ever changes."""

    def __init__(self, seqs: Optional[Mapping[str, str]] = None, source: str = ""):
        self._seqs: Dict[str, str] = dict(seqs or {})
        self.source = source

    @classmethod
    def load(cls, path: str) -> "SequenceStore":
        return cls(read_fasta(path), source=path)

    def __getitem__(self, seq_id: str) -> str:
        return self._seqs[seq_id]

    def __contains__(self, seq_id: object) -> bool:
        return seq_id in self._seqs

    def __iter__(self) -> Iterator[str]:
        return iter(self._seqs)

    def __len__(self) -> int:
        return len(self._seqs)

    def ids(self) -> List[str]:
        return list(self._seqs)

    def items(self):
        return self._seqs.items()

    def length(self, seq_id: str) -> int:
        return len(self._seqs[seq_id])

    def subset(self, ids: Iterable[str]) -> Dict[str, str]:
        return {i: self._seqs[i] for i in ids if i in self._seqs}

    def remove(self, ids: Iterable[str]) -> int:
        n = 0
        for seq_id in ids:
            if self._seqs.pop(seq_id, None) is not None:
                n += 1
        return n

    def write_fasta(self, path: str, header_fn: Optional[Callable[[str], str]] = None) -> int:
        return write_fasta(path, self._seqs, header_fn)


def read_fasta_order(path: str) -> List[str]:
    """Header ids in file order, without loading sequences or renaming repeats."""
    order = []
    for line in _read_lines(path):
        if line.startswith(">") and line[1:].strip():
            order.append(line[1:].strip().split()[0])
    return order


def discover_fastas(fasta_dir: str) -> List[str]:
    return [os.path.join(fasta_dir, n) for n in sorted(os.listdir(fasta_dir))
            if os.path.isfile(os.path.join(fasta_dir, n))
            and n.lower().removesuffix(".gz").endswith(FA_EXTS)]


def iter_fastq(path: str) -> Iterator[Tuple[str, str, str, str]]:
    """Yield (header, sequence, plus, quality) tuples, header without the '@'."""
    src = _read_lines(path)
    lineno = 0
    while True:
        lines = []
        for ln in src:
            lineno += 1
            lines.append(ln.rstrip("\r\n"))
            if len(lines) == 4:
                break
        if not lines:
            return
        if len(lines) < 4:
            raise FormatError(f"{path}: truncated FASTQ record ending at line {lineno}")
        header, seq, plus, qual = lines
        if not header.startswith("@") or not plus.startswith("+"):
            raise FormatError(f"{path}: malformed FASTQ record ending at line {lineno}")
        if len(seq) != len(qual):
            raise FormatError(f"{path}: sequence and quality lengths differ at line {lineno}")
        yield header[1:], seq, plus, qual


def write_fastq_record(fh: TextIO, record: Tuple[str, str, str, str]) -> None:
    header, seq, plus, qual = record
    fh.write(f"@{header}\n{seq}\n{plus}\n{qual}\n")
