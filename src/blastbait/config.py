"""Run configuration.

Every tool receives one immutable options object built by the CLI; nothing in
the package reads module-level thresholds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


# Tabular columns requested by each step (outfmt 6). The parser follows these lists.
BAIT_COLUMNS = ("qseqid", "sseqid", "pident", "length", "evalue")
DUPLICATE_COLUMNS = ("qseqid", "sseqid", "pident", "length", "evalue")
TAXONOMY_COLUMNS = ("qseqid", "sacc", "bitscore")


@dataclass(frozen=True)
class BaitConfig:
    # Baiting thresholds
    baitid: float = 99.0
    baitlength: int = 100
    max_bait_hits: int = 10

    # Duplicate checking
    dupcheck: bool = False
    dupid: float = 100.0
    duplength: int = 100
    interactive: bool = False

    # Taxonomy-assisted duplicate resolution
    # - taxdb: BLAST database prefix used to look up lineages (e.g. a local copy of nt)
    # - taxmin: minimum fraction of agreeing lineages to extend the best-guess lineage
    taxdb: Optional[str] = None
    taxmin: float = 0.25
    tax_max_hits: int = 25
    ncbi_email: str = field(default_factory=lambda: os.environ.get("NCBI_EMAIL", ""))
    ncbi_api_key: Optional[str] = field(default_factory=lambda: os.environ.get("NCBI_API_KEY"))
    remote_timeout: float = 60.0
    remote_retries: int = 1

    # Execution
    threads: int = 1
    task: str = "megablast"
    blastn_exe: str = "blastn"
    makeblastdb_exe: str = "makeblastdb"

    # Output
    # - tsv: tab-separated text (default)
    # - excel: .xlsx via openpyxl
    # - parquet: .parquet.snappy via pyarrow
    output_format: str = "tsv"

    @property
    def taxonomy_enabled(self) -> bool:
        return bool(self.taxdb)


@dataclass(frozen=True)
class DispatchConfig:
    db: str
    out_dir: str
    # Simultaneous blastn processes; each one uses `threads` threads.
    jobs: int = 1
    threads: int = 1
    task: str = "megablast"
    outfmt: Tuple[str, ...] = ("qseqid", "sseqid", "pident", "length", "mismatch", "gapopen",
                               "qstart", "qend", "sstart", "send", "evalue", "bitscore")
    evalue: float = 1e-5
    max_target_seqs: int = 10
    perc_identity: Optional[float] = None
    extra_args: Tuple[str, ...] = ()
    blastn_exe: str = "blastn"


@dataclass(frozen=True)
class FastqFilterConfig:
    # keep: write reads with a qualifying hit; remove: write reads without one
    mode: str = "keep"
    columns: Tuple[str, ...] = ("qseqid", "sseqid", "pident", "length", "evalue")
    min_identity: float = 0.0
    min_length: int = 0
