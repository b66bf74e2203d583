"""FASTQ filtering by BLAST hits.

Reads whose id appears in a BLAST tabular output (after identity/length
trimming) are either kept or removed.
"""

from __future__ import annotations

import logging
import re
from typing import Set, Tuple

import pandas as pd

from .config import FastqFilterConfig
from .errors import FormatError
from .io_utils import iter_fastq, open_text, write_fastq_record

logger = logging.getLogger("blastbait")

_MATE_RE = re.compile(r"/[12]$")


def read_id(header: str) -> str:
    """First header token without a trailing /1 or /2 mate suffix."""
    token = header.split()[0] if header.strip() else ""
    return _MATE_RE.sub("", token)


def hit_ids(blast_tsv: str, cfg: FastqFilterConfig) -> Set[str]:
    cols = list(cfg.columns)
    if "qseqid" not in cols:
        raise FormatError("The BLAST column list must include qseqid")
    try:
        df = pd.read_csv(blast_tsv, sep="\t", header=None, dtype=str, comment="#")
    except pd.errors.EmptyDataError:
        return set()
    except (OSError, pd.errors.ParserError) as e:
        raise FormatError(f"{blast_tsv}: cannot read BLAST table ({e})") from e
    if df.shape[1] != len(cols) or df.isna().any().any():
        raise FormatError(f"{blast_tsv}: rows do not have the {len(cols)} fields {' '.join(cols)}")
    df.columns = cols
    mask = pd.Series(True, index=df.index)
    for col, threshold in (("pident", cfg.min_identity), ("length", cfg.min_length)):
        if threshold and threshold > 0:
            if col not in cols:
                raise FormatError(f"Filtering on {col} needs that column in the BLAST column list")
            values = pd.to_numeric(df[col], errors="coerce")
            if values.isna().any():
                raise FormatError(f"{blast_tsv}: non-numeric values in column '{col}'")
            mask &= values >= float(threshold)
    return {_MATE_RE.sub("", q) for q in df.loc[mask, "qseqid"]}


def filter_fastq(fastq: str, blast_tsv: str, output: str, cfg: FastqFilterConfig) -> Tuple[int, int]:
    """Write the selected reads to ``output``; return (written, total)."""
    if cfg.mode not in {"keep", "remove"}:
        raise ValueError("mode must be 'keep' or 'remove'")
    ids = hit_ids(blast_tsv, cfg)
    keep_hits = cfg.mode == "keep"
    written = total = 0
    with open_text(output, "w") as out:
        for rec in iter_fastq(fastq):
            total += 1
            if (read_id(rec[0]) in ids) == keep_hits:
                write_fastq_record(out, rec)
                written += 1
    logger.info("%s: wrote %d of %d reads (%s reads with hits)", fastq, written, total, cfg.mode)
    return written, total
