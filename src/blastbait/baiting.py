"""Core baiting pipeline.

This module:
- Optionally finds duplicate baits by BLASTing the bait set against itself
- Resolves each duplicate set (taxonomy-assisted, interactive, or from a checkpoint)
- BLASTs the contigs against the remaining baits and classifies every contig
- Writes the classification table, deduplicated baits, labelled contigs,
  the raw BLAST hits and the duplicate-resolution audit log

BLAST runs are sequential; blastn parallelises internally with ``threads``.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import pandas as pd

from .alignment import AlignmentOptions, HitRecord, align, build_database
from .checkpoint import load_checkpoint, save_checkpoint
from .classifier import ClassificationResult, classify_contigs
from .config import BAIT_COLUMNS, DUPLICATE_COLUMNS, BaitConfig
from .duplicates import DuplicateSet, build_duplicate_sets
from .filtering import qualifying_hits
from .io_utils import SequenceStore
from .resolver import AuditRecord, DuplicateResolver
from .taxmap import NameMapping
from .taxonomy import TaxonomyResolver, configure_entrez

logger = logging.getLogger("blastbait")

CLASSIFICATION_COLUMNS = ["contig_id", "matches", "name", "representative", "criterion"]
RAW_COLUMNS = ["qseqid", "sseqid", "pident", "length", "evalue"]


@dataclass
class OutputPaths:
    prefix: str
    fmt: str = "tsv"

    def _p(self, suffix: str) -> str:
        return f"{self.prefix}_{suffix}"

    @property
    def classification(self) -> str:
        ext = {"excel": ".xlsx", "parquet": ".parquet.snappy"}.get(self.fmt, ".tsv")
        return self._p("classification" + ext)

    @property
    def baits(self) -> str: return self._p("baits_dedup.fasta")

    @property
    def contigs(self) -> str: return self._p("contigs_classified.fasta")

    @property
    def raw(self) -> str: return self._p("blast_raw.tsv")

    @property
    def audit(self) -> str: return self._p("duplicates.tsv")

    @property
    def checkpoint(self) -> str: return self._p("checkpoint.json")


@dataclass
class BaitingResult:
    halted: bool = False
    checkpoint: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    results: List[ClassificationResult] = field(default_factory=list)
    audit: List[AuditRecord] = field(default_factory=list)


def _write_table(df: pd.DataFrame, *, path: str, fmt: str, sheet_name: str | None = None):
    fmt = (fmt or "tsv").lower().strip()
    if fmt == "parquet":
        df.to_parquet(path, index=False, compression="snappy")
        return
    if fmt == "excel":
        with pd.ExcelWriter(path) as xw:
            df.to_excel(xw, index=False, sheet_name=(sheet_name or "Sheet1"))
        return
    df.to_csv(path, sep="\t", index=False, na_rep="NA")


def classification_frame(results: List[ClassificationResult]) -> pd.DataFrame:
    rows = [{
        "contig_id": r.contig_id,
        "matches": r.match_count,
        "name": r.assigned_name or "NA",
        "representative": r.representative or "NA",
        "criterion": r.criterion.value,
    } for r in results]
    return pd.DataFrame(rows, columns=CLASSIFICATION_COLUMNS)


def raw_hits_frame(hits: List[HitRecord]) -> pd.DataFrame:
    rows = [(h.query_id, h.subject_id, h.percent_identity, h.alignment_length, h.e_value) for h in hits]
    return pd.DataFrame(rows, columns=RAW_COLUMNS)


def audit_frame(audit: List[AuditRecord], with_taxonomy: bool) -> pd.DataFrame:
    cols = ["set_id", "member", "sequence_id", "length"]
    if with_taxonomy:
        cols += ["name", "blast_lineage", "supplied_lineage"]
    cols.append("action")
    rows = []
    for a in audit:
        row = {"set_id": a.set_id, "member": a.ordinal, "sequence_id": a.sequence_id, "length": a.length,
               "name": a.name or "NA", "blast_lineage": a.blast_lineage or "NA",
               "supplied_lineage": a.supplied_lineage or "NA", "action": a.action}
        rows.append({c: row[c] for c in cols})
    return pd.DataFrame(rows, columns=cols)


def find_duplicate_sets(baits: SequenceStore, names: NameMapping, config: BaitConfig,
                        align_fn: Callable = align, db_builder: Callable = build_database) -> List[DuplicateSet]:
    opts = AlignmentOptions(
        min_identity=config.dupid, min_length=config.duplength, max_hits=max(1, len(baits)),
        threads=config.threads, task=config.task, blastn_exe=config.blastn_exe,
    )
    print("Searching for duplicate baits...", flush=True)
    with db_builder(dict(baits.items()), config.makeblastdb_exe) as db:
        hits = align_fn(dict(baits.items()), db, opts, DUPLICATE_COLUMNS)
    return build_duplicate_sets(hits, baits, names, config.dupid, config.duplength)


def resolve_duplicates(
    baits: SequenceStore,
    names: NameMapping,
    config: BaitConfig,
    paths: OutputPaths,
    resume: Optional[str] = None,
    resolver: Optional[DuplicateResolver] = None,
    align_fn: Callable = align,
    db_builder: Callable = build_database,
) -> BaitingResult:
    """Find (or reload) duplicate sets, resolve them and delete the losers from ``baits``."""
    if resolver is None:
        taxonomy = None
        if config.taxonomy_enabled:
            configure_entrez(config.ncbi_email, config.ncbi_api_key, config.remote_retries)
            taxonomy = TaxonomyResolver(config, aligner=align_fn)
        resolver = DuplicateResolver(interactive=config.interactive, taxonomy=taxonomy)

    if resume:
        sets = load_checkpoint(resume)
        missing = [sid for s in sets for sid in s.sequence_ids() if sid not in baits]
        if missing:
            logger.warning("%d checkpointed bait(s) are not in the bait file, e.g. %s", len(missing), missing[0])
        done = sum(1 for s in sets if s.selection is not None)
        print(f"Resuming {len(sets)} duplicate set(s), {done} already resolved.", flush=True)
    else:
        sets = find_duplicate_sets(baits, names, config, align_fn, db_builder)
        resolver.annotate(sets, baits)
        save_checkpoint(paths.checkpoint, sets)

    outcome = resolver.resolve(sets)
    if outcome.halted:
        save_checkpoint(paths.checkpoint, outcome.sets)
        print(f"Stopped. Progress saved to {paths.checkpoint}; resume with --resume.", flush=True)
        return BaitingResult(halted=True, checkpoint=paths.checkpoint)

    audit = resolver.apply(outcome, baits)
    save_checkpoint(paths.checkpoint, outcome.sets)
    with_tax = config.taxonomy_enabled or names.has_taxonomy
    _write_table(audit_frame(audit, with_tax), path=paths.audit, fmt="tsv")
    return BaitingResult(checkpoint=paths.checkpoint, audit=audit,
                         outputs={"audit": paths.audit, "checkpoint": paths.checkpoint})


def run(
    baits: SequenceStore,
    contigs: SequenceStore,
    names: NameMapping,
    out_prefix: str,
    config: BaitConfig,
    resume: Optional[str] = None,
    resolver: Optional[DuplicateResolver] = None,
    align_fn: Callable = align,
    db_builder: Callable = build_database,
) -> BaitingResult:
    paths = OutputPaths(out_prefix, config.output_format)
    out_dir = os.path.dirname(os.path.abspath(out_prefix))
    os.makedirs(out_dir, exist_ok=True)

    result = BaitingResult()
    if config.dupcheck or resume:
        result = resolve_duplicates(baits, names, config, paths, resume, resolver, align_fn, db_builder)
        if result.halted:
            return result

    baits.write_fasta(paths.baits)
    result.outputs["baits"] = paths.baits

    print(f"Baiting {len(contigs)} contig(s) against {len(baits)} bait(s)...", flush=True)
    hits: List[HitRecord] = []
    if len(baits) and len(contigs):
        opts = AlignmentOptions(
            min_identity=config.baitid, min_length=config.baitlength, max_hits=config.max_bait_hits,
            threads=config.threads, task=config.task, blastn_exe=config.blastn_exe,
        )
        with db_builder(dict(baits.items()), config.makeblastdb_exe) as db:
            hits = align_fn(dict(contigs.items()), db, opts, BAIT_COLUMNS)
    elif not len(baits):
        logger.warning("No baits left to search against; every contig will be unclassified")

    _write_table(raw_hits_frame(hits), path=paths.raw, fmt="tsv")
    result.outputs["raw"] = paths.raw

    qualifying = qualifying_hits(hits, config.baitid, config.baitlength)
    ref_counts = names.count_by_name(baits.ids())
    results = classify_contigs(contigs.ids(), qualifying, names, ref_counts)
    result.results = results

    _write_table(classification_frame(results), path=paths.classification, fmt=config.output_format,
                 sheet_name="Classification")
    result.outputs["classification"] = paths.classification

    assigned = {r.contig_id: r.assigned_name for r in results if r.assigned_name}
    contigs.write_fasta(paths.contigs, lambda cid: f"{cid}|{assigned[cid]}" if cid in assigned else cid)
    result.outputs["contigs"] = paths.contigs

    counts = Counter(r.criterion.value for r in results)
    logger.info("Classification summary: %s", ", ".join(f"{k}={v}" for k, v in sorted(counts.items())))
    print(f"Classified {len(assigned)} of {len(results)} contig(s).", flush=True)
    return result
