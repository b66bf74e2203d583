"""Command-line interface.

This module implements three subcommands:
- bait: classify contigs against a barcode library, with optional duplicate
  barcode resolution (automatic, interactive or resumed from a checkpoint)
- dispatch: run blastn on many FASTA files in parallel
- filter-fastq: keep or drop FASTQ reads according to BLAST hits
"""

from __future__ import annotations

import argparse
import logging
import os
import textwrap
from typing import List, Optional

from . import __version__
from .baiting import run as run_baiting
from .blast_tools import require_blast
from .config import BaitConfig, DispatchConfig, FastqFilterConfig
from .dispatch import dispatch_blast
from .errors import BlastBaitError
from .fastq_filter import filter_fastq
from .io_utils import SequenceStore, discover_fastas
from .taxmap import NameMapping, load_name_list, load_taxonomy_table

logger = logging.getLogger("blastbait")


def validate_range(name: str, val: float, lo: float, hi: float, integer=False):
    if integer and abs(val - int(val)) < 1e-9:
        val = int(val)
    if val < lo or val > hi:
        raise SystemExit(f"{name} out of range [{lo},{hi}]: {val}")
    return int(val) if integer else val


class _Fmt(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    """Help formatter combining defaults + multi-line descriptions."""


def _add_common(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Execution")
    g.add_argument("--threads", type=int, default=1, help="blastn threads (per job for dispatch).")
    g.add_argument("--task", choices=["megablast", "dc-megablast", "blastn"], default="megablast",
                   help="BLAST task.")
    g.add_argument("--blastn-exe", default="blastn", help="Path/name of the blastn executable.")
    g.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO",
                   help="Logging verbosity.")


def build_parser():
    description = (
        "blastbait: BLAST-based tools for classifying sequencing data against barcode libraries.\n\n"
        "NCBI BLAST+ must be installed (blastn, and makeblastdb for baiting)."
    )
    epilog = textwrap.dedent(
        """\
        Examples:
          # Bait contigs, taking bait names from the 2nd '|'-separated field of each id
          blastbait bait -b baits.fasta -c contigs.fasta -o out/run1 --namefield 1

          # Resolve duplicate baits interactively, using NCBI taxonomy to guide choices
          blastbait bait -b baits.fasta -c contigs.fasta -o out/run1 --taxonomy tax.tsv \\
              --dupcheck --interactive --taxdb /data/nt/nt --email me@example.org

          # Resume an interrupted interactive session
          blastbait bait -b baits.fasta -c contigs.fasta -o out/run1 --taxonomy tax.tsv \\
              --interactive --resume out/run1_checkpoint.json

          # BLAST every FASTA in a folder, 4 jobs x 2 threads
          blastbait dispatch --fastas reads/ --db /data/ref/ref --out-dir blast/ --jobs 4 --threads 2

          # Keep only reads with a hit of at least 97 percent identity
          blastbait filter-fastq -i reads.fastq -t reads.blast.tsv -o hits.fastq --min-identity 97
        """
    )
    p = argparse.ArgumentParser(prog="blastbait", description=description, epilog=epilog, formatter_class=_Fmt)
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}",
                   help="Show program version and exit.")
    sub = p.add_subparsers(dest="command", required=True)

    # bait
    b = sub.add_parser("bait", help="Classify contigs against a barcode library.", formatter_class=_Fmt)
    g_in = b.add_argument_group("Inputs")
    g_in.add_argument("-b", "--baits", required=True, help="Reference barcode FASTA.")
    g_in.add_argument("-c", "--contigs", required=True, help="Contig FASTA to classify.")
    g_in.add_argument("-o", "--out", required=True, help="Output prefix (directory/name).")

    g_names = b.add_argument_group("Bait names")
    g_names.add_argument("--taxonomy", help="Taxonomy table (CSV/TSV/XLSX/parquet): name + lineage, or rank columns.")
    g_names.add_argument("--library", help="Text file of additional taxonomic names, one per line.")
    g_names.add_argument("--namefield", type=int,
                         help="Take each bait's name from this 0-based field of its id instead of matching names.")
    g_names.add_argument("--namesep", default="|", help="Field separator used with --namefield.")

    g_bait = b.add_argument_group("Baiting")
    g_bait.add_argument("--baitid", type=float, default=99.0, help="Minimum percent identity for a bait hit.")
    g_bait.add_argument("--baitlength", type=int, default=100, help="Minimum alignment length for a bait hit.")
    g_bait.add_argument("--max-hits", type=int, default=10, help="Maximum bait hits per contig.")

    g_dup = b.add_argument_group("Duplicates")
    g_dup.add_argument("--dupcheck", action="store_true", help="Find and resolve duplicate baits before baiting.")
    g_dup.add_argument("--dupid", type=float, default=100.0, help="Minimum percent identity for duplicates.")
    g_dup.add_argument("--duplength", type=int, default=100, help="Minimum alignment length for duplicates.")
    g_dup.add_argument("--interactive", action="store_true", help="Choose which duplicate to keep at a prompt.")
    g_dup.add_argument("--resume", help="Checkpoint JSON from an earlier run to resume duplicate resolution.")

    g_tax = b.add_argument_group("Taxonomy lookups")
    g_tax.add_argument("--taxdb", help="BLAST database used to look up lineages of duplicate baits (e.g. nt).")
    g_tax.add_argument("--taxmin", type=float, default=0.25,
                       help="Fraction of lineages that must agree to extend the best-guess lineage.")
    g_tax.add_argument("--email", default=os.environ.get("NCBI_EMAIL", ""), help="Email for NCBI Entrez.")
    g_tax.add_argument("--api-key", default=os.environ.get("NCBI_API_KEY"), help="NCBI API key.")
    g_tax.add_argument("--remote-timeout", type=float, default=60.0, help="Entrez request timeout (seconds).")

    b.add_argument("--makeblastdb-exe", default="makeblastdb", help="Path/name of the makeblastdb executable.")
    b.add_argument("--output-format", choices=["tsv", "excel", "parquet"], default="tsv",
                   help="Format of the classification table.")
    _add_common(b)

    # dispatch
    d = sub.add_parser("dispatch", help="Run blastn on many FASTA files in parallel.", formatter_class=_Fmt)
    d.add_argument("--fastas", required=True, nargs="+",
                   help="FASTA files, or one directory of .fa/.fasta/.fna files.")
    d.add_argument("--db", required=True, help="BLAST database prefix.")
    d.add_argument("--out-dir", required=True, help="Directory for <name>.blast.tsv outputs.")
    d.add_argument("--jobs", type=int, default=1, help="Simultaneous blastn processes.")
    d.add_argument("--outfmt", default="qseqid sseqid pident length mismatch gapopen qstart qend sstart send evalue bitscore",
                   help="Tabular output columns (outfmt 6).")
    d.add_argument("--evalue", type=float, default=1e-5, help="Maximum E-value.")
    d.add_argument("--max-target-seqs", type=int, default=10, help="Maximum hits per query.")
    d.add_argument("--perc-identity", type=float, help="Minimum percent identity passed to blastn.")
    _add_common(d)

    # filter-fastq
    f = sub.add_parser("filter-fastq", help="Filter FASTQ reads by BLAST tabular hits.", formatter_class=_Fmt)
    f.add_argument("-i", "--fastq", required=True, help="Input FASTQ (optionally .gz).")
    f.add_argument("-t", "--blast", required=True, help="BLAST tabular output for the reads.")
    f.add_argument("-o", "--output", required=True, help="Output FASTQ.")
    f.add_argument("--mode", choices=["keep", "remove"], default="keep",
                   help="keep: write reads with a hit; remove: write reads without one.")
    f.add_argument("--columns", default="qseqid sseqid pident length evalue",
                   help="Columns of the BLAST table, in order.")
    f.add_argument("--min-identity", type=float, default=0.0, help="Minimum percent identity for a hit to count.")
    f.add_argument("--min-length", type=int, default=0, help="Minimum alignment length for a hit to count.")
    f.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO",
                   help="Logging verbosity.")
    return p


def _names_for(a, baits: SequenceStore) -> NameMapping:
    lineages = load_taxonomy_table(a.taxonomy) if a.taxonomy else {}
    if a.namefield is not None:
        mapping = NameMapping.from_field(baits.ids(), a.namefield, a.namesep)
        return NameMapping(mapping, lineages)
    names: List[str] = list(lineages)
    if a.library:
        names += load_name_list(a.library)
    if not names:
        raise SystemExit("Bait names are needed: give --taxonomy and/or --library, or --namefield.")
    return NameMapping.from_names(baits.ids(), names, lineages)


def cmd_bait(a) -> int:
    a.threads = validate_range("--threads", float(a.threads), 1, 1024, integer=True)
    a.baitid = validate_range("--baitid", float(a.baitid), 0.0, 100.0)
    a.dupid = validate_range("--dupid", float(a.dupid), 0.0, 100.0)
    a.taxmin = validate_range("--taxmin", float(a.taxmin), 0.0, 1.0)
    a.baitlength = validate_range("--baitlength", float(a.baitlength), 1, 10**9, integer=True)
    a.duplength = validate_range("--duplength", float(a.duplength), 1, 10**9, integer=True)
    a.max_hits = validate_range("--max-hits", float(a.max_hits), 1, 10000, integer=True)
    if a.resume and not os.path.isfile(a.resume):
        raise SystemExit(f"--resume file not found: {a.resume}")

    require_blast(a.blastn_exe, a.makeblastdb_exe)

    config = BaitConfig(
        baitid=a.baitid, baitlength=a.baitlength, max_bait_hits=a.max_hits,
        dupcheck=bool(a.dupcheck), dupid=a.dupid, duplength=a.duplength, interactive=bool(a.interactive),
        taxdb=a.taxdb, taxmin=a.taxmin, ncbi_email=a.email, ncbi_api_key=a.api_key,
        remote_timeout=a.remote_timeout, threads=a.threads, task=a.task,
        blastn_exe=a.blastn_exe, makeblastdb_exe=a.makeblastdb_exe, output_format=a.output_format,
    )

    print("Loading sequences...", flush=True)
    baits = SequenceStore.load(a.baits)
    contigs = SequenceStore.load(a.contigs)
    names = _names_for(a, baits)
    logger.info("Loaded %d bait(s) covering %d name(s) and %d contig(s)",
                len(baits), len(set(names.values())), len(contigs))

    res = run_baiting(baits, contigs, names, a.out, config, resume=a.resume)
    if res.halted:
        return 0
    print("\nOutputs:", flush=True)
    for key, path in res.outputs.items():
        print(f"  - {key}: {path}", flush=True)
    return 0


def cmd_dispatch(a) -> int:
    a.threads = validate_range("--threads", float(a.threads), 1, 1024, integer=True)
    a.jobs = validate_range("--jobs", float(a.jobs), 1, 1024, integer=True)
    require_blast(a.blastn_exe)

    fastas = a.fastas
    if len(fastas) == 1 and os.path.isdir(fastas[0]):
        fastas = discover_fastas(fastas[0])
    missing = [fa for fa in fastas if not os.path.isfile(fa)]
    if missing:
        raise SystemExit("FASTA file(s) not found: " + ", ".join(missing))
    if not fastas:
        raise SystemExit("No FASTA files were found.")

    cfg = DispatchConfig(
        db=a.db, out_dir=a.out_dir, jobs=a.jobs, threads=a.threads, task=a.task,
        outfmt=tuple(a.outfmt.split()), evalue=a.evalue, max_target_seqs=a.max_target_seqs,
        perc_identity=a.perc_identity, blastn_exe=a.blastn_exe,
    )
    results = dispatch_blast(fastas, cfg)
    failed = [r for r in results if not r.ok]
    print(f"Done: {len(results) - len(failed)} of {len(results)} BLAST job(s) succeeded.", flush=True)
    return 1 if failed else 0


def cmd_filter_fastq(a) -> int:
    cfg = FastqFilterConfig(mode=a.mode, columns=tuple(a.columns.split()),
                            min_identity=a.min_identity, min_length=a.min_length)
    written, total = filter_fastq(a.fastq, a.blast, a.output, cfg)
    print(f"Wrote {written} of {total} reads to {a.output}", flush=True)
    return 0


COMMANDS = {"bait": cmd_bait, "dispatch": cmd_dispatch, "filter-fastq": cmd_filter_fastq}


def main(argv: Optional[List[str]] = None):
    p = build_parser()
    a = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, a.log_level), format="%(levelname)s: %(message)s")
    try:
        return COMMANDS[a.command](a)
    except BlastBaitError as e:
        logger.error("%s", str(e).splitlines()[0] if str(e) else type(e).__name__)
        logger.debug("Details:\n%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
