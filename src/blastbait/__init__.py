"""blastbait

BLAST-based tools for classifying sequencing data against barcode libraries.
This package provides a CLI for dispatching BLAST over many FASTA files,
filtering FASTQ reads by BLAST hits, and baiting assembled contigs against a
(deduplicated) reference barcode set.
"""

__all__ = [
    "alignment", "baiting", "checkpoint", "classifier", "cli", "config", "dispatch",
    "duplicates", "errors", "fastq_filter", "filtering", "io_utils", "resolver",
    "taxmap", "taxonomy",
]


__version__ = "1.0.0"
