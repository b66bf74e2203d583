"""Parallel BLAST dispatch.

Runs one blastn job per FASTA file against a shared database. ``jobs`` blastn
processes run at once and each uses ``threads`` threads, so the host needs
roughly jobs x threads CPUs. Jobs share nothing; they may finish in any order.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Sequence

from tqdm import tqdm

from .config import DispatchConfig

logger = logging.getLogger("blastbait")


@dataclass(frozen=True)
class DispatchResult:
    fasta: str
    output: str
    returncode: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def output_path(fasta: str, out_dir: str) -> str:
    base = os.path.basename(fasta)
    for suf in (".gz", ".fasta", ".fas", ".fna", ".fa"):
        if base.lower().endswith(suf):
            base = base[: -len(suf)]
    return os.path.join(out_dir, f"{base}.blast.tsv")


def build_command(fasta: str, out_path: str, cfg: DispatchConfig) -> List[str]:
    cmd = [cfg.blastn_exe, "-query", fasta, "-db", cfg.db, "-out", out_path,
           "-outfmt", "6 " + " ".join(cfg.outfmt), "-task", cfg.task,
           "-evalue", str(cfg.evalue), "-max_target_seqs", str(cfg.max_target_seqs),
           "-num_threads", str(cfg.threads)]
    if cfg.perc_identity:
        cmd += ["-perc_identity", str(cfg.perc_identity)]
    cmd += list(cfg.extra_args)
    return cmd


class _Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self.value = 0

    def increment(self) -> int:
        with self._lock:
            self.value += 1
            return self.value


def _run_one(fasta: str, cfg: DispatchConfig) -> DispatchResult:
    out = output_path(fasta, cfg.out_dir)
    cmd = build_command(fasta, out, cfg)
    logger.debug("CMD: %s", shlex.join(cmd))
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        return DispatchResult(fasta, out, 127, str(e))
    except OSError as e:
        return DispatchResult(fasta, out, 126, str(e))
    return DispatchResult(fasta, out, r.returncode, (r.stderr or "").strip())


def dispatch_blast(fastas: Sequence[str], cfg: DispatchConfig) -> List[DispatchResult]:
    """Run blastn for every FASTA and return one result per file (completion order)."""
    os.makedirs(cfg.out_dir, exist_ok=True)
    total = len(fastas)
    workers = max(1, min(cfg.jobs, total or 1))
    print(f"Starting BLAST: {total} file(s) | jobs={workers} | threads per job={cfg.threads} "
          f"| total threads={workers * cfg.threads}", flush=True)
    if workers * cfg.threads > (os.cpu_count() or 1):
        logger.warning("jobs x threads (%d) exceeds the %d available CPUs", workers * cfg.threads, os.cpu_count() or 1)

    done = _Counter()
    results: List[DispatchResult] = []
    with tqdm(total=total, desc="BLAST", unit="file", dynamic_ncols=True, leave=True) as pbar, \
            ThreadPoolExecutor(max_workers=workers) as ex:
        futs = {ex.submit(_run_one, fa, cfg): fa for fa in fastas}
        for fut in as_completed(futs):
            res = fut.result()
            n = done.increment()
            results.append(res)
            pbar.update(1)
            if res.ok:
                logger.info("[%d/%d] %s -> %s", n, total, os.path.basename(res.fasta), res.output)
            else:
                logger.error("[%d/%d] blastn failed for %s (exit %d): %s", n, total, res.fasta,
                             res.returncode, res.stderr.splitlines()[-1] if res.stderr else "")
    return results
