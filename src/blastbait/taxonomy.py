"""Best-guess taxonomy for groups of sequences.

Each sequence is BLASTed against a large reference database, the hit
accessions are resolved to NCBI taxids and then to lineages with Bio.Entrez,
and the lineages are intersected into a single best-guess lineage.

Remote lookup problems never abort a run: they are logged and the group is
treated as having no taxonomy.
"""

from __future__ import annotations

import logging
import socket
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence
from urllib.error import HTTPError, URLError

from Bio import Entrez

from .alignment import AlignmentOptions, align
from .config import TAXONOMY_COLUMNS, BaitConfig
from .errors import RemoteLookupFailure
from .taxmap import split_lineage

logger = logging.getLogger("blastbait")

_ENTREZ_ERRORS = (HTTPError, URLError, RuntimeError, ValueError, KeyError, OSError)


def configure_entrez(email: str, api_key: Optional[str] = None, retries: int = 1) -> None:
    if not email:
        logger.warning("NCBI email is not set. Use --email or NCBI_EMAIL.")
    Entrez.email = email or ""
    if api_key:
        Entrez.api_key = api_key
    Entrez.max_tries = 1 + max(0, retries)


@contextmanager
def _socket_timeout(seconds: Optional[float]) -> Iterator[None]:
    # Bio.Entrez opens URLs without a timeout of its own.
    previous = socket.getdefaulttimeout()
    socket.setdefaulttimeout(seconds)
    try:
        yield
    finally:
        socket.setdefaulttimeout(previous)


def fetch_taxids(accessions: Sequence[str]) -> Dict[str, str]:
    """Return accession -> taxid from one batched nucleotide esummary."""
    if not accessions:
        return {}
    try:
        with Entrez.esummary(db="nucleotide", id=",".join(accessions)) as handle:
            records = Entrez.read(handle)
    except _ENTREZ_ERRORS as e:
        raise RemoteLookupFailure(f"nucleotide esummary failed: {e}") from e
    out: Dict[str, str] = {}
    for rec in records:
        taxid = str(rec.get("TaxId", "") or "")
        if not taxid or taxid == "0":
            continue
        for key in ("AccessionVersion", "Caption"):
            acc = str(rec.get(key, "") or "")
            if acc:
                out[acc] = taxid
    if not out:
        raise RemoteLookupFailure("nucleotide esummary returned no taxids")
    return out


def fetch_lineages(taxids: Sequence[str]) -> Dict[str, str]:
    """Return taxid -> 'root; ...; name' from one batched taxonomy efetch."""
    if not taxids:
        return {}
    try:
        with Entrez.efetch(db="taxonomy", id=",".join(taxids), retmode="xml") as handle:
            records = Entrez.read(handle)
    except _ENTREZ_ERRORS as e:
        raise RemoteLookupFailure(f"taxonomy efetch failed: {e}") from e
    out: Dict[str, str] = {}
    for rec in records:
        taxid = str(rec.get("TaxId", ""))
        lineage = str(rec.get("Lineage", "") or "")
        name = str(rec.get("ScientificName", "") or "")
        if taxid:
            out[taxid] = "; ".join(p for p in (lineage, name) if p)
    if not out:
        raise RemoteLookupFailure("taxonomy efetch returned no lineages")
    return out


def best_guess_lineage(lineages: Sequence[Sequence[str]], taxmin: float = 0.25) -> List[str]:
    """Intersect lineages into the deepest rank most of them agree on.

    The first lineage is the reference. A rank is accepted while the fraction of
    the other lineages carrying the same name at that position is above
    ``taxmin``; the result is always a prefix of the first lineage.
    """
    if not lineages:
        return []
    ref = list(lineages[0])
    others = lineages[1:]
    depth = 0
    for i, name in enumerate(ref):
        if others:
            agree = sum(1 for o in others if len(o) > i and o[i] == name)
            frac = agree / len(others)
        else:
            frac = 1.0
        if frac <= taxmin:
            break
        depth = i + 1
    return ref[:depth]


def taxonomy_match_score(lineage: Sequence[str], best_guess: Sequence[str]) -> float:
    if not lineage:
        return 0.0
    guess = set(best_guess)
    return sum(1 for name in lineage if name in guess) / len(lineage)


class TaxonomyResolver:
    """Resolve a best-guess lineage for a group of sequences."""

    def __init__(
        self,
        config: BaitConfig,
        aligner: Callable[..., list] = align,
        taxid_fetcher: Callable[[Sequence[str]], Dict[str, str]] = fetch_taxids,
        lineage_fetcher: Callable[[Sequence[str]], Dict[str, str]] = fetch_lineages,
    ):
        self.config = config
        self._align = aligner
        self._fetch_taxids = taxid_fetcher
        self._fetch_lineages = lineage_fetcher
        self._lineage_cache: Dict[str, List[str]] = {}
        self.options = AlignmentOptions(
            max_hits=config.tax_max_hits,
            threads=config.threads,
            task=config.task,
            blastn_exe=config.blastn_exe,
        )

    def accessions_for(self, sequences: Mapping[str, str]) -> List[str]:
        accessions: List[str] = []
        seen = set()
        for seq_id, bases in sequences.items():
            hits = self._align({seq_id: bases}, self.config.taxdb, self.options, TAXONOMY_COLUMNS)
            for h in hits:
                acc = h.subject_accession
                if acc and acc not in seen:
                    seen.add(acc)
                    accessions.append(acc)
        return accessions

    def lineages_for(self, accessions: Sequence[str]) -> List[List[str]]:
        taxids = self._fetch_taxids(accessions)
        missing = sorted({t for t in taxids.values() if t not in self._lineage_cache})
        if missing:
            for taxid, text in self._fetch_lineages(missing).items():
                self._lineage_cache[taxid] = split_lineage(text)
        out = []
        for acc in accessions:
            taxid = taxids.get(acc) or taxids.get(acc.split(".")[0])
            lineage = self._lineage_cache.get(taxid) if taxid else None
            if lineage:
                out.append(lineage)
        return out

    def resolve(self, sequences: Mapping[str, str]) -> List[str]:
        """Return the best-guess lineage for ``sequences`` (empty if unknown)."""
        accessions = self.accessions_for(sequences)
        if not accessions:
            logger.info("No reference hits for %s; no taxonomy available", ", ".join(sequences))
            return []
        try:
            with _socket_timeout(self.config.remote_timeout):
                lineages = self.lineages_for(accessions)
        except RemoteLookupFailure as e:
            logger.warning("Taxonomy lookup failed for %s: %s", ", ".join(sequences), e)
            return []
        return best_guess_lineage(lineages, self.config.taxmin)
