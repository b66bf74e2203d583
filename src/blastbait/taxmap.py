"""Bait name mapping and supplied taxonomy tables.

Every bait id is mapped to exactly one taxonomic name, either by matching the
names of a supplied taxonomy/library against the id, or by taking a fixed field
of the id. Supplied taxonomy tables (CSV/TSV/parquet) also give each name a
lineage used to score duplicate sets.
"""

from __future__ import annotations
import os, re
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import pandas as pd

from .errors import FormatError, IdentifierError

CANON_RANKS = ["kingdom_name","phylum_name","class_name","order_name","family_name","genus_name","species_name"]
RANK_SYNONYMS = {
    "kingdom_name": ["kingdom_name","Kingdom","kingdom","domain","superkingdom","superkingdom_name"],
    "phylum_name":  ["phylum_name","Phylum","phylum","division","division_name"],
    "class_name":   ["class_name","Class","class"],
    "order_name":   ["order_name","Order","order"],
    "family_name":  ["family_name","Family","family"],
    "genus_name":   ["genus_name","Genus","genus"],
    "species_name": ["species_name","Species","species"],
}
NAME_CANDS = ["name","Name","taxon","Taxon","taxonomic_name","scientific_name"]
LINEAGE_CANDS = ["lineage","Lineage","taxonomy","Taxonomy"]
_PREFIX_RE = re.compile(r'^(kingdom|superkingdom|phylum|class|order|family|genus|species)\s+', re.I)
_TOKEN_SPLIT = re.compile(r"[^A-Za-z0-9]+")

def _clean_rank(val) -> str:
    if not isinstance(val, str): return "" if pd.isna(val) else str(val)
    return _PREFIX_RE.sub("", val.strip())

def split_lineage(text: str) -> List[str]:
    """Split a 'A; B; C' lineage string into its non-empty rank names."""
    if not isinstance(text, str): return []
    return [p for p in (_clean_rank(x) for x in text.split(";")) if p]

def _find_col(df: pd.DataFrame, cands: Sequence[str]) -> Optional[str]:
    low = {c.lower(): c for c in df.columns}
    for c in cands:
        if c in df.columns: return c
        if c.lower() in low: return low[c.lower()]
    return None

def _read_table(path: str) -> pd.DataFrame:
    lp = path.lower()
    if ".parquet" in os.path.basename(lp):
        return pd.read_parquet(path)
    if lp.endswith((".xlsx", ".xls")):
        return pd.read_excel(path, dtype=str)
    sep = "," if lp.endswith(".csv") else "\t"
    return pd.read_csv(path, sep=sep, dtype=str, na_filter=False)

def load_taxonomy_table(path: str) -> Dict[str, List[str]]:
    """Return name -> lineage from a taxonomy table.

    Two layouts are understood: a name column plus a semicolon-separated lineage
    column, or one column per rank (kingdom..species), in which case the name is
    the most specific non-empty rank.
    """
    try:
        df = _read_table(path)
    except (OSError, ValueError) as e:
        raise FormatError(f"{path}: cannot read taxonomy table ({e})") from e
    name_col = _find_col(df, NAME_CANDS)
    lin_col = _find_col(df, LINEAGE_CANDS)
    out: Dict[str, List[str]] = {}
    if lin_col is not None:
        for _, r in df.iterrows():
            lineage = split_lineage(r[lin_col])
            name = str(r[name_col]).strip() if name_col else (lineage[-1] if lineage else "")
            if name: out[name] = lineage
        return out
    rank_cols = []
    for dst in CANON_RANKS:
        found = _find_col(df, RANK_SYNONYMS[dst])
        if found: rank_cols.append(found)
    if not rank_cols:
        raise FormatError(f"{path}: no lineage or rank columns found in taxonomy table")
    for _, r in df.iterrows():
        lineage = [v for v in (_clean_rank(r[c]) for c in rank_cols) if v]
        if not lineage: continue
        name = str(r[name_col]).strip() if name_col else lineage[-1]
        out[name] = lineage
    return out

def load_name_list(path: str) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return [ln.strip() for ln in fh if ln.strip() and not ln.startswith("#")]
    except (OSError, UnicodeDecodeError) as e:
        raise FormatError(f"{path}: cannot read name list ({e})") from e

def _tokens(text: str) -> Tuple[str, ...]:
    return tuple(t for t in _TOKEN_SPLIT.split(text.lower()) if t)

def _contains(outer: Tuple[str, ...], inner: Tuple[str, ...]) -> bool:
    n = len(inner)
    return any(outer[i:i+n] == inner for i in range(len(outer) - n + 1))


class NameMapping(Mapping[str, str]):
    """Read-only bait id -> taxonomic name mapping."""

    def __init__(self, names: Mapping[str, str], lineages: Optional[Mapping[str, List[str]]] = None):
        self._names = dict(names)
        self._lineages = dict(lineages or {})

    def __getitem__(self, seq_id: str) -> str: return self._names[seq_id]
    def __iter__(self): return iter(self._names)
    def __len__(self) -> int: return len(self._names)

    @property
    def has_taxonomy(self) -> bool:
        return bool(self._lineages)

    def lineage_for(self, name: str) -> List[str]:
        return list(self._lineages.get(name, []))

    def count_by_name(self, ids: Iterable[str]) -> Dict[str, int]:
        return dict(Counter(self._names[i] for i in ids))

    @classmethod
    def from_field(cls, ids: Iterable[str], field: int, sep: str = "|") -> "NameMapping":
        """Take the name from a fixed (0-based) field of each id."""
        names = {}
        for seq_id in ids:
            parts = seq_id.split(sep)
            try:
                name = parts[field].strip()
            except IndexError:
                name = ""
            if not name:
                raise IdentifierError(f"Bait id '{seq_id}' has no field {field} when split on '{sep}'")
            names[seq_id] = name
        return cls(names)

    @classmethod
    def from_names(cls, ids: Iterable[str], names: Iterable[str],
                   lineages: Optional[Mapping[str, List[str]]] = None) -> "NameMapping":
        """Match each id against the known names.

        Names match whole word tokens of the id, with spaces, underscores and
        other punctuation treated alike, case-insensitively. When one matched
        name is contained in another ('Apis' in 'Apis mellifera') only the
        longer one counts. Anything other than exactly one match is an error.
        """
        by_tokens: Dict[Tuple[str, ...], str] = {}
        for nm in names:
            tk = _tokens(nm)
            if tk: by_tokens.setdefault(tk, nm)
        if not by_tokens:
            raise IdentifierError("No taxonomic names were supplied to match bait ids against")
        lengths = sorted({len(t) for t in by_tokens})

        mapped: Dict[str, str] = {}
        for seq_id in ids:
            id_tk = _tokens(seq_id)
            found = {}
            for n in lengths:
                for i in range(len(id_tk) - n + 1):
                    nm = by_tokens.get(id_tk[i:i+n])
                    if nm is not None: found[id_tk[i:i+n]] = nm
            keep = [tk for tk in found if not any(o != tk and _contains(o, tk) for o in found)]
            if len(keep) != 1:
                if not keep:
                    raise IdentifierError(f"Bait id '{seq_id}' does not match any supplied taxonomic name")
                raise IdentifierError(
                    f"Bait id '{seq_id}' matches several taxonomic names: {', '.join(sorted(found[k] for k in keep))}")
            mapped[seq_id] = found[keep[0]]
        return cls(mapped, lineages)
