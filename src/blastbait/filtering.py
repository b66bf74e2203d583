"""Hit filtering helpers.

Threshold trimming of BLAST hits and per-query grouping used by the duplicate
finder and the classifier.
"""

from __future__ import annotations
from typing import Dict, Iterable, List

from .alignment import HitRecord

def qualifying_hits(hits: Iterable[HitRecord], min_identity: float = 0.0, min_length: int = 0,
                    exclude_self: bool = False) -> List[HitRecord]:
    out = []
    for h in hits:
        if exclude_self and h.query_id == h.subject_id: continue
        if h.percent_identity < min_identity: continue
        if h.alignment_length < min_length: continue
        out.append(h)
    return out

def first_hit_per_pair(hits: Iterable[HitRecord]) -> List[HitRecord]:
    # blastn lists the best HSP first; later rows for the same pair are extra HSPs
    seen=set(); out=[]
    for h in hits:
        key=(h.query_id, h.subject_id)
        if key in seen: continue
        seen.add(key); out.append(h)
    return out

def group_by_query(hits: Iterable[HitRecord]) -> Dict[str, List[HitRecord]]:
    groups: Dict[str, List[HitRecord]] = {}
    for h in hits:
        groups.setdefault(h.query_id, []).append(h)
    return groups
