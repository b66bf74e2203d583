"""Contig classification against the bait set.

Hits of each contig are grouped by the taxonomic name of the bait they hit.
A name is assigned only when the evidence points at one name: a single hit, a
single name, or one name that beats every other on both mean identity and the
proportion of its baits that were hit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .alignment import HitRecord
from .errors import IdentifierError
from .filtering import first_hit_per_pair, group_by_query


class Criterion(str, enum.Enum):
    NO_MATCH = "no-match"
    ONLY_MATCH = "only-match"
    ONLY_NAME_MATCH = "only-name-match"
    TOP_IDENTITY = "top-identity"
    TOP_NAME_BATCH = "top-name-batch"
    NO_DISTINCT_MATCH = "no-distinct-match"


@dataclass
class NameScore:
    name: str
    identities: Dict[str, float]
    total_refs: int

    @property
    def mean_identity(self) -> float:
        return sum(self.identities.values()) / len(self.identities)

    @property
    def proportion(self) -> float:
        return len(self.identities) / self.total_refs if self.total_refs else 0.0

    def summary(self) -> str:
        return (f"{len(self.identities)} of {self.total_refs} references of {self.name}, "
                f"mean identity {self.mean_identity:.2f}")


@dataclass
class ClassificationResult:
    contig_id: str
    matches: Dict[str, float] = field(default_factory=dict)
    assigned_name: Optional[str] = None
    criterion: Criterion = Criterion.NO_MATCH
    representative: Optional[str] = None

    @property
    def match_count(self) -> int:
        return len(self.matches)


def _name_of(ref_id: str, names: Mapping[str, str]) -> str:
    try:
        return names[ref_id]
    except KeyError:
        raise IdentifierError(f"BLAST reported reference '{ref_id}', which is not a bait id") from None


def score_names(hits: Iterable[HitRecord], names: Mapping[str, str],
                ref_counts: Mapping[str, int]) -> List[NameScore]:
    scores: Dict[str, NameScore] = {}
    for h in hits:
        nm = _name_of(h.subject_id, names)
        if nm not in scores:
            scores[nm] = NameScore(nm, {}, ref_counts.get(nm, 0))
        scores[nm].identities[h.subject_id] = h.percent_identity
    return list(scores.values())


def classify_contig(contig_id: str, hits: List[HitRecord], names: Mapping[str, str],
                    ref_counts: Mapping[str, int]) -> ClassificationResult:
    res = ClassificationResult(contig_id, {h.subject_id: h.percent_identity for h in hits})
    if not hits:
        return res
    if len(hits) == 1:
        res.assigned_name = _name_of(hits[0].subject_id, names)
        res.criterion = Criterion.ONLY_MATCH
        res.representative = hits[0].subject_id
        return res

    ranked = sorted(score_names(hits, names, ref_counts), key=lambda s: (s.mean_identity, s.proportion))
    top = ranked[-1]
    if len(ranked) == 1:
        res.assigned_name = top.name
        res.criterion = Criterion.ONLY_NAME_MATCH
        res.representative = top.summary()
        return res

    runner_up = ranked[-2]
    if top.mean_identity > runner_up.mean_identity and top.proportion > runner_up.proportion:
        res.assigned_name = top.name
        if len(top.identities) == 1:
            res.criterion = Criterion.TOP_IDENTITY
            res.representative = next(iter(top.identities))
        else:
            res.criterion = Criterion.TOP_NAME_BATCH
            res.representative = top.summary()
        return res

    res.criterion = Criterion.NO_DISTINCT_MATCH
    return res


def classify_contigs(contig_ids: Iterable[str], hits: Iterable[HitRecord], names: Mapping[str, str],
                     ref_counts: Mapping[str, int]) -> List[ClassificationResult]:
    """Classify every contig in ``contig_ids``, in that order.

    ``hits`` must already be trimmed to the baiting thresholds; ``ref_counts``
    is the number of baits per name in the (deduplicated) bait set.
    """
    by_contig = group_by_query(first_hit_per_pair(hits))
    return [classify_contig(cid, by_contig.get(cid, []), names, ref_counts) for cid in contig_ids]
