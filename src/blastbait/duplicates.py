"""Duplicate barcode detection.

Baits that align to each other above the duplicate thresholds are grouped into
duplicate sets. Grouping is a single online pass over the hits in the order
blastn reported them, so chains of three or more sequences can end up split
across sets depending on that order.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .alignment import HitRecord
from .filtering import qualifying_hits
from .io_utils import SequenceStore
from .taxmap import NameMapping

logger = logging.getLogger("blastbait")


class Action(str, enum.Enum):
    KEEP_ONE = "keep-one"
    DELETE_ALL = "delete-all"
    KEEP_ALL = "keep-all"


class ResolutionState(str, enum.Enum):
    PENDING = "pending"
    AUTO_RESOLVED = "auto-resolved"
    INTERACTIVE_RESOLVED = "interactive-resolved"
    RESUMED = "resumed"
    APPLIED = "applied"
    QUIT = "quit"


@dataclass(frozen=True)
class Selection:
    action: Action
    ordinal: Optional[int] = None

    @classmethod
    def keep(cls, ordinal: int) -> "Selection":
        return cls(Action.KEEP_ONE, ordinal)

    def __str__(self) -> str:
        if self.action is Action.KEEP_ONE:
            return f"keep {self.ordinal}"
        return self.action.value


@dataclass
class DuplicateMember:
    sequence_id: str
    taxonomic_name: str
    sequence_length: int
    lineage: List[str] = field(default_factory=list)
    taxonomy_match_score: float = 0.0


@dataclass
class DuplicateSet:
    set_id: int
    members: Dict[int, DuplicateMember]
    best_guess_lineage: List[str] = field(default_factory=list)
    selection: Optional[Selection] = None
    state: ResolutionState = ResolutionState.PENDING

    def __post_init__(self):
        if len(self.members) < 2:
            raise ValueError(f"Duplicate set {self.set_id} needs at least two members")

    def sequence_ids(self) -> List[str]:
        return [m.sequence_id for m in self.members.values()]


def cluster_hits(hits: Iterable[HitRecord]) -> List[Set[str]]:
    """Group (query, subject) pairs into sets, keyed by the first query seen.

    If the subject already keys a set the query joins it; otherwise the subject
    joins the query's set, which is created on first use.
    """
    groups: Dict[str, Set[str]] = {}
    for h in hits:
        q, s = h.query_id, h.subject_id
        if q == s:
            continue
        if s in groups:
            groups[s].add(q)
        else:
            groups.setdefault(q, {q}).add(s)
    return [g for g in groups.values() if len(g) >= 2]


def build_duplicate_sets(
    hits: Iterable[HitRecord],
    store: SequenceStore,
    names: NameMapping,
    min_identity: float = 100.0,
    min_length: int = 100,
) -> List[DuplicateSet]:
    """Turn bait self-hits into numbered DuplicateSets."""
    qualifying = qualifying_hits(hits, min_identity, min_length, exclude_self=True)
    out: List[DuplicateSet] = []
    for group in cluster_hits(qualifying):
        members = {}
        for ordinal, seq_id in enumerate(sorted(group), start=1):
            name = names.get(seq_id, "")
            members[ordinal] = DuplicateMember(
                sequence_id=seq_id,
                taxonomic_name=name,
                sequence_length=store.length(seq_id),
                lineage=names.lineage_for(name),
            )
        out.append(DuplicateSet(set_id=len(out) + 1, members=members))
    logger.info("Found %d duplicate set(s) covering %d baits", len(out), sum(len(s.members) for s in out))
    return out
