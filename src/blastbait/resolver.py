"""Duplicate set resolution.

Each set starts PENDING and is resolved in one of three ways:

- RESUMED: a selection was restored from a checkpoint;
- AUTO_RESOLVED: non-interactive runs keep the member with the single best
  taxonomy match score, or delete the whole set when there is no clear winner;
- INTERACTIVE_RESOLVED: the user picks a member, delete-all or keep-all.

Answering ``quit`` moves the set to QUIT and stops resolution; the caller is
expected to save a checkpoint and halt. Deletions are only applied once every
set is resolved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from tqdm import tqdm

from .duplicates import Action, DuplicateSet, ResolutionState, Selection
from .errors import InteractiveInputError
from .io_utils import SequenceStore
from .taxonomy import TaxonomyResolver, taxonomy_match_score

logger = logging.getLogger("blastbait")

_QUIT = "quit"


@dataclass
class AuditRecord:
    set_id: int
    ordinal: int
    sequence_id: str
    length: int
    name: str
    blast_lineage: str
    supplied_lineage: str
    action: str


@dataclass
class ResolutionOutcome:
    sets: List[DuplicateSet]
    halted: bool = False
    audit: List[AuditRecord] = field(default_factory=list)


def auto_select(dset: DuplicateSet) -> Selection:
    """Keep the member with a positive score strictly above every other; else delete all."""
    ranked = sorted(dset.members.items(), key=lambda kv: kv[1].taxonomy_match_score, reverse=True)
    top_ordinal, top = ranked[0]
    runner_up = ranked[1][1].taxonomy_match_score if len(ranked) > 1 else 0.0
    if top.taxonomy_match_score > 0 and top.taxonomy_match_score > runner_up:
        return Selection.keep(top_ordinal)
    return Selection(Action.DELETE_ALL)


def parse_answer(text: str, dset: DuplicateSet):
    """Map a prompt answer to a Selection, or the quit marker."""
    s = text.strip().lower()
    if s in {"q", "quit"}:
        return _QUIT
    if s in {"d", "delete", "delete-all"}:
        return Selection(Action.DELETE_ALL)
    if s in {"k", "keep", "keep-all"}:
        return Selection(Action.KEEP_ALL)
    if s.isdigit() and int(s) in dset.members:
        return Selection.keep(int(s))
    raise InteractiveInputError(f"'{text.strip()}' is not a member number, d, k or q")


def describe_set(dset: DuplicateSet, total: int) -> str:
    lines = [f"\nDuplicate set {dset.set_id} of {total}"]
    if dset.best_guess_lineage:
        lines.append("  Best-guess lineage: " + "; ".join(dset.best_guess_lineage))
    for ordinal, m in dset.members.items():
        row = f"  [{ordinal}] {m.sequence_id}  name={m.taxonomic_name or 'NA'}  length={m.sequence_length}"
        if m.lineage:
            row += f"  score={m.taxonomy_match_score:.2f}  lineage={'; '.join(m.lineage)}"
        lines.append(row)
    return "\n".join(lines)


class DuplicateResolver:
    def __init__(
        self,
        interactive: bool = False,
        taxonomy: Optional[TaxonomyResolver] = None,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.interactive = interactive
        self.taxonomy = taxonomy
        self._input = input_fn
        self._output = output_fn

    def annotate(self, sets: Sequence[DuplicateSet], store: SequenceStore) -> None:
        """Fill best-guess lineages and member scores for sets still pending."""
        if self.taxonomy is None:
            return
        pending = [s for s in sets if s.selection is None]
        for dset in tqdm(pending, desc="Duplicate taxonomy", unit="set", dynamic_ncols=True, leave=True):
            dset.best_guess_lineage = self.taxonomy.resolve(store.subset(dset.sequence_ids()))
            for m in dset.members.values():
                m.taxonomy_match_score = taxonomy_match_score(m.lineage, dset.best_guess_lineage)

    def prompt(self, dset: DuplicateSet, total: int):
        self._output(describe_set(dset, total))
        while True:
            try:
                answer = self._input("Keep which member? (number / d=delete all / k=keep all / q=quit): ")
            except (EOFError, KeyboardInterrupt):
                # closed stdin or Ctrl-C: stop as if the user had quit
                self._output("")
                return _QUIT
            try:
                return parse_answer(answer, dset)
            except InteractiveInputError as e:
                self._output(f"Invalid input: {e}")

    def resolve(self, sets: Sequence[DuplicateSet]) -> ResolutionOutcome:
        total = len(sets)
        for dset in sets:
            if dset.state is not ResolutionState.PENDING:
                continue
            if dset.selection is not None:
                dset.state = ResolutionState.RESUMED
            elif not self.interactive:
                dset.selection = auto_select(dset)
                dset.state = ResolutionState.AUTO_RESOLVED
            else:
                answer = self.prompt(dset, total)
                if answer == _QUIT:
                    dset.state = ResolutionState.QUIT
                    logger.info("Quit requested at duplicate set %d", dset.set_id)
                    return ResolutionOutcome(sets=list(sets), halted=True)
                dset.selection = answer
                dset.state = ResolutionState.INTERACTIVE_RESOLVED
            logger.debug("Duplicate set %d: %s (%s)", dset.set_id, dset.selection, dset.state.value)
        return ResolutionOutcome(sets=list(sets))

    def apply(self, outcome: ResolutionOutcome, store: SequenceStore) -> List[AuditRecord]:
        """Delete the unselected baits from ``store`` and record what happened."""
        if outcome.halted:
            raise RuntimeError("Cannot apply deletions after resolution was halted")
        to_delete: List[str] = []
        for dset in outcome.sets:
            if dset.state is ResolutionState.APPLIED:
                continue
            sel = dset.selection
            for ordinal, m in dset.members.items():
                if sel.action is Action.KEEP_ALL:
                    action = "kept"
                elif sel.action is Action.KEEP_ONE and ordinal == sel.ordinal:
                    action = "selected"
                else:
                    action = "deleted"
                    to_delete.append(m.sequence_id)
                outcome.audit.append(AuditRecord(
                    set_id=dset.set_id, ordinal=ordinal, sequence_id=m.sequence_id,
                    length=m.sequence_length, name=m.taxonomic_name,
                    blast_lineage="; ".join(dset.best_guess_lineage),
                    supplied_lineage="; ".join(m.lineage), action=action,
                ))
            dset.state = ResolutionState.APPLIED
        removed = store.remove(to_delete)
        logger.info("Removed %d duplicate bait(s); %d remain", removed, len(store))
        return outcome.audit
