"""Duplicate-resolution checkpoints.

A checkpoint holds every duplicate set (members, lineages, scores) and the
selection made for it so far, so an interactive session can be resumed in a
later run without re-running BLAST or the taxonomy lookups.

Schema (version 1)::

    {"format": "blastbait-checkpoint", "version": 1, "created_at": "...",
     "sets": [{"set_id": 1, "best_guess_lineage": [...],
               "selection": {"action": "keep-one", "ordinal": 2} | null,
               "members": [{"ordinal": 1, "sequence_id": "...", "taxonomic_name": "...",
                            "sequence_length": 650, "lineage": [...],
                            "taxonomy_match_score": 0.5}, ...]}, ...]}
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .duplicates import Action, DuplicateMember, DuplicateSet, Selection
from .errors import CheckpointError

CHECKPOINT_FORMAT = "blastbait-checkpoint"
CHECKPOINT_VERSION = 1


def _selection_to_json(sel):
    if sel is None:
        return None
    return {"action": sel.action.value, "ordinal": sel.ordinal}


def _selection_from_json(data):
    if data is None:
        return None
    action = Action(data["action"])
    ordinal = data.get("ordinal")
    if action is Action.KEEP_ONE and not isinstance(ordinal, int):
        raise ValueError("keep-one selection without a member ordinal")
    return Selection(action, ordinal if action is Action.KEEP_ONE else None)


def sets_to_payload(sets: Sequence[DuplicateSet]) -> Dict[str, Any]:
    return {
        "format": CHECKPOINT_FORMAT,
        "version": CHECKPOINT_VERSION,
        "created_at": datetime.now().isoformat(timespec="seconds"),
        "sets": [
            {
                "set_id": s.set_id,
                "best_guess_lineage": list(s.best_guess_lineage),
                "selection": _selection_to_json(s.selection),
                "members": [
                    {
                        "ordinal": ordinal,
                        "sequence_id": m.sequence_id,
                        "taxonomic_name": m.taxonomic_name,
                        "sequence_length": m.sequence_length,
                        "lineage": list(m.lineage),
                        "taxonomy_match_score": m.taxonomy_match_score,
                    }
                    for ordinal, m in s.members.items()
                ],
            }
            for s in sets
        ],
    }


def sets_from_payload(data: Any) -> List[DuplicateSet]:
    if not isinstance(data, dict) or data.get("format") != CHECKPOINT_FORMAT:
        raise CheckpointError("not a blastbait checkpoint")
    if data.get("version") != CHECKPOINT_VERSION:
        raise CheckpointError(f"unsupported checkpoint version {data.get('version')!r}")
    out: List[DuplicateSet] = []
    try:
        for s in data["sets"]:
            members = {
                int(m["ordinal"]): DuplicateMember(
                    sequence_id=str(m["sequence_id"]),
                    taxonomic_name=str(m.get("taxonomic_name", "")),
                    sequence_length=int(m["sequence_length"]),
                    lineage=[str(x) for x in m.get("lineage", [])],
                    taxonomy_match_score=float(m.get("taxonomy_match_score", 0.0)),
                )
                for m in s["members"]
            }
            selection = _selection_from_json(s.get("selection"))
            if selection is not None and selection.ordinal is not None and selection.ordinal not in members:
                raise ValueError(f"set {s['set_id']} selects unknown member {selection.ordinal}")
            out.append(DuplicateSet(
                set_id=int(s["set_id"]),
                members=members,
                best_guess_lineage=[str(x) for x in s.get("best_guess_lineage", [])],
                selection=selection,
            ))
    except (KeyError, TypeError, ValueError) as e:
        raise CheckpointError(f"malformed checkpoint: {e}") from e
    return out


def save_checkpoint(path: str, sets: Sequence[DuplicateSet]) -> Path:
    """Write the checkpoint atomically; an older file is only replaced once the new one is complete."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(sets_to_payload(sets), fh, indent=2)
            fh.write("\n")
        os.replace(tmp, p)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return p


def load_checkpoint(path: str) -> List[DuplicateSet]:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as e:
        raise CheckpointError(f"{path}: cannot read checkpoint ({e})") from e
    except json.JSONDecodeError as e:
        raise CheckpointError(f"{path}: checkpoint is not valid JSON ({e})") from e
    try:
        return sets_from_payload(data)
    except CheckpointError as e:
        raise CheckpointError(f"{path}: {e}") from e
