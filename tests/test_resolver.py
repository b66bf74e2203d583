import pytest

from blastbait.duplicates import Action, DuplicateMember, DuplicateSet, ResolutionState, Selection
from blastbait.errors import InteractiveInputError
from blastbait.io_utils import SequenceStore
from blastbait.resolver import DuplicateResolver, auto_select, parse_answer


def _set(set_id=1, scores=(0.0, 0.0), ids=None):
    ids = ids or [f"s{set_id}_{i}" for i in range(1, len(scores) + 1)]
    members = {i: DuplicateMember(sid, "Apis", 650, ["Insecta"], score)
               for i, (sid, score) in enumerate(zip(ids, scores), start=1)}
    return DuplicateSet(set_id, members)


class Answers:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = 0

    def __call__(self, prompt):
        self.prompts += 1
        return self.answers.pop(0)


@pytest.mark.parametrize("scores,expected", [
    ((0.0, 0.0), Selection(Action.DELETE_ALL)),
    ((0.5, 0.5), Selection(Action.DELETE_ALL)),
    ((0.25, 0.75, 0.5), Selection.keep(2)),
    ((1.0, 0.0), Selection.keep(1)),
])
def test_auto_select(scores, expected):
    assert auto_select(_set(scores=scores)) == expected


def test_parse_answer():
    s = _set(scores=(0, 0, 0))
    assert parse_answer(" 2 ", s) == Selection.keep(2)
    assert parse_answer("D", s) == Selection(Action.DELETE_ALL)
    assert parse_answer("k", s) == Selection(Action.KEEP_ALL)
    assert parse_answer("q", s) == "quit"
    for bad in ("4", "0", "maybe", ""):
        with pytest.raises(InteractiveInputError):
            parse_answer(bad, s)


def test_non_interactive_resolution():
    sets = [_set(1, (0.0, 0.0)), _set(2, (0.2, 0.9))]
    outcome = DuplicateResolver(interactive=False).resolve(sets)
    assert not outcome.halted
    assert [s.state for s in sets] == [ResolutionState.AUTO_RESOLVED] * 2
    assert sets[0].selection.action is Action.DELETE_ALL
    assert sets[1].selection == Selection.keep(2)


def test_interactive_reprompts_on_invalid_input():
    answers = Answers("7", "two", "2")
    out = []
    sets = [_set(1, (0.0, 0.0))]
    outcome = DuplicateResolver(interactive=True, input_fn=answers, output_fn=out.append).resolve(sets)
    assert answers.prompts == 3
    assert sum(1 for line in out if line.startswith("Invalid input")) == 2
    assert sets[0].selection == Selection.keep(2)
    assert sets[0].state is ResolutionState.INTERACTIVE_RESOLVED
    assert not outcome.halted


def test_quit_halts_and_keeps_earlier_choices():
    sets = [_set(1), _set(2), _set(3)]
    outcome = DuplicateResolver(interactive=True, input_fn=Answers("1", "q"), output_fn=lambda s: None).resolve(sets)
    assert outcome.halted
    assert sets[0].selection == Selection.keep(1)
    assert sets[1].state is ResolutionState.QUIT and sets[1].selection is None
    assert sets[2].state is ResolutionState.PENDING


def test_resumed_sets_are_not_prompted():
    sets = [_set(1), _set(2)]
    sets[0].selection = Selection(Action.KEEP_ALL)
    answers = Answers("d")
    DuplicateResolver(interactive=True, input_fn=answers, output_fn=lambda s: None).resolve(sets)
    assert answers.prompts == 1
    assert sets[0].state is ResolutionState.RESUMED
    assert sets[1].selection.action is Action.DELETE_ALL


def test_apply_removes_losers_and_records_audit():
    store = SequenceStore({"a1": "A", "a2": "A", "b1": "C", "b2": "C", "c1": "G", "c2": "G", "z": "T"})
    sets = [_set(1, ids=["a1", "a2"]), _set(2, ids=["b1", "b2"]), _set(3, ids=["c1", "c2"])]
    sets[0].selection = Selection.keep(2)
    sets[1].selection = Selection(Action.DELETE_ALL)
    sets[2].selection = Selection(Action.KEEP_ALL)
    resolver = DuplicateResolver()
    audit = resolver.apply(resolver.resolve(sets), store)
    assert store.ids() == ["a2", "c1", "c2", "z"]
    assert [(r.sequence_id, r.action) for r in audit] == [
        ("a1", "deleted"), ("a2", "selected"), ("b1", "deleted"), ("b2", "deleted"),
        ("c1", "kept"), ("c2", "kept"),
    ]
    assert all(s.state is ResolutionState.APPLIED for s in sets)


def test_apply_refuses_halted_outcome():
    sets = [_set(1)]
    resolver = DuplicateResolver(interactive=True, input_fn=Answers("q"), output_fn=lambda s: None)
    outcome = resolver.resolve(sets)
    with pytest.raises(RuntimeError):
        resolver.apply(outcome, SequenceStore({}))


def test_annotate_scores_members():
    class Taxonomy:
        def resolve(self, sequences):
            return ["Insecta", "Apis"]

    sets = [_set(1)]
    sets[0].members[2].lineage = ["Insecta", "Bombus"]
    store = SequenceStore({"s1_1": "A", "s1_2": "A"})
    DuplicateResolver(taxonomy=Taxonomy()).annotate(sets, store)
    assert sets[0].best_guess_lineage == ["Insecta", "Apis"]
    assert sets[0].members[1].taxonomy_match_score == 1.0
    assert sets[0].members[2].taxonomy_match_score == 0.5


@pytest.mark.parametrize("exc", [EOFError, KeyboardInterrupt])
def test_end_of_input_halts_like_quit(exc):
    answers = ["2"]

    def read(prompt):
        if answers:
            return answers.pop(0)
        raise exc()

    sets = [_set(1), _set(2)]
    outcome = DuplicateResolver(interactive=True, input_fn=read, output_fn=lambda s: None).resolve(sets)
    assert outcome.halted
    assert sets[0].selection == Selection.keep(2)
    assert sets[1].state is ResolutionState.QUIT
