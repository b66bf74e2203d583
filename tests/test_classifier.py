import pytest

from blastbait.classifier import Criterion, classify_contig, classify_contigs
from blastbait.errors import IdentifierError

from conftest import hit

NAMES = {"Foo1": "Foo", "Foo2": "Foo", "Foo3": "Foo", "Foo4": "Foo", "Bar1": "Bar", "Baz1": "Baz", "Baz2": "Baz"}
COUNTS = {"Foo": 4, "Bar": 1, "Baz": 2}


def test_no_hits():
    r = classify_contig("c", [], NAMES, COUNTS)
    assert r.criterion is Criterion.NO_MATCH
    assert r.assigned_name is None and r.match_count == 0


def test_only_match():
    r = classify_contig("c", [hit("c", "Foo2", 99.2)], NAMES, COUNTS)
    assert (r.assigned_name, r.criterion, r.representative) == ("Foo", Criterion.ONLY_MATCH, "Foo2")


def test_only_name_match():
    r = classify_contig("c", [hit("c", "Foo1", 99.0), hit("c", "Foo3", 100.0)], NAMES, COUNTS)
    assert r.assigned_name == "Foo"
    assert r.criterion is Criterion.ONLY_NAME_MATCH
    assert r.representative == "2 of 4 references of Foo, mean identity 99.50"


def test_single_reference_name_beats_larger_batch():
    hits = [hit("c", "Bar1", 100.0), hit("c", "Foo1", 99.5), hit("c", "Foo2", 99.5)]
    r = classify_contig("c", hits, NAMES, COUNTS)
    assert r.assigned_name == "Bar"
    assert r.criterion is Criterion.TOP_IDENTITY
    assert r.representative == "Bar1"
    assert r.match_count == 3


def test_top_name_batch():
    hits = [hit("c", "Baz1", 100.0), hit("c", "Baz2", 99.8), hit("c", "Foo1", 99.0)]
    r = classify_contig("c", hits, NAMES, COUNTS)
    assert r.assigned_name == "Baz"
    assert r.criterion is Criterion.TOP_NAME_BATCH
    assert r.representative.startswith("2 of 2 references of Baz")


def test_tie_is_not_distinct():
    hits = [hit("c", "Foo1", 100.0), hit("c", "Bar1", 100.0)]
    r = classify_contig("c", hits, NAMES, COUNTS)
    assert r.assigned_name is None
    assert r.criterion is Criterion.NO_DISTINCT_MATCH


def test_better_identity_but_lower_proportion_is_not_distinct():
    # Foo: higher identity, 1 of 4 hit; Bar: 1 of 1 hit
    hits = [hit("c", "Foo1", 100.0), hit("c", "Bar1", 99.0)]
    r = classify_contig("c", hits, NAMES, COUNTS)
    assert r.criterion is Criterion.NO_DISTINCT_MATCH


def test_classify_contigs_keeps_order_and_first_hsp():
    hits = [hit("c2", "Foo1", 99.0), hit("c2", "Foo1", 100.0)]
    results = classify_contigs(["c1", "c2"], hits, NAMES, COUNTS)
    assert [r.contig_id for r in results] == ["c1", "c2"]
    assert results[0].criterion is Criterion.NO_MATCH
    assert results[1].criterion is Criterion.ONLY_MATCH
    assert results[1].matches == {"Foo1": 99.0}


def test_single_best_reference_against_two_weaker_hits():
    hits = [hit("C1", "Foo1", 98.0), hit("C1", "Foo2", 97.0), hit("C1", "Bar1", 99.0)]
    r = classify_contig("C1", hits, NAMES, COUNTS)
    assert (r.assigned_name, r.criterion, r.representative) == ("Bar", Criterion.TOP_IDENTITY, "Bar1")


def test_unknown_reference_id_is_an_identifier_error():
    with pytest.raises(IdentifierError, match="not a bait id"):
        classify_contig("c", [hit("c", "gnl|BL_ORD_ID|7", 100.0)], NAMES, COUNTS)
    with pytest.raises(IdentifierError):
        classify_contig("c", [hit("c", "Foo1", 100.0), hit("c", "Qux9", 99.0)], NAMES, COUNTS)
