"""
Tests for the physical quad table and shadow graph naming.
"""
import pytest

from rdf_forkstore.errors import MalformedPatternError
from rdf_forkstore.storage.graphs import (
    BASE_GRAPH_STRING,
    ShadowKind,
    addition_graph_for,
    is_shadow_graph,
    merged_graph_for,
    parse_shadow_graph,
    removal_graph_for,
    target_graph_of,
)
from rdf_forkstore.storage.quads import QuadTable, validate_pattern
from rdf_forkstore.terms import Namespace, Quad, literal

EX = Namespace("http://example.org/")
G = EX("graph")


@pytest.fixture
def table():
    table = QuadTable()
    table.add([
        Quad(EX("alice"), EX("name"), literal("Alice"), G),
        Quad(EX("alice"), EX("knows"), EX("bob"), G),
        Quad(EX("bob"), EX("name"), literal("Bob"), G),
        Quad(EX("bob"), EX("name"), literal("Bob"), EX("other")),
    ])
    return table


class TestQuadTable:
    """Tests for QuadTable."""

    def test_add_and_len(self, table):
        assert len(table) == 4

    def test_add_is_idempotent(self, table):
        """Adding an existing quad is a no-op."""
        added = table.add([Quad(EX("alice"), EX("name"), literal("Alice"), G)])
        assert added == 0
        assert len(table) == 4

    def test_add_dedupes_within_batch(self):
        table = QuadTable()
        quad = Quad(EX("s"), EX("p"), EX("o"), G)
        assert table.add([quad, quad]) == 1

    def test_add_requires_graph(self):
        with pytest.raises(MalformedPatternError):
            QuadTable().add([Quad(EX("s"), EX("p"), EX("o"))])

    def test_match_by_subject(self, table):
        quads = table.match(subject=EX("alice"))
        assert [q.predicate for q in quads] == [EX("name"), EX("knows")]

    def test_match_by_graph(self, table):
        assert len(table.match(graph=EX("other"))) == 1
        assert len(table.match(graph=G)) == 3

    def test_match_preserves_insertion_order(self):
        """Quads come back in the order they were first added."""
        table = QuadTable()
        objects = [literal(str(i)) for i in range(10)]
        table.add([Quad(EX("s"), EX("p"), o, G) for o in reversed(objects)])
        assert [q.object for q in table.match(graph=G)] == list(reversed(objects))

    def test_match_unknown_term_is_empty(self, table):
        assert table.match(subject=EX("nobody")) == []

    def test_contains(self, table):
        assert table.contains(Quad(EX("bob"), EX("name"), literal("Bob"), G))
        assert not table.contains(Quad(EX("bob"), EX("name"), literal("Robert"), G))

    def test_remove(self, table):
        removed = table.remove([
            Quad(EX("alice"), EX("name"), literal("Alice"), G),
            Quad(EX("nobody"), EX("name"), literal("Nobody"), G),
        ])
        assert removed == 1
        assert table.match(subject=EX("alice"), predicate=EX("name")) == []

    def test_remove_keeps_order(self, table):
        table.remove([Quad(EX("alice"), EX("knows"), EX("bob"), G)])
        assert [q.subject for q in table.match(graph=G)] == [EX("alice"), EX("bob")]

    def test_remove_matches(self, table):
        """Pattern removal deletes across every matching graph."""
        assert table.remove_matches(subject=EX("bob")) == 2
        assert table.match(subject=EX("bob")) == []

    def test_graphs(self, table):
        assert table.graphs() == [G, EX("other")]

    def test_count(self, table):
        assert table.count() == 4
        assert table.count(EX("other")) == 1

    def test_clear(self, table):
        table.clear()
        assert len(table) == 0
        assert table.graphs() == []

    def test_stats(self, table):
        stats = table.stats()
        assert stats["quads"] == 4
        assert stats["graphs"] == 2


class TestValidatePattern:
    """Tests for pattern validation."""

    def test_wildcards_are_valid(self):
        validate_pattern()

    def test_literal_subject(self):
        with pytest.raises(MalformedPatternError):
            validate_pattern(subject=literal("x"))

    def test_literal_predicate(self):
        with pytest.raises(MalformedPatternError):
            validate_pattern(predicate=literal("x"))

    def test_literal_graph(self):
        with pytest.raises(MalformedPatternError):
            validate_pattern(graph=literal("x"))

    def test_non_term(self):
        """Plain strings are rejected rather than silently matching nothing."""
        with pytest.raises(MalformedPatternError):
            validate_pattern(subject="http://example.org/s")

    def test_table_match_validates(self, table):
        with pytest.raises(MalformedPatternError):
            table.match(predicate=literal("name"))


class TestShadowGraphs:
    """Tests for shadow graph naming."""

    def test_addition_graph_name(self):
        graph = addition_graph_for(EX("card"))
        assert graph.value == f"{BASE_GRAPH_STRING}/graphs/add?for=http%3A%2F%2Fexample.org%2Fcard"

    def test_removal_and_merged_names(self):
        assert removal_graph_for(G).value.startswith(f"{BASE_GRAPH_STRING}/graphs/del?for=")
        assert merged_graph_for(G).value.startswith(f"{BASE_GRAPH_STRING}/graphs/merged?for=")

    def test_accepts_strings(self):
        assert addition_graph_for(G.value) == addition_graph_for(G)

    def test_target_graph_of(self):
        """The logical graph is recovered from addition and removal graphs."""
        graph = EX("doc?x=1&y=2#me")
        assert target_graph_of(addition_graph_for(graph)) == graph
        assert target_graph_of(removal_graph_for(graph)) == graph

    def test_target_of_merged_and_plain(self):
        assert target_graph_of(merged_graph_for(G)) is None
        assert target_graph_of(G) is None

    def test_parse_shadow_graph(self):
        assert parse_shadow_graph(merged_graph_for(G)) == (ShadowKind.MERGED, G)
        assert parse_shadow_graph(f"{BASE_GRAPH_STRING}/graphs/other?for=x") is None

    def test_custom_base(self):
        base = "http://example.org/store"
        graph = addition_graph_for(G, base)
        assert graph.value.startswith(base)
        assert target_graph_of(graph, base) == G
        assert target_graph_of(graph) is None

    def test_is_shadow_graph(self):
        assert is_shadow_graph(removal_graph_for(G))
        assert not is_shadow_graph(G)
