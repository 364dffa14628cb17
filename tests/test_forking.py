"""
Tests for the forking (overlay) store.
"""
import asyncio

import pytest

from rdf_forkstore.config import ForkStoreConfig, GraphConfig
from rdf_forkstore.errors import (
    MalformedPatternError,
    PersistError,
    RemoteLoadError,
    RemoteUpdateError,
)
from rdf_forkstore.remote import RemoteDocument
from rdf_forkstore.storage.forking import ForkingStore
from rdf_forkstore.storage.graphs import addition_graph_for, merged_graph_for, removal_graph_for
from rdf_forkstore.terms import Namespace, Quad, literal

EX = Namespace("http://example.org/")
FOAF = Namespace("http://xmlns.com/foaf/0.1/")
G = EX("card")
OTHER = EX("other")

CARD_TURTLE = """
@prefix foaf: <http://xmlns.com/foaf/0.1/> .
@prefix ex: <http://example.org/> .

ex:alice foaf:name "Alice" ;
    foaf:knows ex:bob .
"""


class FakeRemote:
    """In-memory remote recording every update."""

    def __init__(self, documents=None, failing=()):
        self.documents = documents or {}
        self.failing = set(failing)
        self.updates = []

    async def load(self, graph):
        if graph.value not in self.documents:
            raise RemoteLoadError(graph, "HTTP 404")
        content, content_type = self.documents[graph.value]
        return RemoteDocument(graph=graph, content=content, content_type=content_type)

    async def update(self, deletes, inserts):
        graphs = {q.graph for q in deletes + inserts}
        if graphs & self.failing:
            raise RemoteUpdateError("HTTP 409", status_code=409)
        self.updates.append((list(deletes), list(inserts)))


class BlockingRemote(FakeRemote):
    """Remote whose updates wait until the test releases them."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def update(self, deletes, inserts):
        self.started.set()
        await self.release.wait()
        await super().update(deletes, inserts)


def q(s, p, o, g=G):
    return Quad(s, p, o, g)


@pytest.fixture
def store():
    store = ForkingStore()
    store.parse(CARD_TURTLE, G)
    return store


class TestMatch:
    """Tests for overlay matching."""

    def test_base_quads_visible(self, store):
        assert store.match(EX("alice"), FOAF("name"), None, G) == [
            q(EX("alice"), FOAF("name"), literal("Alice"))
        ]

    def test_add_then_match_exactly_once(self, store):
        """A staged quad is visible once, addressed to the logical graph."""
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        assert store.match(EX("bob"), FOAF("name"), literal("Bob"), G) == [quad]

    def test_remove_hides_quad(self, store):
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        store.remove_statements([quad])
        assert store.match(EX("bob"), FOAF("name"), None, G) == []

    def test_add_is_idempotent(self, store):
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        once = store.match(None, None, None, G)
        store.add_all([quad])
        assert store.match(None, None, None, G) == once

    def test_adding_base_quad_is_not_duplicated(self, store):
        """A quad in both base and addition is reported once."""
        quad = q(EX("alice"), FOAF("name"), literal("Alice"))
        store.add_all([quad])
        assert store.match(EX("alice"), FOAF("name"), None, G) == [quad]

    def test_removal_hides_base_quad(self, store):
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        assert store.match(EX("alice"), FOAF("knows"), None, G) == []
        assert len(store.match(EX("alice"), None, None, G)) == 1

    def test_base_before_additions(self, store):
        store.add_all([q(EX("alice"), FOAF("nick"), literal("al"))])
        predicates = [quad.predicate for quad in store.match(EX("alice"), None, None, G)]
        assert predicates == [FOAF("name"), FOAF("knows"), FOAF("nick")]

    def test_results_never_use_shadow_graphs(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        assert {quad.graph for quad in store.match(None, None, None, G)} == {G}

    def test_graphs_are_isolated(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"), OTHER)])
        assert store.match(EX("bob"), None, None, G) == []
        assert len(store.match(EX("bob"), None, None, OTHER)) == 1

    def test_without_graph_matches_physical_table(self, store):
        """Without a graph the raw table is matched, shadow graphs included."""
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        graphs = {quad.graph for quad in store.match(EX("bob"))}
        assert graphs == {addition_graph_for(G)}

    def test_malformed_pattern(self, store):
        with pytest.raises(MalformedPatternError):
            store.match(literal("alice"), None, None, G)


class TestAny:
    """Tests for any()."""

    def test_returns_first_wildcard(self, store):
        assert store.any(EX("alice"), FOAF("name"), None, G) == literal("Alice")
        assert store.any(None, FOAF("knows"), EX("bob"), G) == EX("alice")
        assert store.any(EX("alice"), None, literal("Alice"), G) == FOAF("name")

    def test_all_bound(self, store):
        assert store.any(EX("alice"), FOAF("name"), literal("Alice"), G) is True

    def test_no_match(self, store):
        assert store.any(EX("alice"), FOAF("nick"), None, G) is None

    def test_first_in_insertion_order(self, store):
        store.add_all([q(EX("alice"), FOAF("knows"), EX("carol"))])
        assert store.any(EX("alice"), FOAF("knows"), None, G) == EX("bob")


class TestStaging:
    """Tests for staging bookkeeping."""

    def test_never_in_both_shadows(self, store):
        """Re-adding a removed base quad clears it from the removal graph."""
        quad = q(EX("alice"), FOAF("name"), literal("Alice"))
        store.remove_statements([quad])
        assert store.table.contains(quad.in_graph(removal_graph_for(G)))
        store.add_all([quad])
        assert not store.table.contains(quad.in_graph(removal_graph_for(G)))
        assert store.table.contains(quad.in_graph(addition_graph_for(G)))

    def test_cancellation(self, store):
        """Adding then removing a quad leaves the graph unchanged."""
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        assert store.changed_graphs() == [G]
        store.remove_statements([quad])
        assert store.changed_graphs() == []

    def test_base_never_mutated(self, store):
        store.remove_statements([q(EX("alice"), FOAF("name"), literal("Alice"))])
        store.add_all([q(EX("alice"), FOAF("name"), literal("Alicia"))])
        base = store.table.match(graph=G)
        assert q(EX("alice"), FOAF("name"), literal("Alice")) in base
        assert q(EX("alice"), FOAF("name"), literal("Alicia")) not in base

    def test_staging_requires_graph(self, store):
        with pytest.raises(MalformedPatternError):
            store.add_all([Quad(EX("s"), EX("p"), EX("o"))])

    def test_remove_matches_bypasses_staging(self, store):
        removed = store.remove_matches(EX("alice"), FOAF("knows"), None, G)
        assert removed == 1
        assert store.changed_graphs() == []
        assert store.match(EX("alice"), FOAF("knows"), None, G) == []

    def test_all_graphs(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        assert store.all_graphs() == {G, addition_graph_for(G)}

    def test_changed_graphs_lists_each_once(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        store.remove_statements([q(EX("alice"), FOAF("name"), literal("Alice"))])
        store.add_all([q(EX("x"), FOAF("name"), literal("X"), OTHER)])
        assert store.changed_graphs() == [G, OTHER]

    def test_custom_base_graph_string(self):
        config = ForkStoreConfig(graphs=GraphConfig(base_graph_string="http://example.org/forks"))
        store = ForkingStore(config=config)
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        assert store.changed_graphs() == [G]
        assert any(g.value.startswith("http://example.org/forks/graphs/add") for g in store.all_graphs())


class TestMergedGraph:
    """Tests for the merged view."""

    def test_merged_equals_match(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        store.add_all([q(EX("carol"), FOAF("name"), literal("Carol"))])
        store.remove_statements([q(EX("carol"), FOAF("name"), literal("Carol"))])

        merged = store.merged_graph(G)
        assert merged == merged_graph_for(G)
        merged_triples = {quad.triple for quad in store.table.match(graph=merged)}
        assert merged_triples == {quad.triple for quad in store.match(None, None, None, G)}

    def test_merged_is_rebuilt(self, store):
        store.merged_graph(G)
        store.remove_statements([q(EX("alice"), FOAF("name"), literal("Alice"))])
        merged = store.merged_graph(G)
        assert len(store.table.match(graph=merged)) == 1


class TestObservers:
    """Tests for observer notification."""

    def test_inserts_and_deletes(self, store):
        payloads = []
        store.register_observer(payloads.append)
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        store.remove_statements([quad])
        assert payloads == [{"inserts": [quad]}, {"deletes": [quad]}]

    def test_default_key_is_callback(self, store):
        """Registering the same callable twice keeps one subscription."""
        payloads = []
        store.register_observer(payloads.append)
        store.register_observer(payloads.append)
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        assert len(payloads) == 1

    def test_deregister(self, store):
        payloads = []
        store.register_observer(payloads.append, key="log")
        store.deregister_observer("log")
        store.deregister_observer("never-registered")
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        assert payloads == []

    def test_failing_observer_does_not_block_others(self, store, caplog):
        def broken(payload):
            raise RuntimeError("boom")

        payloads = []
        store.register_observer(broken, key="broken")
        store.register_observer(payloads.append, key="log")
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        assert len(payloads) == 1
        assert "broken" in caplog.text


class TestPersist:
    """Tests for pushing staged changes."""

    def test_persist_name_change(self, store):
        """Persist submits exactly the staged delta and clears the shadows."""
        remote = FakeRemote()
        store.remote = remote
        old = q(EX("alice"), FOAF("name"), literal("Alice"))
        new = q(EX("alice"), FOAF("name"), literal("Alicia"))
        store.remove_statements([old])
        store.add_all([new])

        results = asyncio.run(store.persist())

        assert remote.updates == [([old], [new])]
        assert [r.success for r in results] == [True]
        assert store.changed_graphs() == []
        assert store.match(EX("alice"), FOAF("name"), None, G) == [new]

    def test_persist_nothing(self, store):
        store.remote = FakeRemote()
        assert asyncio.run(store.persist()) == []
        assert store.remote.updates == []

    def test_failed_graph_keeps_shadows(self, store):
        """One failing graph does not undo another graph's success."""
        store.remote = FakeRemote(failing=[OTHER])
        good = q(EX("bob"), FOAF("name"), literal("Bob"))
        bad = q(EX("x"), FOAF("name"), literal("X"), OTHER)
        store.add_all([good, bad])

        with pytest.raises(PersistError) as excinfo:
            asyncio.run(store.persist())

        by_graph = {r.graph: r for r in excinfo.value.results}
        assert by_graph[G].success
        assert not by_graph[OTHER].success
        assert isinstance(by_graph[OTHER].error, RemoteUpdateError)
        assert by_graph[OTHER].inserts == [bad]
        assert [r.graph for r in excinfo.value.failed] == [OTHER]

        assert store.changed_graphs() == [OTHER]
        assert store.match(EX("x"), None, None, OTHER) == [bad]
        assert store.match(EX("bob"), None, None, G) == [good]

    def test_retry_after_failure(self, store):
        remote = FakeRemote(failing=[G])
        store.remote = remote
        quad = q(EX("bob"), FOAF("name"), literal("Bob"))
        store.add_all([quad])
        with pytest.raises(PersistError):
            asyncio.run(store.persist())

        remote.failing.clear()
        asyncio.run(store.persist())
        assert remote.updates == [([], [quad])]
        assert store.changed_graphs() == []

    def test_push_graph_changes(self, store):
        store.remote = FakeRemote()
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        result = asyncio.run(store.push_graph_changes(G))
        assert result.success
        assert len(result.inserts) == 1

    def test_retract_insert_while_push_in_flight(self, store):
        """A quad deleted while its insertion is being pushed stays deleted."""
        remote = BlockingRemote()
        store.remote = remote
        nick = q(EX("alice"), FOAF("nick"), literal("al"))
        store.add_all([nick])

        async def scenario():
            push = asyncio.create_task(store.persist())
            await remote.started.wait()
            store.remove_statements([nick])
            remote.release.set()
            return await push

        asyncio.run(scenario())

        assert store.match(EX("alice"), FOAF("nick"), None, G) == []
        assert store.changed_graphs() == [G]
        assert store.staged_changes(G) == ([nick], [])

    def test_readd_delete_while_push_in_flight(self, store):
        """A quad re-added while its deletion is being pushed stays visible."""
        remote = BlockingRemote()
        store.remote = remote
        name = q(EX("alice"), FOAF("name"), literal("Alice"))
        store.remove_statements([name])

        async def scenario():
            push = asyncio.create_task(store.persist())
            await remote.started.wait()
            store.add_all([name])
            remote.release.set()
            return await push

        asyncio.run(scenario())

        assert store.match(EX("alice"), FOAF("name"), None, G) == [name]
        assert store.staged_changes(G) == ([], [name])

    def test_update_without_remote(self, store):
        with pytest.raises(RemoteUpdateError):
            asyncio.run(store.update([], []))


class TestLoad:
    """Tests for loading remote graphs."""

    def test_load(self):
        remote = FakeRemote({G.value: (CARD_TURTLE, "text/turtle; charset=utf-8")})
        store = ForkingStore(remote=remote)
        added = asyncio.run(store.load(G))
        assert added == 2
        assert store.any(EX("alice"), FOAF("name"), None, G) == literal("Alice")
        assert store.changed_graphs() == []

    def test_load_nquads_is_readdressed(self):
        content = '<http://example.org/s> <http://example.org/p> "o" <http://example.org/elsewhere> .\n'
        store = ForkingStore(remote=FakeRemote({G.value: (content, "application/n-quads")}))
        asyncio.run(store.load(G))
        assert store.all_graphs() == {G}

    def test_load_failure_leaves_base(self, store):
        store.remote = FakeRemote()
        with pytest.raises(RemoteLoadError):
            asyncio.run(store.load(G))
        assert len(store.match(None, None, None, G)) == 2

    def test_unparsable_content(self):
        remote = FakeRemote({G.value: ("this is not turtle", "text/turtle")})
        store = ForkingStore(remote=remote)
        with pytest.raises(RemoteLoadError):
            asyncio.run(store.load(G))
        assert store.all_graphs() == set()

    def test_unsupported_content_type(self):
        remote = FakeRemote({G.value: ("<html/>", "text/html")})
        with pytest.raises(RemoteLoadError):
            asyncio.run(ForkingStore(remote=remote).load(G))

    def test_load_without_remote(self):
        with pytest.raises(RemoteLoadError):
            asyncio.run(ForkingStore().load(G))


class TestSerialization:
    """Tests for parse and serialize helpers."""

    def test_serialize_three_way(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        parts = store.serialize_data_with_add_and_del_graph(G, "ntriples")

        assert set(parts) == {"graph", "additions", "removals"}
        assert parts["graph"].count("\n") == 2
        assert parts["additions"] == '<http://example.org/bob> <http://xmlns.com/foaf/0.1/name> "Bob" .\n'
        assert parts["removals"] == (
            "<http://example.org/alice> <http://xmlns.com/foaf/0.1/knows> <http://example.org/bob> .\n"
        )

    def test_restore_three_way(self, store):
        """Serialized parts load back into the same overlay state."""
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        parts = store.serialize_data_with_add_and_del_graph(G, "text/turtle")

        restored = ForkingStore()
        restored.load_data_with_add_and_del_graph(
            parts["graph"], G, parts["additions"], parts["removals"], "text/turtle"
        )
        assert restored.match(None, None, None, G) == store.match(None, None, None, G)
        assert restored.changed_graphs() == [G]

    def test_serialize_merged(self, store):
        store.remove_statements([q(EX("alice"), FOAF("knows"), EX("bob"))])
        text = store.serialize_data_merged_graph(G, "ntriples")
        assert text == '<http://example.org/alice> <http://xmlns.com/foaf/0.1/name> "Alice" .\n'

    def test_stats(self, store):
        store.add_all([q(EX("bob"), FOAF("name"), literal("Bob"))])
        stats = store.stats()
        assert stats["quads"] == 3
        assert stats["changed_graphs"] == 1
