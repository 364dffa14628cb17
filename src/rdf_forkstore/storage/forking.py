"""
Forking (overlay) quad store.

Presents every logical graph G as a single flat graph while keeping staged
edits physically apart from the data that was loaded:

    visible(G) = (base(G) - removal(G)) + addition(G)

Edits are staged into the addition/removal shadow graphs of G and only
reach the remote source on ``persist()``. The base graph is never edited by
staging, so the loaded state can always be diffed against or restored.

Example:
    store = ForkingStore(remote=HttpRemoteSource())
    await store.load(card)
    store.add_all([Quad(me, FOAF("nick"), literal("al"), card)])
    store.match(me, FOAF("nick"), None, card)
    await store.persist()
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, Optional, Union

import polars as pl

from rdf_forkstore import formats
from rdf_forkstore.config import ForkStoreConfig
from rdf_forkstore.errors import (
    ForkStoreError,
    MalformedPatternError,
    PersistError,
    RemoteLoadError,
    RemoteUpdateError,
)
from rdf_forkstore.remote import RemoteSource
from rdf_forkstore.storage.graphs import (
    addition_graph_for,
    merged_graph_for,
    removal_graph_for,
    target_graph_of,
)
from rdf_forkstore.storage.quads import TRIPLE_COLUMNS, QuadTable, validate_pattern
from rdf_forkstore.terms import Quad, Term, named_node

logger = logging.getLogger(__name__)

Observer = Callable[[dict[str, list[Quad]]], Any]
GraphLike = Union[Term, str]


@dataclass
class PersistResult:
    """Outcome of pushing one graph's staged changes."""
    graph: Term
    success: bool
    deletes: list[Quad] = field(default_factory=list)
    inserts: list[Quad] = field(default_factory=list)
    error: Optional[BaseException] = None


class ForkingStore:
    """
    In-memory overlay store over remote graphs.

    All reads and writes are synchronous and immediately visible; only
    ``load``, ``update``, ``push_graph_changes`` and ``persist`` touch the
    remote source. Single writer: do not share an instance across threads.
    """

    def __init__(
        self,
        remote: Optional[RemoteSource] = None,
        config: Optional[ForkStoreConfig] = None,
    ):
        self.config = config or ForkStoreConfig()
        self.remote = remote
        self.observers: dict[Hashable, Observer] = {}
        self._table = QuadTable()

    @property
    def table(self) -> QuadTable:
        """The physical quad table (base and shadow graphs alike)."""
        return self._table

    # =========================================================================
    # Shadow graphs
    # =========================================================================

    @property
    def base_graph_string(self) -> str:
        return self.config.graphs.base_graph_string

    def addition_graph(self, graph: GraphLike) -> Term:
        return addition_graph_for(graph, self.base_graph_string)

    def removal_graph(self, graph: GraphLike) -> Term:
        return removal_graph_for(graph, self.base_graph_string)

    def staged_changes(self, graph: Term) -> tuple[list[Quad], list[Quad]]:
        """(deletes, inserts) staged for ``graph``, addressed to ``graph``."""
        deletes = [q.in_graph(graph) for q in self._table.match(graph=self.removal_graph(graph))]
        inserts = [q.in_graph(graph) for q in self._table.match(graph=self.addition_graph(graph))]
        return deletes, inserts

    # =========================================================================
    # Queries
    # =========================================================================

    def match(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> list[Quad]:
        """
        Quads visible under ``graph`` matching the pattern.

        Results are deduplicated by triple and addressed to ``graph``; base
        statements come before staged insertions, each in insertion order.
        Without a graph the raw physical table is matched, shadow graphs
        included.

        Raises:
            MalformedPatternError: a term is invalid for its position
        """
        if graph is None:
            return self._table.match(subject, predicate, obj)

        base = self._table.frame(subject, predicate, obj, graph)
        added = self._table.frame(subject, predicate, obj, self.addition_graph(graph))
        removed = self._table.frame(subject, predicate, obj, self.removal_graph(graph))

        candidates = pl.concat([
            base.with_columns(pl.lit(0, dtype=pl.UInt8).alias("layer")),
            added.with_columns(pl.lit(1, dtype=pl.UInt8).alias("layer")),
        ])
        if removed.height:
            candidates = candidates.join(
                removed.select(TRIPLE_COLUMNS), on=TRIPLE_COLUMNS, how="anti"
            )
        visible = (
            candidates
            .sort(["layer", "seq"])
            .unique(subset=TRIPLE_COLUMNS, keep="first", maintain_order=True)
        )
        return self._table.decode(visible, graph=graph)

    def any(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> Union[Term, bool, None]:
        """
        Term in the first unbound position (subject, predicate, object,
        graph) of the first match; True if every position was bound and the
        quad is visible; None when nothing matches.
        """
        matches = self.match(subject, predicate, obj, graph)
        if not matches:
            return None
        first = matches[0]
        for bound, value in (
            (subject, first.subject),
            (predicate, first.predicate),
            (obj, first.object),
            (graph, first.graph),
        ):
            if bound is None:
                return value
        return True

    def all_graphs(self) -> set[Term]:
        """Every graph holding at least one quad, shadow graphs included."""
        return set(self._table.graphs())

    def changed_graphs(self) -> list[Term]:
        """Logical graphs with a non-empty addition or removal graph."""
        changed: dict[Term, None] = {}
        for graph in self._table.graphs():
            target = target_graph_of(graph, self.base_graph_string)
            if target is not None:
                changed[target] = None
        return list(changed)

    def merged_graph(self, graph: GraphLike) -> Term:
        """Rebuild the merged graph of ``graph`` from scratch and return its name."""
        graph = named_node(graph)
        merged = merged_graph_for(graph, self.base_graph_string)
        self._table.remove_matches(graph=merged)
        self._table.add(q.in_graph(merged) for q in self.match(graph=graph))
        return merged

    # =========================================================================
    # Staging
    # =========================================================================

    def _check_quads(self, quads: Iterable[Quad]) -> list[Quad]:
        quads = list(quads)
        for quad in quads:
            if quad.graph is None:
                raise MalformedPatternError(f"Cannot stage {quad.triple} without a graph")
            validate_pattern(quad.subject, quad.predicate, quad.object, quad.graph)
        return quads

    def add_all(self, inserts: Iterable[Quad]) -> None:
        """Stage insertions, cancelling matching staged deletions first."""
        inserts = self._check_quads(inserts)
        self._table.remove(q.in_graph(self.removal_graph(q.graph)) for q in inserts)
        self._table.add(q.in_graph(self.addition_graph(q.graph)) for q in inserts)
        logger.debug(f"Staged {len(inserts)} insertion(s)")
        self._inform_observers({"inserts": inserts})

    def remove_statements(self, deletes: Iterable[Quad]) -> None:
        """Stage deletions; a staged insertion of the same quad is cancelled instead."""
        deletes = self._check_quads(deletes)
        cancelled: list[Quad] = []
        staged: list[Quad] = []
        for quad in deletes:
            in_addition = quad.in_graph(self.addition_graph(quad.graph))
            if self._table.contains(in_addition):
                cancelled.append(in_addition)
            else:
                staged.append(quad.in_graph(self.removal_graph(quad.graph)))
        self._table.remove(cancelled)
        self._table.add(staged)
        logger.debug(f"Staged {len(staged)} deletion(s), cancelled {len(cancelled)} insertion(s)")
        self._inform_observers({"deletes": deletes})

    def remove_matches(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> int:
        """
        Delete matching quads from the physical table, bypassing staging.

        Maintenance escape hatch: the deletion is never persisted and no
        observer is told.
        """
        return self._table.remove_matches(subject, predicate, obj, graph)

    # =========================================================================
    # Observers
    # =========================================================================

    def register_observer(self, observer: Observer, key: Optional[Hashable] = None) -> None:
        """
        Subscribe to ``{"inserts": [...]}`` / ``{"deletes": [...]}`` payloads.

        The key defaults to the observer itself, so registering the same
        callable twice keeps a single subscription.
        """
        self.observers[observer if key is None else key] = observer

    def deregister_observer(self, key: Hashable) -> None:
        self.observers.pop(key, None)

    def _inform_observers(self, payload: dict[str, list[Quad]]) -> None:
        for key, observer in list(self.observers.items()):
            try:
                observer(payload)
            except Exception:
                logger.exception(f"Observer {key!r} failed")

    # =========================================================================
    # Remote synchronization
    # =========================================================================

    async def load(self, graph: GraphLike) -> int:
        """
        Fetch ``graph`` from the remote source into its base graph.

        Staged edits of the graph are kept. Returns the number of new quads.

        Raises:
            RemoteLoadError: no remote, unreachable source or unparsable
                content; the base graph is left unchanged
        """
        graph = named_node(graph)
        if self.remote is None:
            raise RemoteLoadError(graph, "no remote source configured")

        start_time = time.time()
        document = await self.remote.load(graph)
        try:
            quads = formats.parse(document.content, document.content_type, graph=graph, base=graph.value)
        except ForkStoreError as e:
            raise RemoteLoadError(graph, str(e)) from e

        added = self._table.add(q.in_graph(graph) for q in quads)
        logger.info(f"Loaded {added} quads into {graph.value} in {(time.time() - start_time) * 1000:.1f}ms")
        return added

    async def update(self, deletes: list[Quad], inserts: list[Quad]) -> None:
        """Submit deletions and insertions to the remote source as one update."""
        if self.remote is None:
            raise RemoteUpdateError("No remote source configured")
        await self.remote.update(deletes, inserts)

    async def push_graph_changes(self, graph: GraphLike) -> PersistResult:
        """
        Push the staged changes of one graph.

        On success the pushed changes are folded into the base graph and
        removed from the shadow graphs. Insertions retracted while the push
        was in flight are staged as removals. On failure nothing changes
        locally and the error propagates.
        """
        graph = named_node(graph)
        deletes, inserts = self.staged_changes(graph)
        await self.update(deletes, inserts)

        addition = self.addition_graph(graph)
        retracted = [q for q in inserts if not self._table.contains(q.in_graph(addition))]
        if retracted:
            self._table.add(q.in_graph(self.removal_graph(graph)) for q in retracted)
            logger.info(f"{len(retracted)} insertion(s) into {graph.value} were retracted during the push")

        self._table.remove(deletes)
        self._table.add(inserts)
        self._table.remove(q.in_graph(self.removal_graph(graph)) for q in deletes)
        self._table.remove(q.in_graph(self.addition_graph(graph)) for q in inserts)
        logger.info(f"Persisted {graph.value}: -{len(deletes)} +{len(inserts)}")
        return PersistResult(graph=graph, success=True, deletes=deletes, inserts=inserts)

    async def persist(self) -> list[PersistResult]:
        """
        Push every changed graph concurrently.

        Each graph succeeds or fails on its own. Failed graphs keep their
        staged changes for a retry.

        Raises:
            PersistError: after all graphs completed, if any of them failed
        """
        graphs = self.changed_graphs()
        outcomes = await asyncio.gather(
            *(self.push_graph_changes(graph) for graph in graphs),
            return_exceptions=True,
        )

        results: list[PersistResult] = []
        for graph, outcome in zip(graphs, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Failed to persist {graph.value}: {outcome}")
                deletes, inserts = self.staged_changes(graph)
                results.append(PersistResult(
                    graph=graph, success=False, deletes=deletes, inserts=inserts, error=outcome,
                ))
            else:
                results.append(outcome)

        if any(not result.success for result in results):
            raise PersistError(results)
        return results

    # =========================================================================
    # Parsing and serialization
    # =========================================================================

    def _parse_into(self, content: str, graph: Term, target: Term, format: str) -> int:
        quads = formats.parse(content, format, graph=target, base=graph.value)
        return self._table.add(q.in_graph(target) for q in quads)

    def parse(self, content: str, graph: GraphLike, format: str = "text/turtle") -> int:
        """Parse ``content`` straight into the base graph. Returns the number of new quads."""
        graph = named_node(graph)
        return self._parse_into(content, graph, graph, format)

    def load_data_with_add_and_del_graph(
        self,
        content: str,
        graph: GraphLike,
        additions: Optional[str] = None,
        removals: Optional[str] = None,
        format: str = "text/turtle",
    ) -> None:
        """Restore a base graph together with its staged additions and removals."""
        graph = named_node(graph)
        self._parse_into(content, graph, graph, format)
        if additions:
            self._parse_into(additions, graph, self.addition_graph(graph), format)
        if removals:
            self._parse_into(removals, graph, self.removal_graph(graph), format)

    def serialize(self, graph: GraphLike, format: str = "text/turtle") -> str:
        """Serialize the physical content of ``graph`` (no overlay applied)."""
        return formats.serialize(self._table.match(graph=named_node(graph)), format)

    def serialize_data_with_add_and_del_graph(
        self, graph: GraphLike, format: str = "text/turtle"
    ) -> dict[str, str]:
        """Base, staged additions and staged removals of ``graph``, serialized separately."""
        graph = named_node(graph)
        return {
            "graph": self.serialize(graph, format),
            "additions": self.serialize(self.addition_graph(graph), format),
            "removals": self.serialize(self.removal_graph(graph), format),
        }

    def serialize_data_merged_graph(self, graph: GraphLike, format: str = "text/turtle") -> str:
        return self.serialize(self.merged_graph(graph), format)

    def stats(self) -> dict:
        return {
            **self._table.stats(),
            "changed_graphs": len(self.changed_graphs()),
            "observers": len(self.observers),
        }
