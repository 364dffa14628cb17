"""
Physical quad table.

Holds every quad of a session (base graphs and shadow graphs alike) as a
dictionary-encoded Polars DataFrame:

    seq | g | s | p | o      (all UInt64)

``seq`` is a monotonically increasing insertion counter, so every read
returns quads in insertion order. The table has set semantics: adding a
quad that already exists is a no-op.

This layer knows nothing about shadow graphs; see forking.py.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import polars as pl

from rdf_forkstore.errors import MalformedPatternError
from rdf_forkstore.terms import Quad, Term, TermDict, TermId, TermKind

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["g", "s", "p", "o"]
TRIPLE_COLUMNS = ["s", "p", "o"]


def _empty_frame() -> pl.DataFrame:
    return pl.DataFrame({
        "seq": pl.Series([], dtype=pl.UInt64),
        "g": pl.Series([], dtype=pl.UInt64),
        "s": pl.Series([], dtype=pl.UInt64),
        "p": pl.Series([], dtype=pl.UInt64),
        "o": pl.Series([], dtype=pl.UInt64),
    })


def validate_pattern(
    subject: Optional[Term] = None,
    predicate: Optional[Term] = None,
    obj: Optional[Term] = None,
    graph: Optional[Term] = None,
) -> None:
    """
    Reject term combinations no quad can ever have.

    Raises:
        MalformedPatternError: on a non-Term binding, a literal subject or
            graph, or a non-IRI predicate
    """
    for position, term in (("subject", subject), ("predicate", predicate),
                           ("object", obj), ("graph", graph)):
        if term is not None and not isinstance(term, Term):
            raise MalformedPatternError(
                f"{position} must be a Term or None, got {type(term).__name__}"
            )
    if subject is not None and subject.kind == TermKind.LITERAL:
        raise MalformedPatternError(f"Literal {subject.value!r} cannot be a subject")
    if predicate is not None and predicate.kind != TermKind.IRI:
        raise MalformedPatternError(f"Predicate must be an IRI, got {predicate.kind.name}")
    if graph is not None and graph.kind == TermKind.LITERAL:
        raise MalformedPatternError(f"Literal {graph.value!r} cannot name a graph")


class QuadTable:
    """
    Dictionary-encoded, insertion-ordered quad set backed by Polars.

    Example:
        table = QuadTable()
        table.add([Quad(alice, name, literal("Alice"), people)])
        table.match(subject=alice, graph=people)
    """

    def __init__(self, term_dict: Optional[TermDict] = None):
        self._terms = term_dict or TermDict()
        self._df = _empty_frame()
        self._next_seq = 0

    @property
    def terms(self) -> TermDict:
        return self._terms

    @property
    def dataframe(self) -> pl.DataFrame:
        """The raw encoded frame (read-only view for diagnostics)."""
        return self._df

    def __len__(self) -> int:
        return self._df.height

    # =========================================================================
    # Encoding
    # =========================================================================

    def _encode_frame(self, quads: Iterable[Quad], with_seq: bool) -> pl.DataFrame:
        rows: dict[tuple[TermId, ...], None] = {}
        for quad in quads:
            if quad.graph is None:
                raise MalformedPatternError(f"Quad {quad.triple} has no graph")
            key = tuple(
                self._terms.get_or_create(term)
                for term in (quad.graph, quad.subject, quad.predicate, quad.object)
            )
            rows[key] = None  # dedupe, keep first-seen order

        keys = list(rows)
        columns = {
            name: pl.Series([k[i] for k in keys], dtype=pl.UInt64)
            for i, name in enumerate(KEY_COLUMNS)
        }
        if with_seq:
            start = self._next_seq
            self._next_seq += len(keys)
            columns = {
                "seq": pl.Series(list(range(start, start + len(keys))), dtype=pl.UInt64),
                **columns,
            }
        return pl.DataFrame(columns)

    def _lookup_ids(self, *terms: Optional[Term]) -> Optional[list[Optional[TermId]]]:
        """Resolve bound terms to ids; None if any bound term was never interned."""
        ids: list[Optional[TermId]] = []
        for term in terms:
            if term is None:
                ids.append(None)
                continue
            term_id = self._terms.get_id(term)
            if term_id is None:
                return None
            ids.append(term_id)
        return ids

    def decode(self, frame: pl.DataFrame, graph: Optional[Term] = None) -> list[Quad]:
        """
        Turn an encoded frame back into Quads.

        Args:
            frame: Frame with at least s, p, o (and g unless ``graph`` is given)
            graph: Re-address every quad to this graph
        """
        lookup = self._terms.lookup
        if graph is not None:
            return [
                Quad(lookup(s), lookup(p), lookup(o), graph)
                for s, p, o in frame.select(TRIPLE_COLUMNS).iter_rows()
            ]
        return [
            Quad(lookup(s), lookup(p), lookup(o), lookup(g))
            for g, s, p, o in frame.select(KEY_COLUMNS).iter_rows()
        ]

    # =========================================================================
    # Mutation
    # =========================================================================

    def add(self, quads: Iterable[Quad]) -> int:
        """Add quads, skipping ones already present. Returns the number added."""
        new = self._encode_frame(quads, with_seq=True)
        if new.height == 0:
            return 0
        if self._df.height:
            new = new.join(self._df.select(KEY_COLUMNS), on=KEY_COLUMNS, how="anti").sort("seq")
        if new.height:
            self._df = pl.concat([self._df, new])
        return new.height

    def remove(self, quads: Iterable[Quad]) -> int:
        """Remove quads that are present. Returns the number removed."""
        doomed = self._encode_frame(quads, with_seq=False)
        if doomed.height == 0 or self._df.height == 0:
            return 0
        before = self._df.height
        self._df = self._df.join(doomed, on=KEY_COLUMNS, how="anti").sort("seq")
        return before - self._df.height

    def remove_frame(self, frame: pl.DataFrame) -> int:
        """Remove every row of an encoded frame (as returned by ``frame()``)."""
        if frame.height == 0:
            return 0
        before = self._df.height
        self._df = self._df.join(frame.select(KEY_COLUMNS), on=KEY_COLUMNS, how="anti").sort("seq")
        return before - self._df.height

    def remove_matches(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> int:
        """Remove every quad matching the pattern. Returns the number removed."""
        return self.remove_frame(self.frame(subject, predicate, obj, graph))

    def clear(self) -> None:
        self._df = _empty_frame()

    # =========================================================================
    # Queries
    # =========================================================================

    def frame(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> pl.DataFrame:
        """
        Encoded rows matching a pattern, in insertion order.

        None positions are wildcards.
        """
        validate_pattern(subject, predicate, obj, graph)
        ids = self._lookup_ids(graph, subject, predicate, obj)
        if ids is None:
            return _empty_frame()

        conditions = [
            pl.col(column) == pl.lit(term_id, dtype=pl.UInt64)
            for column, term_id in zip(KEY_COLUMNS, ids)
            if term_id is not None
        ]
        if not conditions:
            return self._df
        return self._df.filter(*conditions)

    def match(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> list[Quad]:
        return self.decode(self.frame(subject, predicate, obj, graph))

    def contains(self, quad: Quad) -> bool:
        return self.frame(quad.subject, quad.predicate, quad.object, quad.graph).height > 0

    def graphs(self) -> list[Term]:
        """Distinct graphs holding at least one quad, in first-use order."""
        graph_ids = self._df.get_column("g").unique(maintain_order=True).to_list()
        return [self._terms.lookup(gid) for gid in graph_ids]

    def count(self, graph: Optional[Term] = None) -> int:
        if graph is None:
            return self._df.height
        return self.frame(graph=graph).height

    def stats(self) -> dict:
        return {
            "quads": self._df.height,
            "graphs": self._df.get_column("g").n_unique(),
            "terms": len(self._terms),
        }
