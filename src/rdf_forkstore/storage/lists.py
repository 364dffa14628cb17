"""
RDF list codec.

Encodes an ordered sequence as a chain of cells:

    head  rdf:first  item0 .    head  rdf:rest  cell1 .
    cell1 rdf:first  item1 .    cell1 rdf:rest  rdf:nil .

and decodes such a chain back, refusing to loop forever on a cyclic or
unterminated chain.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional, Protocol

from rdf_forkstore.errors import MalformedListError
from rdf_forkstore.terms import RDF_FIRST, RDF_NIL, RDF_REST, Quad, Term, fresh_uri

DEFAULT_MAX_LENGTH = 10_000

CellFactory = Callable[[], Term]


class QuadSource(Protocol):
    def match(
        self,
        subject: Optional[Term] = None,
        predicate: Optional[Term] = None,
        obj: Optional[Term] = None,
        graph: Optional[Term] = None,
    ) -> list[Quad]: ...


def bnode_cells() -> CellFactory:
    return Term.fresh_bnode


def uri_cells(base: str) -> CellFactory:
    """Cells named by fresh IRIs under ``base``."""
    return lambda: fresh_uri(base)


def encode_list(
    items: Iterable[Term],
    graph: Term,
    cell_factory: Optional[CellFactory] = None,
) -> tuple[Term, list[Quad]]:
    """
    Encode ``items`` as a fresh RDF list in ``graph``.

    Returns:
        (head, quads). An empty sequence encodes to (rdf:nil, []).
    """
    make_cell = cell_factory or bnode_cells()
    items = list(items)
    if not items:
        return RDF_NIL, []

    cells = [make_cell() for _ in items]
    quads: list[Quad] = []
    for index, (cell, item) in enumerate(zip(cells, items)):
        rest = cells[index + 1] if index + 1 < len(cells) else RDF_NIL
        quads.append(Quad(cell, RDF_FIRST, item, graph))
        quads.append(Quad(cell, RDF_REST, rest, graph))
    return cells[0], quads


def _single(source: QuadSource, cell: Term, predicate: Term, graph: Optional[Term]) -> Term:
    matches = source.match(cell, predicate, None, graph)
    if not matches:
        raise MalformedListError(f"List cell {cell.value} has no {predicate.value}")
    return matches[0].object


def _walk(
    source: QuadSource,
    head: Term,
    graph: Optional[Term],
    max_length: int,
) -> list[tuple[Term, Term, Term]]:
    """Yield (cell, first, rest) for every cell up to rdf:nil."""
    cells: list[tuple[Term, Term, Term]] = []
    seen: set[Term] = set()
    cell = head
    while cell != RDF_NIL:
        if cell in seen:
            raise MalformedListError(f"List starting at {head.value} is cyclic at {cell.value}")
        if len(cells) >= max_length:
            raise MalformedListError(
                f"List starting at {head.value} exceeds {max_length} cells without reaching rdf:nil"
            )
        seen.add(cell)
        first = _single(source, cell, RDF_FIRST, graph)
        rest = _single(source, cell, RDF_REST, graph)
        cells.append((cell, first, rest))
        cell = rest
    return cells


def decode_list(
    source: QuadSource,
    head: Term,
    graph: Optional[Term],
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[Term]:
    """
    Decode the list starting at ``head`` into its ordered items.

    Raises:
        MalformedListError: a cell lacks rdf:first/rdf:rest, the chain
            revisits a cell, or it exceeds ``max_length`` cells
    """
    return [first for _, first, _ in _walk(source, head, graph, max_length)]


def list_cell_quads(
    source: QuadSource,
    head: Term,
    graph: Term,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[Quad]:
    """Every rdf:first/rdf:rest quad of the chain starting at ``head``."""
    quads: list[Quad] = []
    for cell, first, rest in _walk(source, head, graph, max_length):
        quads.append(Quad(cell, RDF_FIRST, first, graph))
        quads.append(Quad(cell, RDF_REST, rest, graph))
    return quads
