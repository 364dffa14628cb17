"""
RDF Terms, Quads and the Term Dictionary.

Value types shared by every layer of the store:
- Term: an IRI (named node), blank node or literal
- Quad: subject, predicate, object within a graph context
- Namespace: callable IRI prefix (``FOAF("name")``)
- TermDict: interns terms to integer TermIds for columnar storage

Terms are immutable and compare by value, so two ``Term.uri("http://x")``
instances are interchangeable everywhere (dict keys, sets, quad equality).
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Iterator
import uuid

import polars as pl


# =============================================================================
# Term Identity and Encoding
# =============================================================================

class TermKind(IntEnum):
    """
    RDF term kind enumeration.

    Encoded in the high 2 bits of TermId for O(1) kind detection.
    """
    IRI = 0
    LITERAL = 1
    BNODE = 2


# Type alias for term identifiers (u64)
TermId = int

KIND_SHIFT = 62
KIND_MASK = 0x3
PAYLOAD_MASK = (1 << KIND_SHIFT) - 1


def make_term_id(kind: TermKind, payload: int) -> TermId:
    """Create a TermId from kind and payload."""
    return (kind << KIND_SHIFT) | (payload & PAYLOAD_MASK)


def get_term_kind(term_id: TermId) -> TermKind:
    """Extract the term kind from a TermId (O(1) operation)."""
    return TermKind((term_id >> KIND_SHIFT) & KIND_MASK)


# =============================================================================
# Term Representation
# =============================================================================


@dataclass(frozen=True, slots=True)
class Term:
    """
    An RDF term.

    Attributes:
        kind: The type of term (IRI, LITERAL, BNODE)
        value: Lexical form (IRI string, literal value, bnode label)
        datatype: Datatype IRI (typed literals only)
        lang: Language tag (language-tagged literals only)
    """
    kind: TermKind
    value: str
    datatype: Optional[str] = None
    lang: Optional[str] = None

    @classmethod
    def uri(cls, value: str) -> "Term":
        """Create an IRI term."""
        return cls(kind=TermKind.IRI, value=value)

    @classmethod
    def literal(
        cls,
        value: str,
        datatype: Optional[str] = None,
        lang: Optional[str] = None,
    ) -> "Term":
        """Create a literal term. ``xsd:string`` is normalized to a plain literal."""
        if datatype == XSD_STRING:
            datatype = None
        return cls(kind=TermKind.LITERAL, value=value, datatype=datatype, lang=lang)

    @classmethod
    def bnode(cls, label: str) -> "Term":
        """Create a blank node term."""
        return cls(kind=TermKind.BNODE, value=label)

    @classmethod
    def fresh_bnode(cls) -> "Term":
        """Create a blank node whose label cannot clash with a parsed document's labels."""
        return cls.bnode(f"b{uuid.uuid4().hex}")

    @property
    def is_uri(self) -> bool:
        return self.kind == TermKind.IRI

    @property
    def is_literal(self) -> bool:
        return self.kind == TermKind.LITERAL

    @property
    def is_bnode(self) -> bool:
        return self.kind == TermKind.BNODE

    def __str__(self) -> str:
        return self.value


def named_node(value: "str | Term") -> Term:
    """Coerce a string (or pass through a Term) into an IRI term."""
    if isinstance(value, Term):
        return value
    return Term.uri(value)


def literal(value: str, datatype: "Optional[str | Term]" = None, lang: Optional[str] = None) -> Term:
    if isinstance(datatype, Term):
        datatype = datatype.value
    return Term.literal(value, datatype, lang)


def blank_node(label: Optional[str] = None) -> Term:
    if label is None:
        return Term.fresh_bnode()
    return Term.bnode(label)


def fresh_uri(base: str) -> Term:
    """Mint a unique IRI under ``base``."""
    return Term.uri(f"{base}{uuid.uuid4()}")


# =============================================================================
# Quads
# =============================================================================

@dataclass(frozen=True, slots=True)
class Quad:
    """One statement (subject, predicate, object) in a graph context."""
    subject: Term
    predicate: Term
    object: Term
    graph: Optional[Term] = None

    @property
    def triple(self) -> tuple[Term, Term, Term]:
        """Context-free identity of the statement."""
        return (self.subject, self.predicate, self.object)

    def in_graph(self, graph: Optional[Term]) -> "Quad":
        """Return the same statement re-addressed to ``graph``."""
        return Quad(self.subject, self.predicate, self.object, graph)

    def __iter__(self) -> Iterator[Optional[Term]]:
        return iter((self.subject, self.predicate, self.object, self.graph))


# =============================================================================
# Namespaces
# =============================================================================

class Namespace(str):
    """
    An IRI prefix that mints terms when called.

    Example:
        FOAF = Namespace("http://xmlns.com/foaf/0.1/")
        FOAF("name")  # Term.uri("http://xmlns.com/foaf/0.1/name")
    """

    def __call__(self, local_name: str) -> Term:
        return Term.uri(f"{self}{local_name}")

    def term(self, local_name: str) -> Term:
        return self(local_name)


RDF = Namespace("http://www.w3.org/1999/02/22-rdf-syntax-ns#")
XSD = Namespace("http://www.w3.org/2001/XMLSchema#")
SOLID = Namespace("http://www.w3.org/ns/solid/terms#")

XSD_STRING = "http://www.w3.org/2001/XMLSchema#string"
XSD_INTEGER = "http://www.w3.org/2001/XMLSchema#integer"
XSD_DECIMAL = "http://www.w3.org/2001/XMLSchema#decimal"
XSD_DOUBLE = "http://www.w3.org/2001/XMLSchema#double"
XSD_BOOLEAN = "http://www.w3.org/2001/XMLSchema#boolean"
XSD_DATETIME = "http://www.w3.org/2001/XMLSchema#dateTime"

RDF_TYPE = RDF("type")
RDF_FIRST = RDF("first")
RDF_REST = RDF("rest")
RDF_NIL = RDF("nil")


# =============================================================================
# Term Dictionary
# =============================================================================

class TermDict:
    """
    Dictionary-encoded term catalog.

    Maps terms to integer TermIds so quads can be stored as four integer
    columns. Ids are tagged with the term kind in their high bits.

    Thread-safety: NOT thread-safe. The store is single-writer by contract.
    """

    def __init__(self):
        # Start at 1 so TermId 0 never denotes a real term
        self._next_payload: dict[TermKind, int] = {kind: 1 for kind in TermKind}
        self._term_to_id: dict[Term, TermId] = {}
        self._id_to_term: dict[TermId, Term] = {}

    def _allocate_id(self, kind: TermKind) -> TermId:
        payload = self._next_payload[kind]
        self._next_payload[kind] = payload + 1
        return make_term_id(kind, payload)

    def get_or_create(self, term: Term) -> TermId:
        """Intern a term, returning its TermId."""
        existing = self._term_to_id.get(term)
        if existing is not None:
            return existing
        term_id = self._allocate_id(term.kind)
        self._term_to_id[term] = term_id
        self._id_to_term[term_id] = term
        return term_id

    def get_or_create_batch(self, terms: list[Term]) -> list[TermId]:
        return [self.get_or_create(term) for term in terms]

    def get_id(self, term: Term) -> Optional[TermId]:
        """Get the TermId for a term if it exists, without creating it."""
        return self._term_to_id.get(term)

    def lookup(self, term_id: TermId) -> Optional[Term]:
        return self._id_to_term.get(term_id)

    def lookup_batch(self, term_ids: list[TermId]) -> list[Optional[Term]]:
        return [self._id_to_term.get(tid) for tid in term_ids]

    def __contains__(self, term: Term) -> bool:
        return term in self._term_to_id

    def __len__(self) -> int:
        return len(self._id_to_term)

    def count_by_kind(self) -> dict[TermKind, int]:
        """Return counts of terms by kind."""
        return {kind: self._next_payload[kind] - 1 for kind in TermKind}

    def to_dataframe(self) -> pl.DataFrame:
        """Export the dictionary as a (term_id, kind, value, datatype, lang) frame."""
        if not self._id_to_term:
            return pl.DataFrame({
                "term_id": pl.Series([], dtype=pl.UInt64),
                "kind": pl.Series([], dtype=pl.UInt8),
                "value": pl.Series([], dtype=pl.Utf8),
                "datatype": pl.Series([], dtype=pl.Utf8),
                "lang": pl.Series([], dtype=pl.Utf8),
            })

        # Explicit dtypes: tagged ids overflow Int64 inference
        terms = list(self._id_to_term.items())
        return pl.DataFrame({
            "term_id": pl.Series([tid for tid, _ in terms], dtype=pl.UInt64),
            "kind": pl.Series([int(t.kind) for _, t in terms], dtype=pl.UInt8),
            "value": pl.Series([t.value for _, t in terms], dtype=pl.Utf8),
            "datatype": pl.Series([t.datatype for _, t in terms], dtype=pl.Utf8),
            "lang": pl.Series([t.lang for _, t in terms], dtype=pl.Utf8),
        })
