"""
RDF Format Parsers and Serializers.

Supports:
- Turtle (.ttl)
- N-Triples (.nt)
- N-Quads (.nq) with named graphs

Formats may be named by short name or MIME type ("turtle", "text/turtle").
"""

from typing import Dict, List, Optional

from rdf_forkstore.errors import UnsupportedFormatError
from rdf_forkstore.formats.ntriples import NTriplesParser, NTriplesSerializer, parse_ntriples, serialize_ntriples
from rdf_forkstore.formats.nquads import NQuadsParser, NQuadsSerializer, parse_nquads, serialize_nquads
from rdf_forkstore.formats.turtle import TurtleParser, TurtleSerializer, parse_turtle, serialize_turtle
from rdf_forkstore.terms import Quad, Term

FORMAT_ALIASES = {
    "turtle": "turtle",
    "ttl": "turtle",
    "text/turtle": "turtle",
    "ntriples": "ntriples",
    "nt": "ntriples",
    "n-triples": "ntriples",
    "application/n-triples": "ntriples",
    "nquads": "nquads",
    "nq": "nquads",
    "n-quads": "nquads",
    "application/n-quads": "nquads",
}

MIME_TYPES = {
    "turtle": "text/turtle",
    "ntriples": "application/n-triples",
    "nquads": "application/n-quads",
}


def normalize_format(format: str) -> str:
    """Map a short name or MIME type (parameters ignored) to a format name."""
    key = format.split(";", 1)[0].strip().lower()
    try:
        return FORMAT_ALIASES[key]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported format: {format}") from None


def parse(content: str, format: str, graph: Optional[Term] = None, base: Optional[str] = None) -> List[Quad]:
    """Parse ``content`` into quads placed in ``graph``."""
    name = normalize_format(format)
    if name == "turtle":
        return parse_turtle(content, graph, base=base)
    if name == "nquads":
        return parse_nquads(content, graph)
    return parse_ntriples(content, graph)


def serialize(quads: List[Quad], format: str, prefixes: Optional[Dict[str, str]] = None) -> str:
    """Serialize quads. Graph names are only written by N-Quads."""
    name = normalize_format(format)
    if name == "turtle":
        return serialize_turtle(quads, prefixes)
    if name == "nquads":
        return serialize_nquads(quads)
    return serialize_ntriples(quads)


__all__ = [
    "FORMAT_ALIASES",
    "MIME_TYPES",
    "normalize_format",
    "parse",
    "serialize",
    # Turtle
    "TurtleParser",
    "TurtleSerializer",
    "parse_turtle",
    "serialize_turtle",
    # N-Triples
    "NTriplesParser",
    "NTriplesSerializer",
    "parse_ntriples",
    "serialize_ntriples",
    # N-Quads
    "NQuadsParser",
    "NQuadsSerializer",
    "parse_nquads",
    "serialize_nquads",
]
