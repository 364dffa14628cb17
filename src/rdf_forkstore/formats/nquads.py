"""
N-Quads Parser and Serializer.

N-Quads extends N-Triples with a fourth element: the graph name.
Each line contains: subject predicate object [graph] .

Grammar:
  nquadsDoc ::= quad? (EOL quad)* EOL?
  quad      ::= subject predicate object graphLabel? '.'
  graphLabel ::= IRIREF | BLANK_NODE_LABEL

Reference: https://www.w3.org/TR/n-quads/
"""

from io import StringIO
from pathlib import Path
from typing import List, Optional, Tuple, Union

from rdf_forkstore.formats.ntriples import NTriplesParser, NTriplesSerializer, _read_source
from rdf_forkstore.terms import Quad, Term


class NQuadsParser(NTriplesParser):
    """
    Parser for N-Quads format.

    Extends NTriplesParser to handle the optional fourth element (graph name).
    Statements without a graph label land in ``default_graph``.

    Format:
        <subject> <predicate> <object> .
        <subject> <predicate> <object> <graph> .
    """

    def parse(
        self,
        source: Union[str, Path, StringIO],
        graph: Optional[Term] = None,
    ) -> List[Quad]:
        """
        Parse N-Quads content.

        Args:
            source: N-Quads content as string, file path, or StringIO
            graph: Graph for statements without a graph label

        Returns:
            List of quads in document order
        """
        text = _read_source(source)
        return [
            Quad(s, p, o, g if g is not None else graph)
            for s, p, o, g in self.parse_lines(text.splitlines())
        ]

    def _parse_line(self, line: str) -> Tuple[Term, Term, Term, Optional[Term]]:
        pos = 0
        subject, pos = self._parse_subject(line, pos)
        pos = self._skip_ws(line, pos)
        predicate, pos = self._parse_iri(line, pos)
        pos = self._skip_ws(line, pos)
        obj, pos = self._parse_object(line, pos)
        pos = self._skip_ws(line, pos)

        graph = None
        if pos < len(line) and line[pos] != '.':
            graph, pos = self._parse_subject(line, pos)
            pos = self._skip_ws(line, pos)

        self._expect_end(line, pos)
        return subject, predicate, obj, graph


class NQuadsSerializer(NTriplesSerializer):
    """
    Serializer for N-Quads format.

    Extends NTriplesSerializer to output graph names.
    """

    def format_quad(self, quad: Quad) -> str:
        triple = self.format_triple(quad)
        if quad.graph is None:
            return triple
        return f"{triple[:-2]} {self.format_term(quad.graph)} ."

    def serialize(self, quads: List[Quad]) -> str:
        lines = [self.format_quad(quad) for quad in quads]
        return '\n'.join(lines) + ('\n' if lines else '')


def parse_nquads(source: Union[str, Path, StringIO], graph: Optional[Term] = None) -> List[Quad]:
    """
    Parse N-Quads content.

    Args:
        source: N-Quads content as string, file path, or StringIO
        graph: Graph for statements without a graph label

    Returns:
        List of quads
    """
    return NQuadsParser().parse(source, graph)


def serialize_nquads(quads: List[Quad]) -> str:
    return NQuadsSerializer().serialize(quads)
