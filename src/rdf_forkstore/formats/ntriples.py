"""
N-Triples Parser and Serializer.

Line-based format, one statement per line:

    <subject> <predicate> <object> .

Grammar (subset used here):
  triple    ::= subject predicate object '.'
  subject   ::= IRIREF | BLANK_NODE_LABEL
  predicate ::= IRIREF
  object    ::= IRIREF | BLANK_NODE_LABEL | literal
  literal   ::= STRING_LITERAL_QUOTE ('^^' IRIREF | LANGTAG)?

Reference: https://www.w3.org/TR/n-triples/
"""

from io import StringIO
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from rdf_forkstore.errors import ParseError
from rdf_forkstore.terms import Quad, Term, TermKind

_ESCAPES = {
    "t": "\t",
    "b": "\b",
    "n": "\n",
    "r": "\r",
    "f": "\f",
    '"': '"',
    "'": "'",
    "\\": "\\",
}

_LITERAL_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def _read_source(source: Union[str, Path, StringIO]) -> str:
    if isinstance(source, Path):
        return source.read_text(encoding="utf-8")
    if isinstance(source, StringIO):
        return source.read()
    return source


class NTriplesParser:
    """
    Parser for N-Triples format.

    Produces quads addressed to the graph given to ``parse`` (which may be
    None for plain triple parsing).
    """

    def __init__(self):
        self.line_number = 0

    def parse(self, source: Union[str, Path, StringIO], graph: Optional[Term] = None) -> List[Quad]:
        """
        Parse N-Triples content.

        Args:
            source: N-Triples content as string, file path, or StringIO
            graph: Graph every parsed statement is placed in

        Returns:
            List of quads in document order
        """
        text = _read_source(source)
        return [
            Quad(s, p, o, graph)
            for s, p, o, _ in self.parse_lines(text.splitlines())
        ]

    def parse_lines(self, lines: List[str]) -> Iterator[Tuple[Term, Term, Term, Optional[Term]]]:
        for i, line in enumerate(lines):
            self.line_number = i + 1

            line = line.strip()
            if not line or line.startswith('#'):
                continue

            try:
                yield self._parse_line(line)
            except ParseError:
                raise
            except (ValueError, IndexError) as e:
                raise ParseError(f"{e}\nLine: {line}", self.line_number) from e

    def _parse_line(self, line: str) -> Tuple[Term, Term, Term, Optional[Term]]:
        pos = 0
        subject, pos = self._parse_subject(line, pos)
        pos = self._skip_ws(line, pos)
        predicate, pos = self._parse_iri(line, pos)
        pos = self._skip_ws(line, pos)
        obj, pos = self._parse_object(line, pos)
        pos = self._skip_ws(line, pos)
        self._expect_end(line, pos)
        return subject, predicate, obj, None

    def _expect_end(self, line: str, pos: int) -> None:
        if pos >= len(line) or line[pos] != '.':
            raise ParseError(f"Expected '.' at column {pos + 1}", self.line_number)
        rest = line[pos + 1:].strip()
        if rest and not rest.startswith('#'):
            raise ParseError(f"Unexpected content after '.': {rest!r}", self.line_number)

    # =========================================================================
    # Terms
    # =========================================================================

    def _skip_ws(self, line: str, pos: int) -> int:
        while pos < len(line) and line[pos] in ' \t':
            pos += 1
        return pos

    def _parse_subject(self, line: str, pos: int) -> Tuple[Term, int]:
        if line.startswith('<', pos):
            return self._parse_iri(line, pos)
        if line.startswith('_:', pos):
            return self._parse_blank_node(line, pos)
        raise ParseError(f"Expected IRI or blank node at column {pos + 1}", self.line_number)

    def _parse_object(self, line: str, pos: int) -> Tuple[Term, int]:
        if line.startswith('<', pos):
            return self._parse_iri(line, pos)
        if line.startswith('_:', pos):
            return self._parse_blank_node(line, pos)
        if line.startswith('"', pos):
            return self._parse_literal(line, pos)
        raise ParseError(f"Expected object term at column {pos + 1}", self.line_number)

    def _parse_iri(self, line: str, pos: int) -> Tuple[Term, int]:
        if not line.startswith('<', pos):
            raise ParseError(f"Expected '<' at column {pos + 1}", self.line_number)
        end = line.find('>', pos + 1)
        if end == -1:
            raise ParseError("Unterminated IRI", self.line_number)
        value = self._unescape(line[pos + 1:end])
        return Term.uri(value), end + 1

    def _parse_blank_node(self, line: str, pos: int) -> Tuple[Term, int]:
        start = pos + 2
        end = start
        while end < len(line) and line[end] not in ' \t<"':
            end += 1
        label = line[start:end]
        # A trailing '.' terminates the statement, not the label
        while label.endswith('.'):
            label = label[:-1]
            end -= 1
        if not label:
            raise ParseError("Empty blank node label", self.line_number)
        return Term.bnode(label), end

    def _parse_literal(self, line: str, pos: int) -> Tuple[Term, int]:
        chars = []
        i = pos + 1
        while i < len(line):
            ch = line[i]
            if ch == '\\':
                escaped, i = self._parse_escape(line, i)
                chars.append(escaped)
                continue
            if ch == '"':
                break
            chars.append(ch)
            i += 1
        else:
            raise ParseError("Unterminated string literal", self.line_number)

        value = ''.join(chars)
        i += 1

        if line.startswith('@', i):
            end = i + 1
            while end < len(line) and (line[end].isalnum() or line[end] == '-'):
                end += 1
            return Term.literal(value, lang=line[i + 1:end].lower()), end

        if line.startswith('^^', i):
            datatype, end = self._parse_iri(line, i + 2)
            return Term.literal(value, datatype=datatype.value), end

        return Term.literal(value), i

    def _parse_escape(self, line: str, pos: int) -> Tuple[str, int]:
        code = line[pos + 1]
        if code == 'u':
            return chr(int(line[pos + 2:pos + 6], 16)), pos + 6
        if code == 'U':
            return chr(int(line[pos + 2:pos + 10], 16)), pos + 10
        if code in _ESCAPES:
            return _ESCAPES[code], pos + 2
        raise ParseError(f"Invalid escape \\{code}", self.line_number)

    def _unescape(self, text: str) -> str:
        if '\\' not in text:
            return text
        chars = []
        i = 0
        while i < len(text):
            if text[i] == '\\':
                ch, i = self._parse_escape(text, i)
                chars.append(ch)
            else:
                chars.append(text[i])
                i += 1
        return ''.join(chars)


class NTriplesSerializer:
    """Serializer for N-Triples format."""

    def format_term(self, term: Term) -> str:
        """Render one term in N-Triples syntax."""
        if term.kind == TermKind.IRI:
            return f"<{term.value}>"
        if term.kind == TermKind.BNODE:
            return f"_:{term.value}"

        escaped = ''.join(_LITERAL_ESCAPES.get(ch, ch) for ch in term.value)
        if term.lang:
            return f'"{escaped}"@{term.lang}'
        if term.datatype:
            return f'"{escaped}"^^<{term.datatype}>'
        return f'"{escaped}"'

    def format_triple(self, quad: Quad) -> str:
        return (
            f"{self.format_term(quad.subject)} "
            f"{self.format_term(quad.predicate)} "
            f"{self.format_term(quad.object)} ."
        )

    def serialize(self, quads: List[Quad]) -> str:
        """Serialize statements as N-Triples, ignoring their graphs."""
        lines = [self.format_triple(quad) for quad in quads]
        return '\n'.join(lines) + ('\n' if lines else '')


def parse_ntriples(source: Union[str, Path, StringIO], graph: Optional[Term] = None) -> List[Quad]:
    """Parse N-Triples content into quads in ``graph``."""
    return NTriplesParser().parse(source, graph)


def serialize_ntriples(quads: List[Quad]) -> str:
    return NTriplesSerializer().serialize(quads)
