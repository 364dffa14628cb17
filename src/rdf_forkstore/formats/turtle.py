"""
Turtle Parser and Serializer.

Supports the Turtle constructs found in Linked Data documents:
- @prefix / @base and SPARQL-style PREFIX / BASE
- prefixed names, ``a``, predicate lists (;) and object lists (,)
- short and long string literals, language tags, datatypes
- integer / decimal / double / boolean shorthand literals
- blank node labels, [ ... ] property lists and ( ... ) collections

Reference: https://www.w3.org/TR/turtle/
"""

import re
from io import StringIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin

from rdf_forkstore.errors import ParseError
from rdf_forkstore.formats.ntriples import NTriplesParser, NTriplesSerializer, _read_source
from rdf_forkstore.terms import (
    RDF_FIRST,
    RDF_NIL,
    RDF_REST,
    RDF_TYPE,
    XSD_BOOLEAN,
    XSD_DECIMAL,
    XSD_DOUBLE,
    XSD_INTEGER,
    Quad,
    Term,
    TermKind,
)

_NAME_CHAR = r"[\w\-%]"
_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+|\#[^\n]*)
    | (?P<iri><[^<>"{}|^`\\\s]*>)
    | (?P<long_string>\"\"\"(?:[^"\\]|\\.|"(?!""))*\"\"\"|'''(?:[^'\\]|\\.|'(?!''))*''')
    | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
    | (?P<bnode>_:(?:""" + _NAME_CHAR + r"""|\.(?=""" + _NAME_CHAR + r"""))+)
    | (?P<lang>@[a-zA-Z]+(?:-[a-zA-Z0-9]+)*)
    | (?P<datatype_mark>\^\^)
    | (?P<number>[+-]?(?:\d+\.\d*[eE][+-]?\d+|\.\d+[eE][+-]?\d+|\d+[eE][+-]?\d+|\d*\.\d+|\d+))
    | (?P<pname>(?:[A-Za-z][\w\-.]*)?:(?:[\w\-:%]|\.(?=[\w\-:%]))*)
    | (?P<keyword>[A-Za-z]+)
    | (?P<punct>[.;,\[\]()])
    """,
    re.VERBOSE,
)

Token = Tuple[str, str, int]


class TurtleParser:
    """
    Recursive-descent Turtle parser.

    Example:
        parser = TurtleParser(base="http://example.org/doc")
        quads = parser.parse(text, graph=named_node("http://example.org/doc"))
    """

    def __init__(self, base: Optional[str] = None):
        self.base = base
        self.prefixes: Dict[str, str] = {}
        self._tokens: List[Token] = []
        self._pos = 0
        self._graph: Optional[Term] = None
        self._quads: List[Quad] = []
        self._bnode_labels: Dict[str, Term] = {}
        self._escapes = NTriplesParser()

    def parse(self, source: Union[str, Path, StringIO], graph: Optional[Term] = None) -> List[Quad]:
        text = _read_source(source)
        self._tokens = self._tokenize(text)
        self._pos = 0
        self._graph = graph
        self._quads = []
        self._bnode_labels = {}

        while not self._at_end():
            self._statement()
        return self._quads

    # =========================================================================
    # Tokens
    # =========================================================================

    def _tokenize(self, text: str) -> List[Token]:
        tokens: List[Token] = []
        pos = 0
        line = 1
        while pos < len(text):
            match = _TOKEN_RE.match(text, pos)
            if match is None:
                raise ParseError(f"Unexpected character {text[pos]!r}", line)
            kind = match.lastgroup
            value = match.group()
            if kind != "ws":
                tokens.append((kind, value, line))
            line += value.count("\n")
            pos = match.end()
        return tokens

    def _at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def _peek(self) -> Optional[Token]:
        return None if self._at_end() else self._tokens[self._pos]

    def _next(self) -> Token:
        if self._at_end():
            line = self._tokens[-1][2] if self._tokens else None
            raise ParseError("Unexpected end of document", line)
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _expect(self, value: str) -> None:
        kind, actual, line = self._next()
        if actual != value:
            raise ParseError(f"Expected {value!r}, got {actual!r}", line)

    def _peek_is(self, value: str) -> bool:
        token = self._peek()
        return token is not None and token[1] == value

    # =========================================================================
    # Grammar
    # =========================================================================

    def _statement(self) -> None:
        kind, value, line = self._peek()
        if value in ("@prefix", "@base"):
            self._next()
            self._directive(value[1:], line)
            self._expect(".")
            return
        if kind == "keyword" and value.upper() in ("PREFIX", "BASE"):
            self._next()
            self._directive(value.lower(), line)
            return

        if value == "[":
            subject = self._blank_node_property_list()
            if not self._peek_is("."):
                self._predicate_object_list(subject)
        else:
            subject = self._subject()
            self._predicate_object_list(subject)
        self._expect(".")

    def _directive(self, name: str, line: int) -> None:
        if name == "prefix":
            kind, pname, line = self._next()
            if kind != "pname" or not pname.endswith(":"):
                raise ParseError(f"Invalid prefix declaration {pname!r}", line)
            self.prefixes[pname[:-1]] = self._iri(self._next()).value
        else:
            self.base = self._iri(self._next()).value

    def _subject(self) -> Term:
        token = self._next()
        kind, value, line = token
        if kind in ("iri", "pname"):
            return self._iri(token)
        if kind == "bnode":
            return self._bnode(value)
        if value == "(":
            return self._collection()
        raise ParseError(f"Invalid subject {value!r}", line)

    def _predicate_object_list(self, subject: Term) -> None:
        while True:
            predicate = self._verb()
            self._object_list(subject, predicate)
            if not self._peek_is(";"):
                return
            while self._peek_is(";"):
                self._next()
            if self._peek() is None or self._peek()[1] in (".", "]"):
                return

    def _verb(self) -> Term:
        token = self._next()
        if token[1] == "a":
            return RDF_TYPE
        if token[0] in ("iri", "pname"):
            return self._iri(token)
        raise ParseError(f"Invalid predicate {token[1]!r}", token[2])

    def _object_list(self, subject: Term, predicate: Term) -> None:
        self._emit(subject, predicate, self._object())
        while self._peek_is(","):
            self._next()
            self._emit(subject, predicate, self._object())

    def _object(self) -> Term:
        token = self._next()
        kind, value, line = token
        if kind in ("iri", "pname"):
            return self._iri(token)
        if kind == "bnode":
            return self._bnode(value)
        if kind in ("string", "long_string"):
            return self._literal(value, kind)
        if kind == "number":
            return self._number(value)
        if kind == "keyword" and value in ("true", "false"):
            return Term.literal(value, datatype=XSD_BOOLEAN)
        if value == "[":
            self._pos -= 1
            return self._blank_node_property_list()
        if value == "(":
            return self._collection()
        raise ParseError(f"Invalid object {value!r}", line)

    def _blank_node_property_list(self) -> Term:
        self._expect("[")
        node = Term.fresh_bnode()
        if not self._peek_is("]"):
            self._predicate_object_list(node)
        self._expect("]")
        return node

    def _collection(self) -> Term:
        items: List[Term] = []
        while not self._peek_is(")"):
            items.append(self._object())
        self._expect(")")
        if not items:
            return RDF_NIL

        cells = [Term.fresh_bnode() for _ in items]
        for index, (cell, item) in enumerate(zip(cells, items)):
            self._emit(cell, RDF_FIRST, item)
            self._emit(cell, RDF_REST, cells[index + 1] if index + 1 < len(cells) else RDF_NIL)
        return cells[0]

    # =========================================================================
    # Terms
    # =========================================================================

    def _emit(self, subject: Term, predicate: Term, obj: Term) -> None:
        self._quads.append(Quad(subject, predicate, obj, self._graph))

    def _iri(self, token: Token) -> Term:
        kind, value, line = token
        if kind == "iri":
            iri = self._escapes._unescape(value[1:-1])
            return Term.uri(urljoin(self.base, iri) if self.base else iri)
        if kind == "pname":
            prefix, _, local = value.partition(":")
            if prefix not in self.prefixes:
                raise ParseError(f"Undefined prefix {prefix!r}", line)
            local = re.sub(r"\\(.)", r"\1", local)
            return Term.uri(self.prefixes[prefix] + local)
        raise ParseError(f"Expected IRI, got {value!r}", line)

    def _bnode(self, value: str) -> Term:
        label = value[2:]
        if label not in self._bnode_labels:
            self._bnode_labels[label] = Term.bnode(label)
        return self._bnode_labels[label]

    def _literal(self, value: str, kind: str) -> Term:
        quote = 3 if kind == "long_string" else 1
        text = self._escapes._unescape(value[quote:-quote])

        token = self._peek()
        if token is not None and token[0] == "lang" and token[1] not in ("@prefix", "@base"):
            self._next()
            return Term.literal(text, lang=token[1][1:].lower())
        if token is not None and token[0] == "datatype_mark":
            self._next()
            datatype = self._iri(self._next())
            return Term.literal(text, datatype=datatype.value)
        return Term.literal(text)

    def _number(self, value: str) -> Term:
        if "e" in value or "E" in value:
            return Term.literal(value, datatype=XSD_DOUBLE)
        if "." in value:
            return Term.literal(value, datatype=XSD_DECIMAL)
        return Term.literal(value, datatype=XSD_INTEGER)


class TurtleSerializer:
    """
    Serializer for Turtle format.

    Groups statements by subject and predicate; IRIs under a known prefix
    are written as prefixed names.
    """

    _LOCAL_NAME = re.compile(r"^[A-Za-z_][\w\-]*$")

    def __init__(self, prefixes: Optional[Dict[str, str]] = None):
        self.prefixes = dict(prefixes or {})
        self._nt = NTriplesSerializer()

    def format_term(self, term: Term) -> str:
        if term.kind == TermKind.IRI:
            if term == RDF_TYPE:
                return "a"
            for prefix, namespace in self.prefixes.items():
                if term.value.startswith(namespace):
                    local = term.value[len(namespace):]
                    if self._LOCAL_NAME.match(local):
                        return f"{prefix}:{local}"
        return self._nt.format_term(term)

    def serialize(self, quads: List[Quad]) -> str:
        lines = [f"@prefix {prefix}: <{namespace}> ." for prefix, namespace in self.prefixes.items()]
        if lines:
            lines.append("")

        grouped: Dict[Term, Dict[Term, List[Term]]] = {}
        for quad in quads:
            objects = grouped.setdefault(quad.subject, {}).setdefault(quad.predicate, [])
            if quad.object not in objects:
                objects.append(quad.object)

        for subject, predicates in grouped.items():
            parts = []
            for predicate, objects in predicates.items():
                rendered = ", ".join(self.format_term(o) for o in objects)
                parts.append(f"{self.format_term(predicate)} {rendered}")
            subject_text = self._nt.format_term(subject) if subject == RDF_TYPE else self.format_term(subject)
            lines.append(f"{subject_text} " + " ;\n    ".join(parts) + " .")
        return "\n".join(lines) + ("\n" if lines else "")


def parse_turtle(
    source: Union[str, Path, StringIO],
    graph: Optional[Term] = None,
    base: Optional[str] = None,
) -> List[Quad]:
    return TurtleParser(base=base).parse(source, graph)


def serialize_turtle(quads: List[Quad], prefixes: Optional[Dict[str, str]] = None) -> str:
    return TurtleSerializer(prefixes).serialize(quads)
