"""
Exceptions raised by rdf-forkstore.

Every error derives from ForkStoreError so callers can catch the whole
family at an API boundary.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rdf_forkstore.terms import Term


class ForkStoreError(Exception):
    """Base class for all store errors."""
    pass


class MalformedPatternError(ForkStoreError, ValueError):
    """A match pattern holds an invalid term for its position."""
    pass


class RemoteLoadError(ForkStoreError):
    """A remote graph could not be fetched or parsed. The base graph is unchanged."""

    def __init__(self, graph: Term | str, reason: str):
        self.graph = graph
        self.reason = reason
        super().__init__(f"Failed to load {graph}: {reason}")


class RemoteUpdateError(ForkStoreError):
    """The remote source rejected (or never received) an update."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PersistError(ForkStoreError):
    """
    One or more graphs failed to persist.

    ``results`` holds the outcome of every graph in the persist call, so
    callers can tell which graphs were committed and which kept their
    staged edits.
    """

    def __init__(self, results: list[Any]):
        self.results = results
        failed = [r for r in results if not r.success]
        names = ", ".join(str(r.graph) for r in failed)
        super().__init__(f"Failed to persist {len(failed)} graph(s): {names}")

    @property
    def failed(self) -> list[Any]:
        return [r for r in self.results if not r.success]


class MalformedListError(ForkStoreError):
    """An RDF list chain is missing a cell or never reaches rdf:nil."""
    pass


class MalformedLiteralError(ForkStoreError, ValueError):
    """A stored literal cannot be read as its attribute's kind."""
    pass


class UnresolvablePredicateError(ForkStoreError):
    """No predicate can be derived for an attribute."""

    def __init__(self, model_name: str | None, attribute: str):
        self.model_name = model_name
        self.attribute = attribute
        super().__init__(
            f"Cannot derive a predicate for {model_name or '<unnamed model>'}.{attribute}: "
            f"set predicate=, ns=, a default namespace or a model namespace"
        )


class UnresolvableGraphError(ForkStoreError):
    """No graph is known for an entity attribute."""
    pass


class UnknownModelError(ForkStoreError, KeyError):
    """A model name was used that was never registered."""
    pass


class UnsupportedFormatError(ForkStoreError, ValueError):
    """A serialization format is not supported."""
    pass


class ParseError(ForkStoreError, ValueError):
    """RDF content could not be parsed."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"Error parsing line {line_number}: {message}"
        super().__init__(message)


class ConfigValidationError(ForkStoreError):
    """Configuration validation failed."""
    pass
