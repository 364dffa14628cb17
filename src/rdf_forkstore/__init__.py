"""
rdf-forkstore: an overlay quad store with typed semantic models, powered by Polars.

Work against a local, mutable fork of remote RDF graphs and push only the
net changes back.
"""

__version__ = "0.1.0"

from rdf_forkstore.terms import (
    Term,
    TermKind,
    Quad,
    Namespace,
    RDF,
    XSD,
    SOLID,
    named_node,
    literal,
    blank_node,
)
from rdf_forkstore.errors import (
    ForkStoreError,
    MalformedPatternError,
    RemoteLoadError,
    RemoteUpdateError,
    PersistError,
    MalformedListError,
    MalformedLiteralError,
    UnresolvablePredicateError,
    UnresolvableGraphError,
    UnknownModelError,
)
from rdf_forkstore.config import ForkStoreConfig
from rdf_forkstore.remote import RemoteDocument, RemoteSource, HttpRemoteSource
from rdf_forkstore.storage import ForkingStore, PersistResult, encode_list, decode_list
from rdf_forkstore.models import SemanticModel, SemanticStore

__all__ = [
    # Terms
    "Term",
    "TermKind",
    "Quad",
    "Namespace",
    "RDF",
    "XSD",
    "SOLID",
    "named_node",
    "literal",
    "blank_node",
    # Errors
    "ForkStoreError",
    "MalformedPatternError",
    "RemoteLoadError",
    "RemoteUpdateError",
    "PersistError",
    "MalformedListError",
    "MalformedLiteralError",
    "UnresolvablePredicateError",
    "UnresolvableGraphError",
    "UnknownModelError",
    # Configuration
    "ForkStoreConfig",
    # Remote
    "RemoteDocument",
    "RemoteSource",
    "HttpRemoteSource",
    # Stores
    "ForkingStore",
    "PersistResult",
    "encode_list",
    "decode_list",
    "SemanticModel",
    "SemanticStore",
]
