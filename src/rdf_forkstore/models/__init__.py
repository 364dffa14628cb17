"""
Semantic models on top of the overlay store.
"""

from rdf_forkstore.models.semantic import (
    AttributeKind,
    AttributeDefinition,
    Attribute,
    SemanticModel,
    SolidOptions,
    property_,
    string,
    integer,
    decimal,
    float_,
    boolean,
    date_time,
    uri,
    term,
    belongs_to,
    has_many,
    rdf_type,
    default_graph,
    autosave,
    solid,
)
from rdf_forkstore.models.store import SemanticStore

__all__ = [
    "AttributeKind",
    "AttributeDefinition",
    "Attribute",
    "SemanticModel",
    "SolidOptions",
    "SemanticStore",
    # Attribute declarations
    "property_",
    "string",
    "integer",
    "decimal",
    "float_",
    "boolean",
    "date_time",
    "uri",
    "term",
    "belongs_to",
    "has_many",
    # Class decorators
    "rdf_type",
    "default_graph",
    "autosave",
    "solid",
]
