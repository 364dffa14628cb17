"""
rdf-forkstore Storage Layer.

Dictionary-encoded Polars quad table with an overlay of staged edits
(addition/removal shadow graphs) per logical graph.
"""

from rdf_forkstore.storage.quads import QuadTable, validate_pattern
from rdf_forkstore.storage.graphs import (
    BASE_GRAPH_STRING,
    ShadowKind,
    addition_graph_for,
    removal_graph_for,
    merged_graph_for,
    parse_shadow_graph,
    target_graph_of,
    is_shadow_graph,
)
from rdf_forkstore.storage.lists import (
    DEFAULT_MAX_LENGTH,
    bnode_cells,
    uri_cells,
    encode_list,
    decode_list,
    list_cell_quads,
)
from rdf_forkstore.storage.forking import ForkingStore, PersistResult

__all__ = [
    # Physical table
    "QuadTable",
    "validate_pattern",
    # Shadow graphs
    "BASE_GRAPH_STRING",
    "ShadowKind",
    "addition_graph_for",
    "removal_graph_for",
    "merged_graph_for",
    "parse_shadow_graph",
    "target_graph_of",
    "is_shadow_graph",
    # Lists
    "DEFAULT_MAX_LENGTH",
    "bnode_cells",
    "uri_cells",
    "encode_list",
    "decode_list",
    "list_cell_quads",
    # Overlay store
    "ForkingStore",
    "PersistResult",
]
