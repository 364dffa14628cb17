"""
Shadow graph naming.

For every logical graph G the store keeps three derived graphs whose IRIs
encode G as a query parameter:

    {base}/graphs/add?for=<G>       staged insertions
    {base}/graphs/del?for=<G>       staged deletions
    {base}/graphs/merged?for=<G>    materialized merge (export only)

The mapping is deterministic, so the logical graph can always be recovered
from a shadow IRI with ``target_graph_of``.
"""

from enum import Enum
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit

from rdf_forkstore.config import BASE_GRAPH_STRING
from rdf_forkstore.terms import Term, named_node


class ShadowKind(Enum):
    """Which derived graph of a logical graph."""
    ADDITION = "add"
    REMOVAL = "del"
    MERGED = "merged"


def _graph_value(graph: "Term | str") -> str:
    return graph.value if isinstance(graph, Term) else graph


def shadow_graph_for(graph: "Term | str", kind: ShadowKind, base: str = BASE_GRAPH_STRING) -> Term:
    return named_node(f"{base}/graphs/{kind.value}?for={quote(_graph_value(graph), safe='')}")


def addition_graph_for(graph: "Term | str", base: str = BASE_GRAPH_STRING) -> Term:
    """Graph holding staged insertions for ``graph``."""
    return shadow_graph_for(graph, ShadowKind.ADDITION, base)


def removal_graph_for(graph: "Term | str", base: str = BASE_GRAPH_STRING) -> Term:
    """Graph holding staged deletions for ``graph``."""
    return shadow_graph_for(graph, ShadowKind.REMOVAL, base)


def merged_graph_for(graph: "Term | str", base: str = BASE_GRAPH_STRING) -> Term:
    """Graph holding the materialized merge of ``graph``."""
    return shadow_graph_for(graph, ShadowKind.MERGED, base)


def parse_shadow_graph(
    graph: "Term | str", base: str = BASE_GRAPH_STRING
) -> Optional[tuple[ShadowKind, Term]]:
    """
    Split a shadow graph IRI into (kind, logical graph).

    Returns None for graphs that are not shadow graphs.
    """
    value = _graph_value(graph)
    prefix = f"{base}/graphs/"
    if not value.startswith(prefix):
        return None

    parts = urlsplit(value)
    kind_name = value[len(prefix):].split("?", 1)[0]
    try:
        kind = ShadowKind(kind_name)
    except ValueError:
        return None

    targets = parse_qs(parts.query).get("for")
    if not targets or not targets[0]:
        return None
    return kind, named_node(targets[0])


def target_graph_of(graph: "Term | str", base: str = BASE_GRAPH_STRING) -> Optional[Term]:
    """Logical graph an addition/removal shadow graph belongs to, else None."""
    parsed = parse_shadow_graph(graph, base)
    if parsed is None:
        return None
    kind, target = parsed
    if kind is ShadowKind.MERGED:
        return None
    return target


def is_shadow_graph(graph: "Term | str", base: str = BASE_GRAPH_STRING) -> bool:
    return parse_shadow_graph(graph, base) is not None
