"""
Remote graph source.

The store depends on exactly two remote operations:

- load(graph)               fetch a graph document
- update(deletes, inserts)  apply deletions and insertions atomically

``RemoteSource`` is that contract; ``HttpRemoteSource`` implements it over
HTTP with httpx: GET with content negotiation for loads, and a SPARQL
Update (DELETE DATA / INSERT DATA, or DELETE/WHERE for blank nodes)
either PATCHed to the graph document or POSTed to a SPARQL endpoint.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from rdf_forkstore.config import RemoteConfig
from rdf_forkstore.errors import RemoteLoadError, RemoteUpdateError
from rdf_forkstore.formats import NTriplesSerializer
from rdf_forkstore.terms import Quad, Term

logger = logging.getLogger(__name__)

ACCEPT_RDF = "text/turtle, application/n-quads;q=0.9, application/n-triples;q=0.8"
SPARQL_UPDATE = "application/sparql-update"


@dataclass
class RemoteDocument:
    """A fetched graph document."""
    graph: Term
    content: str
    content_type: str = "text/turtle"


class RemoteSource(Protocol):
    async def load(self, graph: Term) -> RemoteDocument: ...

    async def update(self, deletes: list[Quad], inserts: list[Quad]) -> None: ...


def _group_by_graph(quads: list[Quad]) -> dict[Optional[Term], list[Quad]]:
    grouped: dict[Optional[Term], list[Quad]] = {}
    for quad in quads:
        grouped.setdefault(quad.graph, []).append(quad)
    return grouped


def build_sparql_update(
    deletes: list[Quad],
    inserts: list[Quad],
    with_graph: bool = False,
) -> str:
    """
    Render a SPARQL Update for the given deltas.

    Blank nodes are not allowed in DELETE DATA, so deletions touching a
    blank node are rendered as ``DELETE { ... } WHERE { ... }`` with each
    blank node replaced by a variable.

    Args:
        deletes: Quads to delete
        inserts: Quads for INSERT DATA
        with_graph: Wrap statements in GRAPH <g> blocks (endpoint mode)
    """
    serializer = NTriplesSerializer()
    variables: dict[Term, str] = {}

    def term_for(term: Term) -> str:
        if term.is_bnode:
            if term not in variables:
                variables[term] = f"?b{len(variables)}"
            return variables[term]
        return serializer.format_term(term)

    def statement(quad: Quad, as_pattern: bool) -> str:
        if not as_pattern:
            return serializer.format_triple(quad)
        return f"{term_for(quad.subject)} {term_for(quad.predicate)} {term_for(quad.object)} ."

    def block(quads: list[Quad], as_pattern: bool = False) -> str:
        if not with_graph:
            return "\n".join(f"  {statement(q, as_pattern)}" for q in quads)
        parts = []
        for graph, members in _group_by_graph(quads).items():
            body = "\n".join(f"    {statement(q, as_pattern)}" for q in members)
            if graph is None:
                parts.append(body)
            else:
                parts.append(f"  GRAPH {serializer.format_term(graph)} {{\n{body}\n  }}")
        return "\n".join(parts)

    operations = []
    if deletes:
        if any(term.is_bnode for q in deletes for term in q.triple):
            pattern = block(deletes, as_pattern=True)
            operations.append(f"DELETE {{\n{pattern}\n}}\nWHERE {{\n{pattern}\n}}")
        else:
            operations.append(f"DELETE DATA {{\n{block(deletes)}\n}}")
    if inserts:
        operations.append(f"INSERT DATA {{\n{block(inserts)}\n}}")
    return " ;\n".join(operations)


class HttpRemoteSource:
    """
    HTTP implementation of the remote contract.

    Transport errors are retried with linear backoff; HTTP error statuses
    are reported immediately.

    Example:
        remote = HttpRemoteSource(RemoteConfig(auth_token="..."))
        store = ForkingStore(remote=remote)
        await store.load(named_node("https://pod.example/profile/card"))
    """

    def __init__(
        self,
        config: Optional[RemoteConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or RemoteConfig()
        self._transport = transport

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = dict(self.config.headers)
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        if extra:
            headers.update(extra)
        return headers

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_error: Optional[Exception] = None
        for attempt in range(self.config.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self.config.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    return await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"{method} {url} failed (attempt {attempt + 1}): {e}")
                await asyncio.sleep(self.config.retry_backoff_seconds * (attempt + 1))
        raise last_error

    async def load(self, graph: Term) -> RemoteDocument:
        """
        Fetch the document behind ``graph``.

        Raises:
            RemoteLoadError: unreachable source or non-2xx response
        """
        start_time = time.time()
        try:
            response = await self._send("GET", graph.value, headers=self._headers({"Accept": ACCEPT_RDF}))
        except httpx.TransportError as e:
            raise RemoteLoadError(graph, str(e)) from e

        if response.status_code >= 400:
            raise RemoteLoadError(graph, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "text/turtle")
        logger.info(
            f"Fetched {graph.value} ({len(response.content)} bytes, {content_type}) "
            f"in {(time.time() - start_time) * 1000:.1f}ms"
        )
        return RemoteDocument(graph=graph, content=response.text, content_type=content_type)

    async def update(self, deletes: list[Quad], inserts: list[Quad]) -> None:
        """
        Submit deletions and insertions as one SPARQL Update.

        Raises:
            RemoteUpdateError: rejected, unreachable, or (PATCH mode) the
                statements span several graph documents
        """
        if not deletes and not inserts:
            return

        if self.config.update_method == "post":
            url = self.config.sparql_endpoint
            body = build_sparql_update(deletes, inserts, with_graph=True)
            kwargs = {"data": {"update": body}}
        else:
            graphs = set(_group_by_graph(deletes + inserts))
            if len(graphs) != 1 or None in graphs:
                raise RemoteUpdateError(
                    f"PATCH updates must target exactly one graph document, got {len(graphs)}"
                )
            url = next(iter(graphs)).value
            body = build_sparql_update(deletes, inserts, with_graph=False)
            kwargs = {"content": body, "headers": self._headers({"Content-Type": SPARQL_UPDATE})}

        if "headers" not in kwargs:
            kwargs["headers"] = self._headers()

        try:
            response = await self._send(self.config.update_method.upper(), url, **kwargs)
        except httpx.TransportError as e:
            raise RemoteUpdateError(f"Update of {url} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteUpdateError(
                f"Update of {url} rejected with HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.info(f"Updated {url}: -{len(deletes)} +{len(inserts)}")
