"""
Entity store: model registry, instance cache and graph discovery.

``SemanticStore`` wraps a ForkingStore and owns the one instance per
(model name, uri) that the rest of the application sees.

Example:
    store = SemanticStore(ForkingStore(remote=HttpRemoteSource()))
    store.register("person", Person)
    await store.fetch_graph_for_type("person")
    for person in store.all("person"):
        print(person.name)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Union
from urllib.parse import urldefrag, urljoin

from rdf_forkstore.config import ForkStoreConfig
from rdf_forkstore.errors import (
    ForkStoreError,
    RemoteLoadError,
    UnknownModelError,
    UnresolvableGraphError,
)
from rdf_forkstore.models.semantic import NamespaceLike, SemanticModel
from rdf_forkstore.remote import RemoteSource
from rdf_forkstore.storage.forking import ForkingStore, PersistResult
from rdf_forkstore.storage.lists import CellFactory, bnode_cells, uri_cells
from rdf_forkstore.terms import RDF_TYPE, SOLID, Quad, Term, named_node

logger = logging.getLogger(__name__)

StoreChangeListener = Callable[[str, SemanticModel], Any]


class SemanticStore:
    """
    Registry of models and their live instances on top of a ForkingStore.

    Attributes:
        forking_store: The overlay store all reads and writes go through
        private_type_index: Graph of the user's private type index
        public_type_index: Graph of the user's public type index
        me: The user's WebID, used to resolve default storage locations
    """

    def __init__(
        self,
        forking_store: Optional[ForkingStore] = None,
        config: Optional[ForkStoreConfig] = None,
        remote: Optional[RemoteSource] = None,
    ):
        if forking_store is None:
            forking_store = ForkingStore(remote=remote, config=config)
        self.forking_store = forking_store
        self.config = config or forking_store.config

        self.private_type_index: Optional[Term] = None
        self.public_type_index: Optional[Term] = None
        self.me: Optional[Term] = None

        self._models: dict[str, type[SemanticModel]] = {}
        self._instances: dict[str, dict[Term, SemanticModel]] = {}
        self._graph_for_type: dict[str, Term] = {
            model: named_node(graph) for model, graph in self.config.models.graphs.items()
        }
        self._autosave_for_type: dict[str, bool] = dict(self.config.models.autosave)
        self._autosave_tasks: set[asyncio.Task] = set()
        self.change_listeners: dict[StoreChangeListener, None] = {}

    # =========================================================================
    # Models
    # =========================================================================

    def register(self, name: str, klass: Optional[type[SemanticModel]] = None):
        """
        Register a model class under ``name``.

        Usable directly or as a class decorator:

            @store.register("person")
            class Person(SemanticModel): ...
        """
        def decorate(model_class: type[SemanticModel]) -> type[SemanticModel]:
            if "model_name" not in model_class.__dict__:
                model_class.model_name = name
            self._models[name] = model_class
            logger.debug(f"Registered model {name} -> {model_class.__name__}")
            return model_class

        if klass is None:
            return decorate
        return decorate(klass)

    def class_for_model(self, name: str) -> type[SemanticModel]:
        try:
            return self._models[name]
        except KeyError:
            raise UnknownModelError(f"No model registered as {name!r}") from None

    @property
    def models(self) -> dict[str, type[SemanticModel]]:
        return dict(self._models)

    # =========================================================================
    # Instances
    # =========================================================================

    def create(
        self,
        model: str,
        uri: Union[Term, str],
        default_graph: Optional[Union[Term, str]] = None,
        default_namespace: Optional[NamespaceLike] = None,
    ) -> SemanticModel:
        """Return the instance for (model, uri), constructing it on first use."""
        uri = named_node(uri)
        existing = self.peek_instance(model, uri)
        if existing is not None:
            return existing

        klass = self.class_for_model(model)
        instance = klass(
            uri,
            store=self,
            model_name=model,
            default_graph=default_graph,
            default_namespace=default_namespace,
        )
        self.store_cache_for_model(model)[uri] = instance

        for listener in list(self.change_listeners):
            try:
                listener(model, instance)
            except Exception:
                logger.exception(f"Store change listener failed for {model} {uri.value}")
        return instance

    def store_cache_for_model(self, model: str) -> dict[Term, SemanticModel]:
        return self._instances.setdefault(model, {})

    def peek_instance(
        self, model: Optional[Union[str, Term]], uri: Optional[Union[Term, str]] = None
    ) -> Optional[SemanticModel]:
        """
        Cached instance for (model, uri), without creating one.

        Called with a single argument the uri is looked up in every model.
        """
        if uri is None:
            model, uri = None, model
        uri = named_node(uri)
        if model is not None:
            return self._instances.get(model, {}).get(uri)
        for instances in self._instances.values():
            if uri in instances:
                return instances[uri]
        return None

    def all(self, model: str) -> list[SemanticModel]:
        """Every subject typed with the model's rdf_type in the model's graph."""
        klass = self.class_for_model(model)
        if klass.rdf_type is None:
            raise ForkStoreError(f"Cannot list instances of {model}: it has no rdf_type")
        graph = self.graph_for_model(model)
        if graph is None:
            raise UnresolvableGraphError(f"No graph known for model {model}")
        return [
            self.create(model, quad.subject)
            for quad in self.match(None, RDF_TYPE, klass.rdf_type, graph)
        ]

    def delete(self, entity: SemanticModel) -> None:
        """Retract every statement about ``entity`` in its graph and forget the instance."""
        graph = entity.graph_for()
        self.stage(entity.model_name, self.match(entity.uri, None, None, graph), [])
        self.store_cache_for_model(entity.model_name).pop(entity.uri, None)
        entity.invalidate()
        logger.debug(f"Deleted {entity!r}")

    # =========================================================================
    # Graphs
    # =========================================================================

    def set_graph_for_type(self, model: str, graph: Union[Term, str]) -> None:
        self._graph_for_type[model] = named_node(graph)

    def get_graph_for_type(self, model: Optional[str]) -> Optional[Term]:
        if model is None:
            return None
        return self._graph_for_type.get(model)

    def graph_for_model(self, model: str) -> Optional[Term]:
        return self.discover_default_graph_by_type(self.class_for_model(model))

    def _find_type_registration(self, rdf_type: Term, index: Term) -> Optional[Term]:
        for registration in self.match(None, RDF_TYPE, SOLID("TypeRegistration"), index):
            if self.any(registration.subject, SOLID("forClass"), rdf_type, index) is None:
                continue
            location = self.any(registration.subject, SOLID("instance"), None, index)
            if location is not None:
                return location
        return None

    def discover_default_graph_by_type(self, klass: type[SemanticModel]) -> Optional[Term]:
        """
        Graph holding the instances of a model class.

        Solid models are looked up in the (private or public) type index,
        then in their default storage location relative to ``me``. Any
        model then falls back to its configured graph and its default graph.
        """
        options = klass.solid
        if options is not None and klass.rdf_type is not None:
            index = self.private_type_index if options.private else self.public_type_index
            if index is not None:
                registered = self._find_type_registration(klass.rdf_type, index)
                if registered is not None:
                    return registered
            if options.default_storage_location and self.me is not None:
                profile_document = urldefrag(self.me.value).url
                return named_node(urljoin(profile_document, options.default_storage_location))

        return self.get_graph_for_type(klass.model_name) or klass.default_graph

    async def fetch_graph_for_type(self, model: str) -> bool:
        """Load the graph of ``model`` from the remote. Returns False if the load failed."""
        graph = self.graph_for_model(model)
        if graph is None:
            raise UnresolvableGraphError(f"No graph known for model {model}")
        try:
            await self.load(graph)
        except RemoteLoadError as e:
            logger.warning(f"Failed to fetch {graph.value}: {e.reason}")
            return False
        return True

    # =========================================================================
    # Autosave
    # =========================================================================

    def set_autosave_for_type(self, model: str, enabled: bool) -> None:
        self._autosave_for_type[model] = enabled

    def get_autosave_for_type(self, model: Optional[str]) -> bool:
        if model is None:
            return False
        if model in self._autosave_for_type:
            return self._autosave_for_type[model]
        klass = self._models.get(model)
        return bool(klass.autosave) if klass is not None else False

    async def _push_autosave(self, model: str, deletes: list[Quad], inserts: list[Quad]) -> None:
        try:
            await self.update(deletes, inserts)
        except ForkStoreError as e:
            logger.error(f"Autosave of {model} failed, changes stay staged: {e}")

    def _schedule_autosave(self, model: str, deletes: list[Quad], inserts: list[Quad]) -> None:
        push = self._push_autosave(model, deletes, inserts)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(push)
            return
        task = loop.create_task(push)
        self._autosave_tasks.add(task)
        task.add_done_callback(self._autosave_tasks.discard)

    async def wait_for_autosave(self) -> None:
        """Wait until every scheduled autosave push has finished."""
        while self._autosave_tasks:
            await asyncio.gather(*list(self._autosave_tasks))

    # =========================================================================
    # Staging
    # =========================================================================

    def stage(self, model: Optional[str], deletes: list[Quad], inserts: list[Quad]) -> tuple[list[Quad], list[Quad]]:
        """
        Stage a write delta for an entity of ``model``.

        Quads both deleted and inserted cancel out. Deletions are staged
        before insertions. Autosaved models also push the delta right away.
        """
        unchanged = set(deletes) & set(inserts)
        deletes = [q for q in deletes if q not in unchanged]
        inserts = [q for q in inserts if q not in unchanged]

        if deletes:
            self.remove_statements(deletes)
        if inserts:
            self.add_all(inserts)
        if (deletes or inserts) and self.get_autosave_for_type(model):
            self._schedule_autosave(model, deletes, inserts)
        return deletes, inserts

    def cell_factory(self) -> CellFactory:
        """List cell minting according to ``config.lists``."""
        if self.config.lists.cell_style == "uri":
            return uri_cells(self.config.lists.cell_base_uri)
        return bnode_cells()

    # =========================================================================
    # Change listeners
    # =========================================================================

    def add_change_listener(self, listener: StoreChangeListener) -> None:
        self.change_listeners[listener] = None

    def remove_change_listener(self, listener: StoreChangeListener) -> None:
        self.change_listeners.pop(listener, None)

    # =========================================================================
    # ForkingStore passthrough
    # =========================================================================

    def match(self, subject=None, predicate=None, obj=None, graph=None) -> list[Quad]:
        return self.forking_store.match(subject, predicate, obj, graph)

    def any(self, subject=None, predicate=None, obj=None, graph=None):
        return self.forking_store.any(subject, predicate, obj, graph)

    def add_all(self, inserts: list[Quad]) -> None:
        self.forking_store.add_all(inserts)

    def remove_statements(self, deletes: list[Quad]) -> None:
        self.forking_store.remove_statements(deletes)

    def remove_matches(self, subject=None, predicate=None, obj=None, graph=None) -> int:
        return self.forking_store.remove_matches(subject, predicate, obj, graph)

    async def load(self, graph: Union[Term, str]) -> int:
        return await self.forking_store.load(graph)

    async def update(self, deletes: list[Quad], inserts: list[Quad]) -> None:
        await self.forking_store.update(deletes, inserts)

    async def persist(self) -> list[PersistResult]:
        return await self.forking_store.persist()
