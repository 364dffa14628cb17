"""
Semantic models: typed entity attributes resolved from the overlay store.

A model declares its attributes as descriptors:

    @rdf_type(FOAF("Person"))
    @default_graph("https://pod.example/profile/card")
    class Person(SemanticModel):
        name = string(ns=FOAF)
        knows = has_many("person", predicate=FOAF("knows"))
        employer = belongs_to("organization", predicate=SCHEMA("worksFor"))

Reading an attribute queries the store once and caches the shaped value;
writing one stages the minimal quad delta and overwrites the cache. The
cache is never invalidated implicitly: use ``recompute`` or ``invalidate``
to pick up edits made behind the entity's back.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from rdf_forkstore.errors import (
    MalformedLiteralError,
    UnresolvableGraphError,
    UnresolvablePredicateError,
)
from rdf_forkstore.storage.lists import decode_list, encode_list, list_cell_quads
from rdf_forkstore.terms import (
    RDF_TYPE,
    XSD_BOOLEAN,
    XSD_DATETIME,
    XSD_DECIMAL,
    XSD_DOUBLE,
    XSD_INTEGER,
    Quad,
    Term,
    named_node,
)

if TYPE_CHECKING:
    from rdf_forkstore.models.store import SemanticStore

logger = logging.getLogger(__name__)

NamespaceLike = Callable[[str], Union[Term, str]]
ChangeListener = Callable[["SemanticModel", dict], Any]


class AttributeKind(str, Enum):
    """Value kind of an attribute."""
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE_TIME = "dateTime"
    URI = "uri"
    TERM = "term"
    BELONGS_TO = "belongsTo"
    HAS_MANY = "hasMany"


RELATION_KINDS = (AttributeKind.BELONGS_TO, AttributeKind.HAS_MANY)


@dataclass(frozen=True)
class AttributeDefinition:
    """
    Declarative schema of one attribute.

    Attributes:
        name: Attribute name on the model (filled in at class creation)
        kind: Value kind
        predicate: Explicit predicate; otherwise derived from ``ns``
        ns: Namespace the predicate is derived from (``ns(name)``)
        graph: Graph override for this attribute
        inverse: Match ``(?, predicate, uri)`` instead of ``(uri, predicate, ?)``
        inverse_property: Attribute on related entities to recompute after writes
        model: Related model name (relations only)
        ordered: Stored as an RDF list (has-many only)
        propagate_default_graph: Related entities inherit this entity's default graph
    """
    name: str = ""
    kind: AttributeKind = AttributeKind.STRING
    predicate: Optional[Term] = None
    ns: Optional[NamespaceLike] = None
    graph: Optional[Term] = None
    inverse: bool = False
    inverse_property: Optional[str] = None
    model: Optional[str] = None
    ordered: bool = False
    propagate_default_graph: bool = False

    @property
    def is_relation(self) -> bool:
        return self.kind in RELATION_KINDS


# =============================================================================
# Literal encoding
# =============================================================================

_FRACTION = re.compile(r"\.(\d+)")


def _parse_datetime(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # fromisoformat only takes 3 or 6 fractional digits before 3.11
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    return datetime.fromisoformat(value)


def decode_value(kind: AttributeKind, term: Term) -> Any:
    """
    Shape a stored term into the Python value of a scalar kind.

    Raises:
        MalformedLiteralError: the lexical form is invalid for the kind
    """
    try:
        return _decode(kind, term)
    except (ValueError, ArithmeticError) as e:
        raise MalformedLiteralError(f"Cannot read {term.value!r} as {kind.value}: {e}") from e


def _decode(kind: AttributeKind, term: Term) -> Any:
    if kind is AttributeKind.INTEGER:
        return int(term.value)
    if kind is AttributeKind.DECIMAL:
        return Decimal(term.value)
    if kind is AttributeKind.FLOAT:
        return float(term.value)
    if kind is AttributeKind.BOOLEAN:
        return term.value in ("true", "1")
    if kind is AttributeKind.DATE_TIME:
        return _parse_datetime(term.value)
    if kind in (AttributeKind.URI, AttributeKind.TERM):
        return term
    return term.value


def encode_value(kind: AttributeKind, value: Any) -> Term:
    """Encode a Python value as the term stored for a scalar kind."""
    if kind is AttributeKind.INTEGER:
        return Term.literal(str(int(value)), datatype=XSD_INTEGER)
    if kind is AttributeKind.DECIMAL:
        return Term.literal(str(Decimal(value)), datatype=XSD_DECIMAL)
    if kind is AttributeKind.FLOAT:
        return Term.literal(repr(float(value)), datatype=XSD_DOUBLE)
    if kind is AttributeKind.BOOLEAN:
        return Term.literal("true" if value else "false", datatype=XSD_BOOLEAN)
    if kind is AttributeKind.DATE_TIME:
        return Term.literal(value.isoformat(), datatype=XSD_DATETIME)
    if kind is AttributeKind.URI:
        return named_node(value)
    if kind is AttributeKind.TERM:
        if not isinstance(value, Term):
            raise TypeError(f"term attributes take a Term, got {type(value).__name__}")
        return value
    return Term.literal(str(value))


# =============================================================================
# Attribute descriptors
# =============================================================================

class Attribute:
    """
    Data descriptor backing one declared attribute.

    Registers its definition in the owning class's ``attribute_definitions``
    and forwards reads and writes to the entity.
    """

    def __init__(self, definition: AttributeDefinition):
        self.definition = definition

    def __set_name__(self, owner: type, name: str) -> None:
        self.definition = replace(self.definition, name=name)
        if "attribute_definitions" not in owner.__dict__:
            owner.attribute_definitions = dict(getattr(owner, "attribute_definitions", {}))
        owner.attribute_definitions[name] = self.definition

    def __get__(self, instance: Optional["SemanticModel"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_attribute(self.definition.name)

    def __set__(self, instance: "SemanticModel", value: Any) -> None:
        instance.set_attribute(self.definition.name, value)


def property_(
    predicate: Optional[Union[Term, str]] = None,
    *,
    kind: AttributeKind = AttributeKind.STRING,
    ns: Optional[NamespaceLike] = None,
    graph: Optional[Union[Term, str]] = None,
    inverse: bool = False,
    inverse_property: Optional[str] = None,
    model: Optional[str] = None,
    ordered: bool = False,
    propagate_default_graph: bool = False,
) -> Attribute:
    """Declare an attribute of any kind."""
    return Attribute(AttributeDefinition(
        kind=kind,
        predicate=named_node(predicate) if predicate is not None else None,
        ns=ns,
        graph=named_node(graph) if graph is not None else None,
        inverse=inverse,
        inverse_property=inverse_property,
        model=model,
        ordered=ordered,
        propagate_default_graph=propagate_default_graph,
    ))


def string(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.STRING, **options)


def integer(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.INTEGER, **options)


def decimal(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.DECIMAL, **options)


def float_(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.FLOAT, **options)


def boolean(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.BOOLEAN, **options)


def date_time(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.DATE_TIME, **options)


def uri(predicate=None, **options) -> Attribute:
    return property_(predicate, kind=AttributeKind.URI, **options)


def term(predicate=None, **options) -> Attribute:
    """Raw term passthrough: no shaping on read, no encoding on write."""
    return property_(predicate, kind=AttributeKind.TERM, **options)


def belongs_to(model: str, predicate=None, **options) -> Attribute:
    """Single related entity of ``model``."""
    return property_(predicate, kind=AttributeKind.BELONGS_TO, model=model, **options)


def has_many(model: str, predicate=None, **options) -> Attribute:
    """
    Related entities of ``model``.

    With ``ordered=True`` the entities are stored as an RDF list whose head
    is the object of ``predicate``.
    """
    if not model:
        raise ValueError("has_many requires a related model name")
    return property_(predicate, kind=AttributeKind.HAS_MANY, model=model, **options)


# =============================================================================
# Class decorators
# =============================================================================

@dataclass(frozen=True)
class SolidOptions:
    """
    Type index discovery settings.

    ``private`` selects the private type index instead of the public one;
    ``default_storage_location`` is resolved against the user's profile
    document when the type index has no registration.
    """
    private: bool = False
    default_storage_location: Optional[str] = None


def rdf_type(type_uri: Union[Term, str]):
    def decorate(klass):
        klass.rdf_type = named_node(type_uri)
        return klass
    return decorate


def default_graph(graph: Union[Term, str]):
    def decorate(klass):
        klass.default_graph = named_node(graph)
        return klass
    return decorate


def autosave(enabled: bool = True):
    def decorate(klass):
        klass.autosave = enabled
        return klass
    return decorate


def solid(private: bool = False, default_storage_location: Optional[str] = None):
    def decorate(klass):
        klass.solid = SolidOptions(private=private, default_storage_location=default_storage_location)
        return klass
    return decorate


# =============================================================================
# Model base class
# =============================================================================

class SemanticModel:
    """
    Base class of all entity models.

    Instances are created through ``SemanticStore.create`` so that each
    (model, uri) pair maps to a single instance.

    Class attributes:
        rdf_type: Type staged for new entities and used by ``store.all``
        default_graph: Graph used when nothing more specific is known
        default_namespace: Per-entity predicate namespace (overridable per instance)
        namespace: Model-wide predicate namespace, the last fallback
        autosave: Push every write to the remote immediately
        solid: Type index discovery settings
    """

    attribute_definitions: dict[str, AttributeDefinition] = {}

    rdf_type: Optional[Term] = None
    default_graph: Optional[Term] = None
    default_namespace: Optional[NamespaceLike] = None
    namespace: Optional[NamespaceLike] = None
    autosave: bool = False
    solid: Optional[SolidOptions] = None
    model_name: Optional[str] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "attribute_definitions" not in cls.__dict__:
            cls.attribute_definitions = dict(cls.attribute_definitions)

    def __init__(
        self,
        uri: Union[Term, str],
        store: "SemanticStore",
        model_name: Optional[str] = None,
        default_graph: Optional[Union[Term, str]] = None,
        default_namespace: Optional[NamespaceLike] = None,
    ):
        self.store = store
        self.uri = named_node(uri)
        self.model_name = model_name or type(self).model_name

        if default_graph is not None:
            self.default_graph = named_node(default_graph)
        elif type(self).solid is not None:
            discovered = store.discover_default_graph_by_type(type(self))
            if discovered is not None:
                self.default_graph = discovered

        self.default_namespace = (
            default_namespace if default_namespace is not None else type(self).default_namespace
        )
        self._cache: dict[str, Any] = {}
        self.change_listeners: dict[ChangeListener, None] = {}

        self.ensure_resource_exists()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.uri.value}>"

    # =========================================================================
    # Resolution
    # =========================================================================

    def _definition(self, name: str) -> AttributeDefinition:
        try:
            return self.attribute_definitions[name]
        except KeyError:
            raise AttributeError(f"{type(self).__name__} has no attribute definition {name!r}") from None

    def predicate_for(self, name: str) -> Term:
        """
        Predicate of an attribute: explicit predicate, else the attribute's
        namespace, the entity's default namespace or the model namespace
        applied to the attribute name.

        Raises:
            UnresolvablePredicateError: none of those is set
        """
        definition = self._definition(name)
        if definition.predicate is not None:
            return definition.predicate
        for namespace in (definition.ns, self.default_namespace, type(self).namespace):
            if namespace is not None:
                return named_node(namespace(name))
        raise UnresolvablePredicateError(self.model_name, name)

    def graph_for(self, name: Optional[str] = None) -> Term:
        """
        Graph an attribute (or, without a name, the entity) lives in.

        Raises:
            UnresolvableGraphError: no graph is configured anywhere
        """
        if name is not None:
            definition = self._definition(name)
            if definition.graph is not None:
                return definition.graph
            if definition.inverse and definition.model:
                discovered = self.store.graph_for_model(definition.model)
                if discovered is not None:
                    return discovered

        graph = self.store.get_graph_for_type(self.model_name) or self.default_graph
        if graph is None:
            raise UnresolvableGraphError(
                f"No graph known for {self.model_name or type(self).__name__} {self.uri.value}"
            )
        return graph

    def _related(self, definition: AttributeDefinition, value: Any) -> "SemanticModel":
        if isinstance(value, SemanticModel):
            return value
        options = {"default_graph": self.default_graph} if definition.propagate_default_graph else {}
        return self.store.create(definition.model, value, **options)

    def _relation_quad(self, definition: AttributeDefinition, predicate: Term, target: Term, graph: Term) -> Quad:
        if definition.inverse:
            return Quad(target, predicate, self.uri, graph)
        return Quad(self.uri, predicate, target, graph)

    def _existing_quads(self, definition: AttributeDefinition, predicate: Term, graph: Term) -> list[Quad]:
        if definition.inverse:
            return self.store.match(None, predicate, self.uri, graph)
        return self.store.match(self.uri, predicate, None, graph)

    # =========================================================================
    # Read path
    # =========================================================================

    def get_attribute(self, name: str) -> Any:
        """Cached value of an attribute, computed on first access."""
        if name not in self._cache:
            self._cache[name] = self._compute(name)
        return self._cache[name]

    def _compute(self, name: str) -> Any:
        definition = self._definition(name)
        predicate = self.predicate_for(name)
        graph = self.graph_for(name)

        if definition.kind is AttributeKind.HAS_MANY:
            if definition.ordered:
                head = self.store.any(self.uri, predicate, None, graph)
                if head is None:
                    return []
                items = decode_list(self.store, head, graph, self.store.config.lists.max_length)
            else:
                items = [
                    q.subject if definition.inverse else q.object
                    for q in self._existing_quads(definition, predicate, graph)
                ]
            return [self._related(definition, item) for item in items]

        if definition.inverse:
            found = self.store.any(None, predicate, self.uri, graph)
        else:
            found = self.store.any(self.uri, predicate, None, graph)
        if found is None:
            return None
        if definition.kind is AttributeKind.BELONGS_TO:
            return self._related(definition, found)
        return decode_value(definition.kind, found)

    def recompute(self, name: str) -> Any:
        """Drop the cached value of ``name`` and compute it again."""
        self._cache.pop(name, None)
        return self.get_attribute(name)

    def invalidate(self, name: Optional[str] = None) -> None:
        """Drop one cached value, or all of them."""
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)

    # =========================================================================
    # Write path
    # =========================================================================

    def set_attribute(self, name: str, value: Any) -> None:
        """
        Stage the quad delta for a new attribute value.

        The cache is overwritten and change listeners are told even if an
        autosave push fails later.
        """
        definition = self._definition(name)
        predicate = self.predicate_for(name)
        graph = self.graph_for(name)
        recompute_targets: list[SemanticModel] = []

        if definition.kind is AttributeKind.HAS_MANY and definition.ordered:
            value = None if value is None else [self._related(definition, v) for v in value]
            deletes, inserts = self._list_delta(predicate, graph, value)
            cached = value if value is not None else []
        elif definition.kind is AttributeKind.HAS_MANY:
            previous = {entity.uri: entity for entity in self.get_attribute(name)}
            current = {}
            for item in value or []:
                entity = self._related(definition, item)
                current[entity.uri] = entity
            removed = [e for u, e in previous.items() if u not in current]
            added = [e for u, e in current.items() if u not in previous]
            deletes = [self._relation_quad(definition, predicate, e.uri, graph) for e in removed]
            inserts = [self._relation_quad(definition, predicate, e.uri, graph) for e in added]
            recompute_targets = removed + added
            cached = list(current.values())
        else:
            if definition.kind is AttributeKind.BELONGS_TO:
                if value is not None:
                    value = self._related(definition, value)
                if definition.inverse_property:
                    previous = self.get_attribute(name)
                    recompute_targets = [e for e in (previous, value) if e is not None]
            deletes = self._existing_quads(definition, predicate, graph)
            inserts = []
            if value is not None:
                if definition.kind is AttributeKind.BELONGS_TO:
                    target = value.uri
                else:
                    target = encode_value(definition.kind, value)
                inserts.append(self._relation_quad(definition, predicate, target, graph))
            cached = value

        self.store.stage(self.model_name, deletes, inserts)
        self._cache[name] = cached

        if definition.inverse_property and not definition.ordered:
            for entity in recompute_targets:
                entity.recompute(definition.inverse_property)

        for listener in list(self.change_listeners):
            try:
                listener(self, {"updated_field": name, "new_value": cached})
            except Exception:
                logger.exception(f"Change listener failed for {self!r}.{name}")

    def _list_delta(
        self,
        predicate: Term,
        graph: Term,
        items: Optional[list["SemanticModel"]],
    ) -> tuple[list[Quad], list[Quad]]:
        max_length = self.store.config.lists.max_length
        deletes: list[Quad] = []
        for pointer in self.store.match(self.uri, predicate, None, graph):
            deletes.extend(list_cell_quads(self.store, pointer.object, graph, max_length))
            deletes.append(pointer)

        inserts: list[Quad] = []
        if items is not None:
            head, cells = encode_list([e.uri for e in items], graph, self.store.cell_factory())
            inserts = cells + [Quad(self.uri, predicate, head, graph)]
        return deletes, inserts

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def ensure_resource_exists(self) -> None:
        """Stage the entity's type triple unless its graph already has it."""
        if self.rdf_type is None:
            return
        graph = self.store.get_graph_for_type(self.model_name) or self.default_graph
        if graph is None:
            logger.debug(f"{self!r} has no graph yet, type triple not staged")
            return
        if self.store.any(self.uri, RDF_TYPE, self.rdf_type, graph) is None:
            self.store.stage(self.model_name, [], [Quad(self.uri, RDF_TYPE, self.rdf_type, graph)])

    def add_change_listener(self, listener: ChangeListener) -> None:
        self.change_listeners[listener] = None

    def remove_change_listener(self, listener: ChangeListener) -> None:
        self.change_listeners.pop(listener, None)
