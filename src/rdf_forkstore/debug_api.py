"""
Debug API for inspecting a SemanticStore.

FastAPI router exposing:
- registered models, their table columns and cached records
- graphs and graphs with staged edits
- serialized base / addition / removal (or merged) content of a graph
- a persist trigger
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from rdf_forkstore.errors import ForkStoreError, PersistError, UnknownModelError, UnsupportedFormatError
from rdf_forkstore.formats import normalize_format
from rdf_forkstore.models import SemanticModel, SemanticStore
from rdf_forkstore.terms import Term, named_node

MAX_TABLE_PROPERTIES = 6


class ColumnInfo(BaseModel):
    name: str
    desc: str


class ModelInfo(BaseModel):
    """A registered model."""
    name: str
    class_name: str
    rdf_type: Optional[str] = None
    graph: Optional[str] = None
    autosave: bool = False
    cached_instances: int = 0


class RecordInfo(BaseModel):
    """Column values of one cached instance."""
    uri: str
    values: dict[str, Any] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)


class ChangedGraphInfo(BaseModel):
    graph: str
    deletes: int
    inserts: int


class SerializedGraph(BaseModel):
    graph: str
    format: str
    content: Optional[str] = None
    additions: Optional[str] = None
    removals: Optional[str] = None


class PersistResultInfo(BaseModel):
    graph: str
    success: bool
    deletes: int
    inserts: int
    error: Optional[str] = None


def columns_for_type(klass: type[SemanticModel], limit: bool = True) -> list[ColumnInfo]:
    """``uri`` followed by the model's attributes, capped for table display."""
    columns = [ColumnInfo(name="uri", desc="URI")]
    columns.extend(ColumnInfo(name=name, desc=name) for name in klass.attribute_definitions)
    if limit:
        return columns[:MAX_TABLE_PROPERTIES]
    return columns


def _display(value: Any) -> Any:
    if isinstance(value, SemanticModel):
        return value.uri.value
    if isinstance(value, Term):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_display(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def record_column_values(record: SemanticModel) -> RecordInfo:
    info = RecordInfo(uri=record.uri.value)
    for column in columns_for_type(type(record), limit=False):
        if column.name == "uri":
            continue
        try:
            info.values[column.name] = _display(record.get_attribute(column.name))
        except ForkStoreError as e:
            info.errors[column.name] = str(e)
    return info


def create_debug_router(store: SemanticStore) -> APIRouter:
    """Create router for inspecting models, records and staged graph changes."""
    router = APIRouter(prefix="/debug", tags=["Debug"])

    def get_model(name: str) -> type[SemanticModel]:
        try:
            return store.class_for_model(name)
        except UnknownModelError:
            raise HTTPException(404, f"Unknown model: {name}")

    @router.get("/models", response_model=list[ModelInfo])
    async def list_models():
        """List registered models."""
        infos = []
        for name, klass in store.models.items():
            graph = store.graph_for_model(name)
            infos.append(ModelInfo(
                name=name,
                class_name=klass.__name__,
                rdf_type=klass.rdf_type.value if klass.rdf_type is not None else None,
                graph=graph.value if graph is not None else None,
                autosave=store.get_autosave_for_type(name),
                cached_instances=len(store.store_cache_for_model(name)),
            ))
        return infos

    @router.get("/models/{name}/columns", response_model=list[ColumnInfo])
    async def list_columns(name: str, limit: bool = Query(True)):
        return columns_for_type(get_model(name), limit=limit)

    @router.get("/models/{name}/records", response_model=list[RecordInfo])
    async def list_records(name: str):
        """Column values of every cached instance of a model."""
        get_model(name)
        records = list(store.store_cache_for_model(name).values())
        return [record_column_values(r) for r in records]

    @router.get("/graphs", response_model=list[str])
    async def list_graphs():
        """Every graph holding quads, shadow graphs included."""
        return sorted(g.value for g in store.forking_store.all_graphs())

    @router.get("/graphs/changed", response_model=list[ChangedGraphInfo])
    async def list_changed_graphs():
        """Graphs with staged, unpersisted edits."""
        infos = []
        for graph in store.forking_store.changed_graphs():
            deletes, inserts = store.forking_store.staged_changes(graph)
            infos.append(ChangedGraphInfo(graph=graph.value, deletes=len(deletes), inserts=len(inserts)))
        return infos

    @router.get("/graphs/serialize", response_model=SerializedGraph)
    async def serialize_graph(
        graph: str = Query(..., description="Logical graph IRI"),
        format: str = Query("turtle", description="turtle, ntriples or nquads"),
        merged: bool = Query(False, description="Serialize the merged view instead of the three parts"),
    ):
        try:
            normalize_format(format)
        except UnsupportedFormatError as e:
            raise HTTPException(400, str(e))

        target = named_node(graph)
        if merged:
            content = store.forking_store.serialize_data_merged_graph(target, format)
            return SerializedGraph(graph=graph, format=format, content=content)
        parts = store.forking_store.serialize_data_with_add_and_del_graph(target, format)
        return SerializedGraph(
            graph=graph,
            format=format,
            content=parts["graph"],
            additions=parts["additions"],
            removals=parts["removals"],
        )

    @router.post("/persist", response_model=list[PersistResultInfo])
    async def persist():
        """Push all staged edits. Responds 502 if any graph failed."""
        try:
            results = await store.persist()
        except PersistError as e:
            raise HTTPException(502, [_result_info(r).model_dump() for r in e.results])
        return [_result_info(r) for r in results]

    return router


def _result_info(result) -> PersistResultInfo:
    return PersistResultInfo(
        graph=result.graph.value,
        success=result.success,
        deletes=len(result.deletes),
        inserts=len(result.inserts),
        error=str(result.error) if result.error is not None else None,
    )
