"""
Configuration for rdf-forkstore.

Provides:
- Shadow graph naming settings
- Remote source settings (timeouts, retries, auth headers)
- RDF list cell settings
- Per-model autosave and graph defaults
- YAML loading and validation
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from rdf_forkstore.errors import ConfigValidationError

logger = logging.getLogger(__name__)

BASE_GRAPH_STRING = "http://mu.semte.ch/libraries/rdf-store"
UPDATE_METHODS = ("patch", "post")
CELL_STYLES = ("bnode", "uri")


@dataclass
class GraphConfig:
    """Shadow graph naming."""
    base_graph_string: str = BASE_GRAPH_STRING

    def to_dict(self) -> Dict[str, Any]:
        return {"base_graph_string": self.base_graph_string}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphConfig":
        return cls(base_graph_string=data.get("base_graph_string", BASE_GRAPH_STRING))


@dataclass
class RemoteConfig:
    """
    Remote source configuration.

    ``update_method`` selects how staged changes are submitted:
    "patch" sends a SPARQL Update to the graph document itself, "post"
    sends it to ``sparql_endpoint`` with GRAPH clauses.
    """
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    auth_token: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    sparql_endpoint: Optional[str] = None
    update_method: str = "patch"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "auth_token": self.auth_token,
            "headers": dict(self.headers),
            "sparql_endpoint": self.sparql_endpoint,
            "update_method": self.update_method,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteConfig":
        return cls(
            timeout_seconds=data.get("timeout_seconds", 30.0),
            max_retries=data.get("max_retries", 3),
            retry_backoff_seconds=data.get("retry_backoff_seconds", 0.5),
            auth_token=data.get("auth_token"),
            headers=dict(data.get("headers") or {}),
            sparql_endpoint=data.get("sparql_endpoint"),
            update_method=data.get("update_method", "patch"),
        )


@dataclass
class ListConfig:
    """How ordered has-many attributes name their list cells."""
    cell_style: str = "bnode"
    cell_base_uri: str = "http://mu.semte.ch/libraries/rdf-store/lists/"
    max_length: int = 10_000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cell_style": self.cell_style,
            "cell_base_uri": self.cell_base_uri,
            "max_length": self.max_length,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListConfig":
        return cls(
            cell_style=data.get("cell_style", "bnode"),
            cell_base_uri=data.get("cell_base_uri", "http://mu.semte.ch/libraries/rdf-store/lists/"),
            max_length=data.get("max_length", 10_000),
        )


@dataclass
class ModelConfig:
    """Per-model overrides, keyed by model name."""
    autosave: Dict[str, bool] = field(default_factory=dict)
    graphs: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"autosave": dict(self.autosave), "graphs": dict(self.graphs)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        return cls(
            autosave=dict(data.get("autosave") or {}),
            graphs=dict(data.get("graphs") or {}),
        )


@dataclass
class ForkStoreConfig:
    """
    Complete configuration for a store session.

    Example YAML:

        graphs:
          base_graph_string: http://example.org/rdf-store
        remote:
          timeout_seconds: 10
          update_method: post
          sparql_endpoint: http://localhost:8890/sparql
        lists:
          cell_style: uri
        models:
          autosave: {person: true}
          graphs: {person: http://example.org/people}
    """
    graphs: GraphConfig = field(default_factory=GraphConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    lists: ListConfig = field(default_factory=ListConfig)
    models: ModelConfig = field(default_factory=ModelConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphs": self.graphs.to_dict(),
            "remote": self.remote.to_dict(),
            "lists": self.lists.to_dict(),
            "models": self.models.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForkStoreConfig":
        return cls(
            graphs=GraphConfig.from_dict(data.get("graphs") or {}),
            remote=RemoteConfig.from_dict(data.get("remote") or {}),
            lists=ListConfig.from_dict(data.get("lists") or {}),
            models=ModelConfig.from_dict(data.get("models") or {}),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ForkStoreConfig":
        """Load and validate configuration from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigValidationError(f"{path}: top level must be a mapping")
        config = cls.from_dict(data)
        config.validate()
        logger.info(f"Loaded configuration from {path}")
        return config

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def validate(self) -> None:
        """
        Check value ranges and enumerations.

        Raises:
            ConfigValidationError: listing every problem found
        """
        errors = []
        if not self.graphs.base_graph_string.startswith(("http://", "https://", "urn:")):
            errors.append("graphs.base_graph_string must be an absolute IRI")
        if self.remote.timeout_seconds <= 0:
            errors.append("remote.timeout_seconds must be positive")
        if self.remote.max_retries < 1:
            errors.append("remote.max_retries must be at least 1")
        if self.remote.retry_backoff_seconds < 0:
            errors.append("remote.retry_backoff_seconds must not be negative")
        if self.remote.update_method not in UPDATE_METHODS:
            errors.append(f"remote.update_method must be one of {UPDATE_METHODS}")
        if self.remote.update_method == "post" and not self.remote.sparql_endpoint:
            errors.append("remote.sparql_endpoint is required when update_method is 'post'")
        if self.lists.cell_style not in CELL_STYLES:
            errors.append(f"lists.cell_style must be one of {CELL_STYLES}")
        if self.lists.max_length < 1:
            errors.append("lists.max_length must be at least 1")

        if errors:
            raise ConfigValidationError("; ".join(errors))
