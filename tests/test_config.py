"""
Tests for configuration loading and validation.
"""
import pytest

from rdf_forkstore.config import (
    BASE_GRAPH_STRING,
    ForkStoreConfig,
    ListConfig,
    RemoteConfig,
)
from rdf_forkstore.errors import ConfigValidationError


class TestForkStoreConfig:
    """Tests for ForkStoreConfig."""

    def test_defaults(self):
        config = ForkStoreConfig()
        assert config.graphs.base_graph_string == BASE_GRAPH_STRING
        assert config.remote.update_method == "patch"
        assert config.lists.cell_style == "bnode"
        assert config.models.autosave == {}
        config.validate()

    def test_dict_round_trip(self):
        config = ForkStoreConfig(
            remote=RemoteConfig(timeout_seconds=5, auth_token="t", headers={"X-A": "1"}),
            lists=ListConfig(cell_style="uri"),
        )
        restored = ForkStoreConfig.from_dict(config.to_dict())
        assert restored == config

    def test_from_dict_partial(self):
        config = ForkStoreConfig.from_dict({"remote": {"max_retries": 5}})
        assert config.remote.max_retries == 5
        assert config.remote.timeout_seconds == 30.0
        assert config.lists.max_length == 10_000

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "forkstore.yaml"
        path.write_text(
            "graphs:\n"
            "  base_graph_string: http://example.org/store\n"
            "remote:\n"
            "  update_method: post\n"
            "  sparql_endpoint: http://localhost:8890/sparql\n"
            "lists:\n"
            "  cell_style: uri\n"
            "models:\n"
            "  autosave:\n"
            "    person: true\n"
            "  graphs:\n"
            "    person: http://example.org/people\n"
        )
        config = ForkStoreConfig.from_yaml(path)
        assert config.graphs.base_graph_string == "http://example.org/store"
        assert config.remote.update_method == "post"
        assert config.models.autosave == {"person": True}
        assert config.models.graphs == {"person": "http://example.org/people"}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ForkStoreConfig.from_yaml(path) == ForkStoreConfig()

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigValidationError):
            ForkStoreConfig.from_yaml(path)

    def test_to_yaml_round_trip(self, tmp_path):
        config = ForkStoreConfig(lists=ListConfig(max_length=50))
        path = tmp_path / "out.yaml"
        path.write_text(config.to_yaml())
        assert ForkStoreConfig.from_yaml(path) == config

    def test_validation_collects_all_errors(self):
        config = ForkStoreConfig.from_dict({
            "remote": {"timeout_seconds": 0, "update_method": "put"},
            "lists": {"cell_style": "numbered"},
        })
        with pytest.raises(ConfigValidationError) as excinfo:
            config.validate()
        message = str(excinfo.value)
        assert "timeout_seconds" in message
        assert "update_method" in message
        assert "cell_style" in message

    def test_post_requires_endpoint(self):
        config = ForkStoreConfig.from_dict({"remote": {"update_method": "post"}})
        with pytest.raises(ConfigValidationError, match="sparql_endpoint"):
            config.validate()

    def test_base_graph_must_be_absolute(self):
        config = ForkStoreConfig.from_dict({"graphs": {"base_graph_string": "relative/path"}})
        with pytest.raises(ConfigValidationError):
            config.validate()
