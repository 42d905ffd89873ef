import json
from pathlib import Path

import pytest

from sql_datalayer.config import (
    DatasetDefinition,
    enrich_config,
    load_layer_config,
    load_settings,
)
from sql_datalayer.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _patch_dotenv(monkeypatch):
    monkeypatch.setattr("sql_datalayer.config.load_dotenv", lambda *_args, **_kwargs: True)


def _clear_env(monkeypatch):
    for name in (
        "PGHOST",
        "PGPORT",
        "PGDATABASE",
        "PGUSER",
        "PGPASSWORD",
        "PGSCHEMA",
        "DB_POOL_MIN",
        "DB_POOL_MAX",
        "DB_ITERSIZE",
        "LAYER_CONFIG_PATH",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


LAYER_CONFIG = {
    "native_system_config": {
        "host": "db.internal",
        "port": 5433,
        "database": "inventory",
        "user": "layer",
        "password": "secret",
    },
    "dataset_definitions": [
        {
            "name": "products",
            "source_config": {"table_name": "products", "flush_threshold": 50},
            "incoming_mapping_config": {
                "base_uri": "http://data.example.io/products/",
                "property_mappings": [{"property": "id", "is_identity": True}],
            },
            "outgoing_mapping_config": {"map_all": True},
        }
    ],
}


@pytest.mark.unit
def test_settings_defaults(monkeypatch):
    _clear_env(monkeypatch)

    settings = load_settings()

    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.pool_max == 10
    assert settings.itersize == 2000
    assert settings.layer_config_path is None
    assert settings.log_level == "INFO"


@pytest.mark.unit
def test_settings_from_environment(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("PGPORT", "6543")
    monkeypatch.setenv("DB_ITERSIZE", "100")
    monkeypatch.setenv("LAYER_CONFIG_PATH", "/etc/layer.json")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.db_port == 6543
    assert settings.itersize == 100
    assert settings.layer_config_path == Path("/etc/layer.json")
    assert settings.log_level == "DEBUG"


@pytest.mark.unit
def test_invalid_integer_setting(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("DB_POOL_MAX", "many")

    with pytest.raises(ConfigurationError):
        load_settings()


@pytest.mark.unit
def test_layer_config_loads_from_json(tmp_path):
    path = tmp_path / "layer.json"
    path.write_text(json.dumps(LAYER_CONFIG))

    config = load_layer_config(path)

    assert config.native_system_config.port == 5433
    assert config.native_system_config.schema == "public"
    (definition,) = config.dataset_definitions
    assert definition.get_option("table_name") == "products"
    assert definition.get_option("flush_threshold") == ""
    assert definition.source_config["flush_threshold"] == 50
    assert definition.incoming_mapping_config.property_mappings[0].is_identity is True
    assert definition.outgoing_mapping_config.map_all is True


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        json.dumps({"dataset_definitions": [{"source_config": {}}]}),
        json.dumps({"native_system_config": {"port": "abc"}}),
        json.dumps({"dataset_definitions": [{"name": "x", "source_config": ["table"]}]}),
    ],
)
def test_malformed_layer_config(tmp_path, payload):
    path = tmp_path / "layer.json"
    path.write_text(payload)

    with pytest.raises(ConfigurationError):
        load_layer_config(path)


@pytest.mark.unit
def test_missing_layer_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_layer_config(tmp_path / "absent.json")


@pytest.mark.unit
def test_environment_overrides_native_config(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("PGHOST", "override.internal")
    monkeypatch.setenv("PGPORT", "7000")
    path = tmp_path / "layer.json"
    path.write_text(json.dumps(LAYER_CONFIG))

    config = enrich_config(load_layer_config(path))

    assert config.native_system_config.host == "override.internal"
    assert config.native_system_config.port == 7000
    assert config.native_system_config.user == "layer"


@pytest.mark.unit
def test_definition_requires_name():
    with pytest.raises(ConfigurationError):
        DatasetDefinition.from_mapping({"name": "  "})
