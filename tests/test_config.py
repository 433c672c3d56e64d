"""
Tests for configuration loading, validation and app startup
"""
import json

import pytest

from config import ApiConfig, load_config, parse_config, validate_config
from errors import ConfigurationError
from main import create_app, main
from tests.conftest import PRODUCTS, STUDENTS

MINIMAL = {"mongoURI": "mongodb://db.test/shop", "resources": [PRODUCTS]}


@pytest.fixture
def config_file(tmp_path):
    def write(data):
        path = tmp_path / "api.json"
        path.write_text(data if isinstance(data, str) else json.dumps(data))
        return path
    return write


class TestLoadConfig:
    def test_reads_json_file(self, config_file):
        config = load_config(config_file(MINIMAL), environ={})

        assert config.mongo_uri == "mongodb://db.test/shop"
        assert config.port == 5000
        assert config.prefix == "/api"
        assert config.resources[0].search_by == ["name"]

    def test_environment_overrides(self, config_file):
        environ = {"MONGO_URI": "mongodb://env.test/x", "PORT": "8080", "API_PREFIX": "/v1/", "BLOB_BUCKET": "env-bucket"}

        config = load_config(config_file(MINIMAL), environ=environ)

        assert config.mongo_uri == "mongodb://env.test/x"
        assert config.port == 8080
        assert config.prefix == "/v1"
        assert config.blob.bucket == "env-bucket"

    def test_mongo_uri_beats_database_url(self):
        environ = {"DATABASE_URL": "mongodb://a.test/x", "MONGO_URI": "mongodb://b.test/x"}
        assert parse_config(MINIMAL, environ).mongo_uri == "mongodb://b.test/x"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_config(tmp_path / "absent.json", environ={})

    def test_invalid_json(self, config_file):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_config(config_file("{oops"), environ={})

    def test_non_object_json(self, config_file):
        with pytest.raises(ConfigurationError):
            load_config(config_file([1, 2]), environ={})

    def test_wrong_field_type(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            parse_config({"mongoURI": "x", "resources": [PRODUCTS], "port": "eighty"})

    def test_root_prefix(self):
        assert ApiConfig(api_prefix="/").prefix == ""


class TestValidateConfig:
    def test_mongo_uri_required(self):
        with pytest.raises(ConfigurationError, match="mongo_uri is required"):
            validate_config(ApiConfig(resources=[PRODUCTS]))

    def test_resources_required(self):
        with pytest.raises(ConfigurationError, match="At least one resource"):
            validate_config(ApiConfig(mongo_uri="mongodb://x"))

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationError, match="more than once"):
            validate_config(ApiConfig(mongo_uri="mongodb://x", resources=[PRODUCTS, {**PRODUCTS, "name": "Products"}]))

    def test_unknown_field_type_fails_startup(self, db):
        config = ApiConfig(mongo_uri="mongodb://x", resources=[{"name": "a", "schema": {"f": "Blob"}}], logging=False)
        with pytest.raises(ConfigurationError):
            create_app(config, db=db)

    def test_file_fields_need_blob_store(self, db):
        config = ApiConfig(mongo_uri="mongodb://x", resources=[STUDENTS], logging=False)
        with pytest.raises(ConfigurationError, match="no blob store"):
            create_app(config, db=db)


class TestMain:
    def test_no_config_path(self, monkeypatch, capsys):
        monkeypatch.delenv("RAPID_API_CONFIG", raising=False)

        assert main([]) == 2
        assert "usage" in capsys.readouterr().err

    def test_bad_config_exits_with_error(self, config_file, capsys, monkeypatch):
        for name in ("MONGO_URI", "DATABASE_URL"):
            monkeypatch.delenv(name, raising=False)
        path = config_file({"resources": [PRODUCTS]})

        assert main([str(path)]) == 1
        assert "Configuration error" in capsys.readouterr().err
