"""
Configuration

ApiConfig is the whole server definition: where MongoDB lives, which
resources to expose and how the HTTP surface is dressed. It is normally read
from a JSON file; a few deployment values can be overridden from the
environment.
"""

import json
import os
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from blob_store import BlobSettings
from errors import ConfigurationError
from schemas import ResourceDefinition

ENV_OVERRIDES = {
    "DATABASE_URL": "mongo_uri",
    "MONGO_URI": "mongo_uri",
    "DATABASE_NAME": "database_name",
    "PORT": "port",
    "API_PREFIX": "api_prefix",
    "LOG_LEVEL": "log_level",
}

_ALIASES = {"mongo_uri": "mongoURI", "api_prefix": "apiPrefix"}


class CorsSettings(BaseModel):
    allow_origins: List[str] = ["*"]
    allow_methods: List[str] = ["*"]
    allow_headers: List[str] = ["*"]
    allow_credentials: bool = True


class DocsInfo(BaseModel):
    title: str = "rapid-api"
    description: str = "Auto-generated REST API documentation"
    version: str = "1.0.0"


class ApiConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    port: int = 5000
    mongo_uri: str = Field("", alias="mongoURI")
    database_name: Optional[str] = None
    resources: List[ResourceDefinition] = Field(default_factory=list)
    cors: CorsSettings = Field(default_factory=CorsSettings)
    logging: bool = True
    log_level: str = "INFO"
    api_prefix: str = Field("/api", alias="apiPrefix")
    docs_info: DocsInfo = Field(default_factory=DocsInfo, alias="swaggerInfo")
    blob: Optional[BlobSettings] = None

    @property
    def prefix(self) -> str:
        prefix = "/" + self.api_prefix.strip("/")
        return "" if prefix == "/" else prefix


def _apply_env(data: dict, environ) -> dict:
    data = dict(data)
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            data.pop(_ALIASES.get(key, key), None)
            data[key] = value
    bucket = environ.get("BLOB_BUCKET")
    if bucket:
        blob = dict(data.get("blob") or {})
        blob["bucket"] = bucket
        data["blob"] = blob
    return data


def parse_config(data: dict, environ=None) -> ApiConfig:
    if environ is not None:
        data = _apply_env(data, environ)
    try:
        return ApiConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: Union[str, Path], environ=None) -> ApiConfig:
    environ = os.environ if environ is None else environ
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return parse_config(data, environ)


def validate_config(config: ApiConfig):
    """Startup checks that go beyond field types."""
    if not config.mongo_uri:
        raise ConfigurationError("mongo_uri is required. Pass your MongoDB connection string.")
    if not config.resources:
        raise ConfigurationError(
            "At least one resource is required. Example:\n"
            '  "resources": [{"name": "users", "schema": {"name": {"type": "String", "required": true}}}]'
        )
    names = set()
    for resource in config.resources:
        if not resource.name or not resource.name.strip():
            raise ConfigurationError("Each resource must have a 'name'.")
        name = resource.name.strip().lower()
        if name in names:
            raise ConfigurationError(f'Resource "{name}" is defined more than once.')
        names.add(name)
