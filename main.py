import logging
import os
import sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

from blob_store import S3BlobStore
from config import ApiConfig, load_config, validate_config
from database import StoreFactory, connect
from errors import ConfigurationError, install_error_handlers
from logging_config import configure_logging, install_access_log
from registry import ResourceRegistry, get_registry
from routes import create_router

logger = logging.getLogger(__name__)

CONFIG_ENV = "RAPID_API_CONFIG"


def create_app(config: ApiConfig, db: Optional[Database] = None, blob_store=None) -> FastAPI:
    """Build the FastAPI app for a configuration.

    db and blob_store default to connections made from the config; tests pass
    their own.
    """
    validate_config(config)
    configure_logging(config.log_level)
    prefix = config.prefix

    if blob_store is None and config.blob is not None:
        blob_store = S3BlobStore.connect(config.blob)

    if db is None:
        db = connect(config.mongo_uri, config.database_name)
        logger.info("Connected to MongoDB database %s", db.name)

    registry = ResourceRegistry.build(config.resources, StoreFactory(db), blob_store, prefix)

    app = FastAPI(
        title=config.docs_info.title,
        description=config.docs_info.description,
        version=config.docs_info.version,
        docs_url=f"{prefix}/docs",
        openapi_url=f"{prefix}/docs.json",
        redoc_url=None,
    )
    app.state.registry = registry
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_credentials=config.cors.allow_credentials,
        allow_methods=config.cors.allow_methods,
        allow_headers=config.cors.allow_headers,
    )
    if config.logging:
        install_access_log(app)
    install_error_handlers(app)

    # -----------------
    # Resource routes
    # -----------------
    for resource in registry:
        app.include_router(create_router(resource.service), prefix=resource.path)
        _log_resource(resource)

    # -----------------
    # Home
    # -----------------
    @app.get("/", include_in_schema=False)
    def read_root(request: Request):
        return {
            "message": "rapid-api is running!",
            "docs": f"{prefix}/docs",
            "endpoints": [
                {"resource": resource.config.name, "base": resource.path, "routes": resource.routes()}
                for resource in get_registry(request)
            ],
        }

    logger.info("API docs available at %s/docs", prefix)
    return app


def _log_resource(resource):
    config = resource.config
    logger.info('Resource "%s" registered:', config.name)
    for route in resource.routes():
        logger.info("   %s", route)
    if config.searchable_fields:
        logger.info("   search: ?search=keyword (fields: %s)", ", ".join(config.searchable_fields))
    if config.filterable_fields:
        logger.info("   filter: ?%s=value (fields: %s)", config.filterable_fields[0], ", ".join(config.filterable_fields))
    if config.file_fields:
        logger.info("   files: %s", ", ".join(f.field_name for f in config.file_fields))


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    path = argv[0] if argv else os.getenv(CONFIG_ENV)
    if not path:
        print(f"usage: python main.py CONFIG.json (or set {CONFIG_ENV})", file=sys.stderr)
        return 2
    try:
        config = load_config(path)
        app = create_app(config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
