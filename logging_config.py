"""
Logging setup.

configure_logging() is called once by the app factory. Driver loggers are
kept at WARNING so request logs stay readable.
"""
import logging
import time

from fastapi import FastAPI, Request

_QUIET_LOGGERS = [
    'pymongo',
    'botocore',
    'boto3',
    'urllib3',
    's3transfer',
]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

access_logger = logging.getLogger("rapid_api.access")


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def install_access_log(app: FastAPI):
    """Log METHOD path status duration for every request."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            "%s %s %d %.1fms",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response
