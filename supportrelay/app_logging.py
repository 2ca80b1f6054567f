"""Application and access logging setup.

:func:`init_logging` configures two rotating log files in ``LOG_DIR``:

- ``app.log`` for the ``supportrelay`` logger tree (relay decisions, adapter
  failures, store errors), optionally mirrored to stderr.
- ``access.log`` for one JSON line per HTTP request, written by a middleware
  that also assigns the ``X-Request-Id`` echoed back to the caller.

Records emitted while a request is being served carry its request id, so
relay log lines can be matched with the access entry that caused them.
Credentials (bearer tokens, widget chat tokens, the Telegram webhook secret)
are masked before anything reaches disk.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_CONSOLE,
LOG_REQUEST_BODIES, LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import contextvars
import dataclasses
import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "supportrelay"
ACCESS_LOGGER_NAME = "uvicorn.access"
UNTRACKED_PATHS = frozenset({"/api/health", "/api/metrics"})

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default="-"
)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


@dataclasses.dataclass(frozen=True)
class LogConfig:
    log_dir: str = "logs"
    level: int = logging.INFO
    json: bool = False
    console: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False


def load_log_config() -> LogConfig:
    """Read logging options from the environment."""

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    return LogConfig(
        log_dir=os.getenv("LOG_DIR", "logs"),
        level=getattr(logging, level_name, logging.INFO),
        json=_env_flag("LOG_JSON"),
        console=_env_flag("LOG_CONSOLE"),
        request_bodies=_env_flag("LOG_REQUEST_BODIES"),
        retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
        rotate_utc=_env_flag("LOG_ROTATE_UTC"),
    )


class RequestIdFilter(logging.Filter):
    """Stamp each record with the id of the request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def build_formatter(config: LogConfig) -> logging.Formatter:
    if config.json:
        return JsonFormatter()
    return logging.Formatter(
        "[%(asctime)s] %(levelname)s in %(name)s [%(request_id)s]: %(message)s"
    )


SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "ws_token",
        "access_token",
        "x-telegram-bot-api-secret-token",
    }
)


def _scrub(data: object) -> object:
    """Mask sensitive keys at any depth of a decoded JSON structure."""

    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in SENSITIVE_FIELDS else _scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


async def _buffer_body(request: Request) -> object:
    """Read the body for logging and replay it to the route handler."""

    body = await request.body()

    async def receive() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, config: LogConfig | None = None) -> None:
    """Add the middleware that writes one access entry per request."""

    config = config or load_log_config()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            body = await _buffer_body(request) if config.request_bodies else None
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": request.headers.get("X-Forwarded-For")
            or (request.client.host if request.client else None),
            "headers": _scrub(dict(request.headers)),
        }
        if request.query_params:
            entry["query"] = _scrub(dict(request.query_params))
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def _file_handler(name: str, config: LogConfig, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        os.path.join(config.log_dir, name),
        when="midnight",
        backupCount=config.retention_days,
        utc=config.rotate_utc,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    return handler


def init_logging(app: FastAPI | None = None, config: LogConfig | None = None) -> None:
    """Attach file handlers to the relay and access loggers.

    The relay logger keeps handlers installed by an earlier call; the access
    logger is always reset so uvicorn's default console handler is replaced.
    """

    config = config or load_log_config()
    os.makedirs(config.log_dir, exist_ok=True)
    formatter = build_formatter(config)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler("app.log", config, formatter))
        if config.console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            console.addFilter(RequestIdFilter())
            app_logger.addHandler(console)
    app_logger.setLevel(config.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler("access.log", config, formatter))
    access_logger.setLevel(config.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, config)


__all__ = [
    "APP_LOGGER_NAME",
    "JsonFormatter",
    "LogConfig",
    "RequestIdFilter",
    "init_logging",
    "load_log_config",
    "request_id_var",
]
