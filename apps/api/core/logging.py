"""Logging and tracing setup for the voltdesk API.

Every record written through the console handler carries an ``actor`` field:
the username bound for the current request by the RBAC middleware, or ``-``
outside of a request.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from apps.api.core.config import Settings

_actor: ContextVar[str] = ContextVar("voltdesk_actor", default="-")
_provider: TracerProvider | None = None


def bind_actor(username: str) -> Token[str]:
    return _actor.set(username)


def release_actor(token: Token[str]) -> None:
    _actor.reset(token)


class ActorFilter(logging.Filter):
    """Stamp records with the username acting in the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "actor"):
            record.actor = _actor.get()
        return True


def logging_config(settings: Settings) -> dict[str, Any]:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    console = {"class": "logging.StreamHandler", "formatter": "plain", "filters": ["actor"], "level": level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"actor": {"()": ActorFilter}},
        "formatters": {"plain": {"format": settings.log_format}},
        "handlers": {"console": console},
        "loggers": {
            "uvicorn": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["console"], "level": level, "propagate": False},
            "sqlalchemy.engine": {"level": logging.INFO if settings.sql_echo else logging.WARNING},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    dictConfig(logging_config(settings))
    return logging.getLogger(settings.app_name)


def otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas, skipping malformed items."""

    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install the OTLP tracer provider once per process when tracing is enabled."""

    global _provider
    if _provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.otel_service_name, "deployment.environment": settings.environment}
        )
    )
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _provider
    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
