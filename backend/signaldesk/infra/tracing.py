import atexit
import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_TRACING_CONFIGURED = False
_SQLALCHEMY_ENGINES: set[int] = set()
_TRACING_SHUTDOWN = False
_TRACING_SHUTDOWN_REGISTERED = False

logger = logging.getLogger(__name__)


def _resolve_service_version() -> str | None:
    for key in ("GIT_SHA", "GIT_COMMIT", "SOURCE_VERSION", "SERVICE_VERSION"):
        value = os.getenv(key)
        if value:
            return value
    return None


def _fastapi_request_hook(span, scope) -> None:  # noqa: ANN001
    if not span or not span.is_recording():
        return
    route = scope.get("route")
    route_path = getattr(route, "path", None) or scope.get("path", "/")
    span.set_attribute("http.target", route_path)


def _is_testing() -> bool:
    app_env = os.getenv("APP_ENV", "").lower()
    return os.getenv("TESTING", "").lower() == "true" or app_env == "test"


def configure_tracing(*, service_name: str | None = None) -> None:
    global _TRACING_CONFIGURED, _TRACING_SHUTDOWN_REGISTERED
    if _TRACING_CONFIGURED:
        return

    resolved_service_name = os.getenv("OTEL_SERVICE_NAME") or service_name or "signaldesk"
    deployment_env = os.getenv("DEPLOYMENT_ENV", "local")
    service_version = _resolve_service_version()

    resource_attrs = {
        SERVICE_NAME: resolved_service_name,
        DEPLOYMENT_ENVIRONMENT: deployment_env,
    }
    if service_version:
        resource_attrs[SERVICE_VERSION] = service_version

    tracer_provider = TracerProvider(resource=Resource.create(resource_attrs))
    trace.set_tracer_provider(tracer_provider)

    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint and not _is_testing():
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=otlp_endpoint.startswith("http://"))
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    elif not otlp_endpoint and not _is_testing():
        logger.debug("tracing_exporter_skipped_no_endpoint")

    _TRACING_CONFIGURED = True

    if not _TRACING_SHUTDOWN_REGISTERED:
        atexit.register(shutdown_tracing)
        _TRACING_SHUTDOWN_REGISTERED = True


def instrument_fastapi(app: FastAPI, *, tracer_provider=None) -> None:  # noqa: ANN001
    FastAPIInstrumentor().instrument_app(
        app,
        tracer_provider=tracer_provider or trace.get_tracer_provider(),
        server_request_hook=_fastapi_request_hook,
    )


def instrument_sqlalchemy(engine) -> None:  # noqa: ANN001
    if engine is None:
        return
    engine_id = id(engine)
    if engine_id in _SQLALCHEMY_ENGINES:
        return
    SQLAlchemyInstrumentor().instrument(
        engine=engine,
        tracer_provider=trace.get_tracer_provider(),
        capture_statement=False,
    )
    _SQLALCHEMY_ENGINES.add(engine_id)


def shutdown_tracing(*, force_flush: bool = True) -> None:
    global _TRACING_SHUTDOWN
    if _TRACING_SHUTDOWN:
        return
    _TRACING_SHUTDOWN = True
    try:
        tracer_provider = trace.get_tracer_provider()
        if force_flush:
            flush = getattr(tracer_provider, "force_flush", None)
            if callable(flush):
                flush()
        shutdown = getattr(tracer_provider, "shutdown", None)
        if callable(shutdown):
            shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.warning("tracing_shutdown_failed", extra={"extra": {"error": type(exc).__name__}})
