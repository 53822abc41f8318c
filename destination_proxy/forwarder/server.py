import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Sequence, Union

import httpx
import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from destination_proxy.binding.artifact import load_env_files
from destination_proxy.forwarder.config import ForwarderConfig
from destination_proxy.forwarder.route import AbsoluteFormMiddleware, router
from destination_proxy.logging_config import build_logging_config
from destination_proxy.oauth.token_cache import TokenCache
from destination_proxy.vars import (
    AUTH_ALLOW_UNSAFE_CERT,
    LISTEN_HOST,
    METRICS_ENABLED,
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed responses.
    Every relayed chunk would otherwise produce its own span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(endpoint: Optional[str] = OTLP_ENDPOINT) -> bool:
    """Install an OTLP exporting tracer provider when an endpoint is configured."""
    if not endpoint:
        return False
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": SERVICE_NAME})
    )
    otlp_exporter = OTLPSpanExporter(
        endpoint=endpoint,
        headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )
    trace.set_tracer_provider(tracer_provider)
    return True


def create_app(
    config: ForwarderConfig,
    log_requests: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    metrics: bool = METRICS_ENABLED,
) -> FastAPI:
    """
    Build the forwarder application.

    The application state owns the single token cache and the shared upstream
    client for the lifetime of the server.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(config.timeout),
            follow_redirects=False,
            verify=not AUTH_ALLOW_UNSAFE_CERT,
        ) as client:
            app.state.http_client = client
            app.state.token_cache.http_client = client
            yield
            app.state.token_cache.http_client = None

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    app.state.log_requests = log_requests
    app.state.token_cache = TokenCache(config.uaa_credentials)

    if metrics:
        registry = CollectorRegistry()
        Instrumentator(registry=registry).instrument(app).expose(
            app, endpoint=METRICS_PATH, include_in_schema=False
        )
        app_info = Info("fastapi_app_info", "Application Info", registry=registry)
        app_info.info({"app_name": SERVICE_NAME, "target": config.target})

    if OTLP_ENDPOINT:
        FastAPIInstrumentor.instrument_app(app)

    # Outermost, so every layer below sees origin-form paths
    app.add_middleware(AbsoluteFormMiddleware)

    # Registered last: the catch-all must not shadow the metrics endpoint
    app.include_router(router)
    return app


def run(
    port: int,
    log_requests: bool = False,
    env_path: Union[str, Path] = ".",
    host: str = LISTEN_HOST,
) -> None:
    """
    Serve the forwarder until interrupted.

    On SIGINT uvicorn stops accepting connections and lets in-flight requests
    finish before this function returns.
    """
    load_env_files(env_path)
    # Raises ConfigError before the port is bound
    config = ForwarderConfig.from_environ()
    if config.destination_names:
        logger.info(f"Destinations bound: {', '.join(config.destination_names)}")

    configure_tracing()
    app = create_app(config, log_requests=log_requests)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=build_logging_config(),
            access_log=False,
        )
    )
    logger.info(f"{SERVICE_NAME} running on port {port}")
    try:
        server.run()
    except KeyboardInterrupt:
        # uvicorn re-raises the captured SIGINT once shutdown has completed
        pass
    logger.info(f"{SERVICE_NAME} shutting down")
