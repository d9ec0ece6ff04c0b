import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
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
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from relay.forwarding import ForwardingRelay, RelayConfig, create_router
from relay.utils import credential_fingerprint
from relay.vars import ALLOWED_ORIGINS, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    A relayed event stream would otherwise add one span per chunk.
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


def create_app(
    config: Optional[RelayConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        config: Relay settings; read from the environment when omitted
        client: Upstream HTTP client; the relay creates and owns one when omitted
    """
    config = config or RelayConfig.from_env()
    relay = ForwardingRelay(config, client=client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[Relay] Forwarding {config.route_prefix}/* and POST {config.compat_path} "
            f"to {config.upstream_origin}"
        )
        if config.api_key:
            logger.info(
                f"[Relay] Upstream credential: {credential_fingerprint(config.api_key)}"
            )
        else:
            logger.warning(
                "[Relay] OPENAI_API_KEY is not set, upstream calls will be unauthorized"
            )
        yield
        await relay.aclose()

    app = FastAPI(title="OpenAI Key Relay", lifespan=lifespan)
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "upstream": config.upstream_origin,
        }

    app.include_router(create_router(config))
    return app


def configure_tracing(app: FastAPI) -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls="",
        server_request_hook=None,
        client_request_hook=None,
    )


app = create_app()

instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)

configure_tracing(app)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
