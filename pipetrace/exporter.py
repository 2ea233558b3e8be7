"""
Span exporter selection and tracer provider setup.
"""

from __future__ import annotations

import base64
import json
import logging
import sys
from typing import Any, Optional, Sequence, TextIO

from google.protobuf import json_format
from opentelemetry import propagate, trace
from opentelemetry.exporter.otlp.proto.common.trace_encoder import encode_spans
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GRPCSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HTTPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter, SpanExportResult
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from .config import ExporterConfig

logger = logging.getLogger(__name__)

_ID_FIELDS = {"traceId", "spanId", "parentSpanId"}


class UnsupportedProtocolError(ValueError):
    pass


def _bytes_to_hex(value: str) -> str:
    return base64.b64decode(value).hex()


def _hexify_ids(node: Any) -> Any:
    # json_format renders bytes as base64; OTLP/JSON wants hex ids.
    if isinstance(node, dict):
        return {
            key: _bytes_to_hex(value) if key in _ID_FIELDS and isinstance(value, str) else _hexify_ids(value)
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_hexify_ids(item) for item in node]
    return node


class PrettyConsoleSpanExporter(SpanExporter):
    """Writes finished spans to a stream as indented OTLP/JSON."""

    def __init__(self, out: Optional[TextIO] = None) -> None:
        self._out = out or sys.stdout

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        request = encode_spans(spans)
        payload = _hexify_ids(json_format.MessageToDict(request))
        self._out.write(json.dumps(payload, indent=2) + "\n")
        self._out.flush()
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True


def _http_traces_url(endpoint: str) -> str:
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    scheme, _, rest = endpoint.partition("://")
    if "/" not in rest:
        endpoint = f"{scheme}://{rest}/v1/traces"
    return endpoint


def create_exporter(protocol: str, endpoint: str) -> SpanExporter:
    """Create the span exporter for ``protocol`` (http, grpc, stdout/console)."""
    if protocol == "http":
        return HTTPSpanExporter(endpoint=_http_traces_url(endpoint))
    if protocol == "grpc":
        return GRPCSpanExporter(endpoint=endpoint, insecure=True)
    if protocol in ("stdout", "console"):
        return PrettyConsoleSpanExporter()
    raise UnsupportedProtocolError(f"unsupported protocol: {protocol} (supported: http, grpc, stdout)")


def init_tracer(config: ExporterConfig) -> TracerProvider:
    """Install a global tracer provider exporting with the configured protocol."""
    endpoint = config.get_endpoint()
    logger.info("Connecting to OTLP endpoint: %s (protocol: %s)", endpoint, config.protocol)

    exporter = create_exporter(config.protocol, endpoint)
    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.commit_sha,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    propagate.set_global_textmap(TraceContextTextMapPropagator())
    return provider
