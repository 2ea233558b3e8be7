"""
W3C trace context propagation between upstream and downstream pipelines.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Dict, Optional, TextIO

import aiohttp
from opentelemetry.context import Context
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from .config import ExporterConfig
from .gitlab import GitLabAPIError, GitLabClient
from .models import PipelineRecord

logger = logging.getLogger(__name__)

TRACEPARENT_VARIABLE = "TRACEPARENT"
OUTBOUND_KEY = "TRACE_PARENT"

_propagator = TraceContextTextMapPropagator()


def _extract(context: Context, traceparent: str) -> Context:
    return _propagator.extract({"traceparent": traceparent}, context=context)


async def extract_parent_context(
    context: Context,
    config: ExporterConfig,
    client: Optional[GitLabClient],
    pipeline: Optional[PipelineRecord] = None,
) -> Context:
    """Return ``context`` extended with the upstream pipeline's span, if any.

    Only pipelines started by a trigger or by another pipeline are considered.
    The inbound token is taken from the environment first and then from the
    pipeline's variables. Lookup failures leave ``context`` untouched.
    """
    if not config.is_triggered:
        return context

    if config.traceparent:
        logger.debug("Using inbound trace context from environment for pipeline %s", _pipeline_ref(pipeline, config))
        return _extract(context, config.traceparent)

    if client is None:
        return context

    try:
        variables = await client.fetch_pipeline_variables()
    except (GitLabAPIError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        logger.debug("Could not read pipeline variables for trace context: %s", exc)
        return context

    for key, value in variables:
        if key == TRACEPARENT_VARIABLE and value:
            logger.debug("Using inbound trace context from variables of pipeline %s", _pipeline_ref(pipeline, config))
            return _extract(context, value)
    return context


def _pipeline_ref(pipeline: Optional[PipelineRecord], config: ExporterConfig) -> str:
    return str(pipeline.id) if pipeline is not None else config.pipeline_id


def export_trace_context(
    context: Context,
    config: Optional[ExporterConfig] = None,
    stream: Optional[TextIO] = None,
) -> Optional[str]:
    """Publish the active trace context for downstream pipelines.

    Prints ``TRACE_PARENT=<traceparent>`` and, when a dotenv path is
    configured, appends the same line to that file. A dotenv file that cannot
    be written is reported and otherwise ignored.
    """
    carrier: Dict[str, str] = {}
    _propagator.inject(carrier, context=context)
    traceparent = carrier.get("traceparent", "")
    if not traceparent:
        return None

    line = f"{OUTBOUND_KEY}={traceparent}"
    print(line, file=stream or sys.stdout, flush=True)

    if config is not None and config.dotenv_path:
        try:
            with open(config.dotenv_path, "a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            logger.warning("failed to write trace context to %s: %s", config.dotenv_path, exc)
    logger.debug("Use %s in downstream pipeline variables", OUTBOUND_KEY)
    return traceparent
