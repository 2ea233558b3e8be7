"""
Synthesis of a pipeline trace from GitLab pipeline and job records.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TextIO

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from .config import ExporterConfig
from .data import clean_raw
from .flatten import flatten_map
from .gitlab import GitLabClient
from .models import AttributeSet, JobRecord, PipelineRecord, to_unix_nano
from .propagation import export_trace_context, extract_parent_context
from .semconv import job_attributes, parent_pipeline_attributes, pipeline_attributes

logger = logging.getLogger(__name__)

TRACER_NAME = "gitlab-ci-collector"


class PipelineTraceExporter:
    """Turns one pipeline and its jobs into a root span with one child per job.

    The root span covers the pipeline from ``created_at`` to ``updated_at``
    and is parented on the upstream pipeline's trace context when one is
    found. Each finished job becomes a consumer span under the root.
    """

    def __init__(
        self,
        config: ExporterConfig,
        client: GitLabClient,
        *,
        tracer: Optional[trace.Tracer] = None,
        clock: Callable[[], int] = time.time_ns,
        out: Optional[TextIO] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._tracer = tracer or trace.get_tracer(TRACER_NAME)
        self._clock = clock
        self._out = out

    async def export_pipeline(self, context: Optional[Context] = None) -> PipelineRecord:
        logger.info("Fetching pipeline data from GitLab API...")
        pipeline = await self._client.fetch_pipeline()

        parent_context = await extract_parent_context(
            context if context is not None else Context(), self._config, self._client, pipeline
        )

        jobs = await self._client.fetch_jobs()
        logger.info("Found %d jobs in pipeline", len(jobs))

        pipeline_span = self._start_pipeline_span(parent_context, pipeline)
        try:
            span_context = trace.set_span_in_context(pipeline_span, parent_context)
            export_trace_context(span_context, self._config, self._out)

            logger.info("Creating job spans...")
            for job in jobs:
                if job.status == "skipped":
                    continue
                try:
                    self.create_job_span(span_context, job)
                except Exception as exc:
                    logger.warning("failed to export job span for job %d: %s", job.id, exc)
        finally:
            self._end_pipeline_span(pipeline_span, pipeline)
        return pipeline

    def pipeline_span_name(self, pipeline: PipelineRecord) -> str:
        return f"{self._config.service_name} #{pipeline.id}"

    def pipeline_span_attributes(self, pipeline: PipelineRecord) -> AttributeSet:
        attrs = pipeline_attributes(self._config)
        attrs.extend(flatten_map("", clean_raw(pipeline.raw)))
        attrs.extend(parent_pipeline_attributes(self._config, pipeline))
        return attrs

    def _start_pipeline_span(self, context: Context, pipeline: PipelineRecord) -> Span:
        name = self.pipeline_span_name(pipeline)
        attrs = self.pipeline_span_attributes(pipeline)
        start_time = to_unix_nano(pipeline.created_at) if pipeline.created_at else self._clock()

        span = self._tracer.start_span(
            name,
            context=context,
            kind=SpanKind.SERVER,
            attributes=dict(attrs),
            start_time=start_time,
        )
        logger.info("Creating pipeline span: %s", name)
        logger.debug("   Attributes: %s", attrs)
        return span

    def _end_pipeline_span(self, span: Span, pipeline: PipelineRecord) -> None:
        if pipeline.status == "failed":
            span.set_status(Status(StatusCode.ERROR, "pipeline failed"))
        else:
            span.set_status(Status(StatusCode.OK))

        end_time = to_unix_nano(pipeline.updated_at) if pipeline.updated_at else self._clock()
        span.end(end_time=end_time)

    def create_job_span(self, context: Context, job: JobRecord) -> Optional[Span]:
        """Emit a finished span for ``job``; jobs without both timestamps are ignored."""
        if not job.is_time_bounded:
            return None

        name = f"Stage: {job.name} - job_id: {job.id}"
        attrs = job_attributes(job)
        span = self._tracer.start_span(
            name,
            context=context,
            kind=SpanKind.CONSUMER,
            attributes=dict(attrs),
            start_time=to_unix_nano(job.started_at),
        )
        logger.info("   ├─ Job: %s (status: %s)", job.name, job.status)
        logger.debug("      Attributes: %s", attrs)
        try:
            if job.status == "failed":
                span.set_status(Status(StatusCode.ERROR, "job failed"))
            else:
                span.set_status(Status(StatusCode.OK))
        finally:
            span.end(end_time=to_unix_nano(job.finished_at))
        return span
