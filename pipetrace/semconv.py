"""
CI/CD semantic convention attributes for pipeline and job spans.
"""

from __future__ import annotations

from .config import ExporterConfig
from .data import clean_raw
from .flatten import flatten_map
from .models import AttributeSet, JobRecord, PipelineRecord

_TRIGGER_TYPES = {
    "push": "scm.push",
    "merge_request_event": "scm.pull_request",
    "schedule": "schedule",
    "trigger": "other_pipeline",
    "pipeline": "other_pipeline",
}


def ref_type(config: ExporterConfig) -> str:
    return "tag" if config.commit_tag else "branch"


def trigger_type(config: ExporterConfig) -> str:
    """Map CI_PIPELINE_SOURCE onto cicd.pipeline.trigger.type."""
    return _TRIGGER_TYPES.get(config.pipeline_source, "manual")


def pipeline_attributes(config: ExporterConfig) -> AttributeSet:
    return [
        ("cicd.pipeline.name", config.pipeline_name),
        ("cicd.pipeline.run.id", config.pipeline_id),
        ("vcs.repository.url.full", config.project_url),
        ("vcs.repository.ref.name", config.commit_ref_name),
        ("vcs.repository.ref.revision", config.commit_sha),
        ("vcs.repository.ref.type", ref_type(config)),
        ("cicd.pipeline.trigger.type", trigger_type(config)),
    ]


def job_attributes(job: JobRecord) -> AttributeSet:
    attrs: AttributeSet = [
        ("cicd.pipeline.task.name", job.name),
        ("cicd.pipeline.task.run.id", str(job.id)),
        ("cicd.pipeline.task.run.url.full", job.web_url),
        ("cicd.pipeline.task.type", "build"),
        ("stage", job.stage),
    ]
    attrs.extend(flatten_map("", clean_raw(job.raw)))
    return attrs


def parent_pipeline_attributes(config: ExporterConfig, pipeline: PipelineRecord) -> AttributeSet:
    """Correlation attributes for pipelines triggered by an upstream pipeline."""
    if not config.is_triggered:
        return []

    attrs: AttributeSet = []
    if config.parent_pipeline_id:
        attrs.append(("cicd.pipeline.parent.id", config.parent_pipeline_id))
    if config.parent_project_id:
        attrs.append(("cicd.pipeline.parent.project.id", config.parent_project_id))
    if pipeline.user_id:
        attrs.append(("cicd.pipeline.trigger.user.id", str(pipeline.user_id)))
    return attrs
