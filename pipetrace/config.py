"""
Configuration for pipetrace.

Everything is read once from the process environment (normally the variables
GitLab CI predefines for a job) and then passed explicitly to each component:

- OTEL_EXPORTER_OTLP_PROTOCOL: http, grpc, stdout or console (default: http)
- OTEL_EXPORTER_OTLP_ENDPOINT: exporter endpoint (default depends on protocol)
- GITLAB_TOKEN / CI_JOB_TOKEN: API token, GITLAB_TOKEN_TYPE selects job or private
- GITLAB_SERVER_URL / CI_SERVER_URL: GitLab instance base URL
- CI_*: pipeline identity, trigger and commit metadata
- TRACEPARENT / TRACE_PARENT: inbound W3C trace context from an upstream pipeline
- PIPETRACE_DOTENV: optional dotenv file receiving the outbound trace context
- PIPETRACE_REQUEST_TIMEOUT: GitLab API timeout in seconds (default: 30)
- DEBUG: "true" enables verbose output
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_DEFAULT_ENDPOINTS = {
    "http": "localhost:4318",
    "grpc": "localhost:4317",
    "stdout": "stdout",
    "console": "stdout",
}

TRIGGERED_SOURCES = frozenset({"pipeline", "trigger"})


@dataclass
class ExporterConfig:
    # OTLP
    protocol: str = "http"
    endpoint: str = ""

    # GitLab API
    token: str = ""
    token_type: str = "job"
    server_url: str = ""
    project_id: str = ""
    pipeline_id: str = ""
    request_timeout: float = 30.0

    # Pipeline metadata
    pipeline_name: str = ""
    pipeline_source: str = ""
    parent_pipeline_id: str = ""
    parent_project_id: str = ""
    project_url: str = ""
    project_namespace: str = ""
    project_name: str = ""
    commit_ref_name: str = ""
    commit_tag: str = ""
    commit_sha: str = ""

    # Propagation
    traceparent: str = ""
    dotenv_path: Optional[str] = None

    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterConfig":
        env = os.environ if environ is None else environ

        def get(key: str, fallback: str = "") -> str:
            return env.get(key) or fallback

        return cls(
            protocol=get("OTEL_EXPORTER_OTLP_PROTOCOL", "http"),
            endpoint=get("OTEL_EXPORTER_OTLP_ENDPOINT"),
            token=get("GITLAB_TOKEN", get("CI_JOB_TOKEN")),
            token_type=get("GITLAB_TOKEN_TYPE", "job"),
            server_url=get("GITLAB_SERVER_URL", get("CI_SERVER_URL")),
            project_id=get("CI_PROJECT_ID"),
            pipeline_id=get("CI_PIPELINE_ID"),
            request_timeout=_parse_timeout(get("PIPETRACE_REQUEST_TIMEOUT", "30")),
            pipeline_name=get("CI_PIPELINE_NAME"),
            pipeline_source=get("CI_PIPELINE_SOURCE"),
            parent_pipeline_id=get("CI_PARENT_PIPELINE_ID"),
            parent_project_id=get("CI_PARENT_PROJECT_ID"),
            project_url=get("CI_PROJECT_URL"),
            project_namespace=get("CI_PROJECT_NAMESPACE"),
            project_name=get("CI_PROJECT_NAME"),
            commit_ref_name=get("CI_COMMIT_REF_NAME"),
            commit_tag=get("CI_COMMIT_TAG"),
            commit_sha=get("CI_COMMIT_SHA"),
            traceparent=get("TRACEPARENT", get("TRACE_PARENT")),
            dotenv_path=env.get("PIPETRACE_DOTENV") or None,
            debug=env.get("DEBUG") == "true",
        )

    def get_endpoint(self) -> str:
        """Return the configured endpoint or the default for the protocol."""
        if self.endpoint:
            return self.endpoint
        return _DEFAULT_ENDPOINTS.get(self.protocol, "localhost:4318")

    @property
    def service_name(self) -> str:
        return f"{self.project_namespace}/{self.project_name}"

    @property
    def is_triggered(self) -> bool:
        """True when this pipeline was started by another pipeline."""
        return self.pipeline_source in TRIGGERED_SOURCES


def _parse_timeout(value: str) -> float:
    try:
        timeout = float(value)
    except ValueError:
        raise ValueError(f"PIPETRACE_REQUEST_TIMEOUT must be a number of seconds, got {value!r}") from None
    if timeout <= 0:
        raise ValueError(f"PIPETRACE_REQUEST_TIMEOUT must be positive, got {value!r}")
    return timeout
