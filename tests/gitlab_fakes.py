"""
Test doubles for the GitLab API.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from aiohttp import web

from pipetrace.gitlab import GitLabAPIError
from pipetrace.models import JobRecord, PipelineRecord

DATA_DIR = Path(__file__).resolve().parent / "data"


def load_json(name: str):
    return json.loads((DATA_DIR / name).read_text(encoding="utf-8"))


class FakeClient:
    """In-process stand-in for GitLabClient."""

    def __init__(
        self,
        pipeline: PipelineRecord,
        jobs: Optional[List[JobRecord]] = None,
        variables: Optional[List[Tuple[str, str]]] = None,
        variables_error: Optional[Exception] = None,
    ) -> None:
        self.pipeline = pipeline
        self.jobs = jobs or []
        self.variables = variables or []
        self.variables_error = variables_error
        self.variable_calls = 0

    async def fetch_pipeline(self) -> PipelineRecord:
        return self.pipeline

    async def fetch_jobs(self) -> List[JobRecord]:
        return list(self.jobs)

    async def fetch_pipeline_variables(self) -> List[Tuple[str, str]]:
        self.variable_calls += 1
        if self.variables_error is not None:
            raise self.variables_error
        return list(self.variables)


class FailingClient(FakeClient):
    async def fetch_pipeline(self) -> PipelineRecord:
        raise GitLabAPIError(500, "http://gitlab.test/api/v4/projects/42/pipelines/123", "boom")


def gitlab_app(
    pipeline: Optional[dict] = None,
    job_pages: Optional[List[list]] = None,
    variables: Optional[list] = None,
    requests: Optional[List[Dict[str, str]]] = None,
    variables_response: Optional[Callable[[], web.Response]] = None,
) -> web.Application:
    """Build an aiohttp app serving the pipeline endpoints used by pipetrace.

    ``variables_response`` overrides the /variables answer entirely.
    """
    pipeline = pipeline if pipeline is not None else load_json("pipeline.json")
    job_pages = job_pages if job_pages is not None else [load_json("jobs.json")]
    seen = requests if requests is not None else []
    base = "/api/v4/projects/{project}/pipelines/{pipeline}"

    def record(request: web.Request) -> None:
        seen.append(
            {
                "path": request.path,
                "query": request.query_string,
                "job_token": request.headers.get("JOB-TOKEN", ""),
                "private_token": request.headers.get("PRIVATE-TOKEN", ""),
            }
        )

    async def handle_pipeline(request: web.Request) -> web.Response:
        record(request)
        if request.match_info["pipeline"] != str(pipeline.get("id")):
            return web.json_response({"message": "404 Not found"}, status=404)
        return web.json_response(pipeline)

    async def handle_jobs(request: web.Request) -> web.Response:
        record(request)
        page = int(request.query.get("page", "1"))
        headers = {}
        if page < len(job_pages):
            headers["X-Next-Page"] = str(page + 1)
        else:
            headers["X-Next-Page"] = ""
        return web.json_response(job_pages[page - 1], headers=headers)

    async def handle_variables(request: web.Request) -> web.Response:
        record(request)
        if variables_response is not None:
            return variables_response()
        if variables is None:
            return web.json_response({"message": "403 Forbidden"}, status=403)
        return web.json_response(variables)

    app = web.Application()
    app.add_routes(
        [
            web.get(base, handle_pipeline),
            web.get(base + "/jobs", handle_jobs),
            web.get(base + "/variables", handle_variables),
        ]
    )
    return app
