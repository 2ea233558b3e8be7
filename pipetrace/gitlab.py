"""
Minimal asynchronous GitLab REST v4 client for reading pipeline metadata.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from .config import ExporterConfig
from .data import to_raw
from .models import JobRecord, PipelineRecord

logger = logging.getLogger(__name__)

_TOKEN_HEADERS = {
    "job": "JOB-TOKEN",
    "private": "PRIVATE-TOKEN",
}
_PER_PAGE = 100


class GitLabConfigError(ValueError):
    """Raised when the client cannot be constructed from the configuration."""


class GitLabAPIError(RuntimeError):
    """Raised when a GitLab request fails or returns an unusable answer.

    ``status`` is ``None`` when no HTTP response was received.
    """

    def __init__(self, status: Optional[int], url: str, message: str = "") -> None:
        text = f"GitLab API request {url} failed"
        if status is not None:
            text = f"{text} with status {status}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.status = status
        self.url = url


class GitLabClient:
    """Reads a single pipeline, its jobs and its variables.

    Use as an async context manager so the underlying session is closed::

        async with GitLabClient(config) as client:
            pipeline = await client.fetch_pipeline()
    """

    def __init__(self, config: ExporterConfig) -> None:
        if not config.server_url:
            raise GitLabConfigError("GitLab server URL is not set (GITLAB_SERVER_URL or CI_SERVER_URL)")
        if not config.project_id or not config.pipeline_id:
            raise GitLabConfigError("CI_PROJECT_ID and CI_PIPELINE_ID must be set")
        if config.token_type not in _TOKEN_HEADERS:
            raise GitLabConfigError(
                f"unsupported token type: {config.token_type} (supported: {', '.join(_TOKEN_HEADERS)})"
            )

        self._config = config
        self._base_url = config.server_url.rstrip("/") + "/api/v4"
        self._pipeline_path = (
            f"/projects/{quote(config.project_id, safe='')}/pipelines/{quote(config.pipeline_id, safe='')}"
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "GitLabClient":
        headers = {"Accept": "application/json"}
        if self._config.token:
            headers[_TOKEN_HEADERS[self._config.token_type]] = self._config.token
        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch_pipeline(self) -> PipelineRecord:
        payload, _ = await self._get(self._pipeline_path)
        return PipelineRecord.from_api(payload, raw=to_raw(payload))

    async def fetch_jobs(self) -> List[JobRecord]:
        jobs: List[JobRecord] = []
        page: Optional[str] = "1"
        while page:
            payload, headers = await self._get(
                f"{self._pipeline_path}/jobs", params={"per_page": str(_PER_PAGE), "page": page}
            )
            for entry in payload or []:
                job = _job_from_entry(entry)
                if job is not None:
                    jobs.append(job)
            page = headers.get("X-Next-Page") or None
        return jobs

    async def fetch_pipeline_variables(self) -> List[Tuple[str, str]]:
        payload, _ = await self._get(f"{self._pipeline_path}/variables")
        if not isinstance(payload, list):
            logger.debug("unexpected pipeline variables payload: %s", type(payload).__name__)
            return []
        return [
            (str(item.get("key") or ""), str(item.get("value") or ""))
            for item in payload
            if isinstance(item, dict)
        ]

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Tuple[Any, Any]:
        if self._session is None:
            raise RuntimeError("GitLabClient must be used inside 'async with'")
        url = self._base_url + path
        logger.debug("GET %s params=%s", url, params)
        try:
            async with self._session.get(url, params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise GitLabAPIError(response.status, url, body[:200])
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    raise GitLabAPIError(response.status, url, f"invalid JSON response: {exc}") from exc
                return payload, response.headers
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GitLabAPIError(None, url, str(exc) or type(exc).__name__) from exc


def _job_from_entry(entry: Any) -> Optional[JobRecord]:
    job_id = entry.get("id") if isinstance(entry, dict) else None
    try:
        return JobRecord.from_api(entry, raw=to_raw(entry))
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("failed to convert job %s to map: %s", job_id, exc)
        return None
