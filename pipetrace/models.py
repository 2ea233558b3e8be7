"""
Data models used by pipetrace for representing GitLab pipelines and jobs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

# Decoded JSON as returned by the GitLab API.
RawValue = Union[str, int, float, bool, None, List["RawValue"], Dict[str, "RawValue"]]
RawMap = Dict[str, RawValue]

# Ordered (key, value) pairs; duplicate keys are kept.
AttributeSet = List[Tuple[str, str]]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitLab ISO-8601 timestamp, returning None when absent."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_unix_nano(value: datetime) -> int:
    delta = value - _EPOCH
    seconds = delta.days * 86_400 + delta.seconds
    return seconds * 1_000_000_000 + delta.microseconds * 1_000


@dataclass(slots=True)
class PipelineRecord:
    """A single pipeline run as reported by GitLab."""

    id: int
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_id: Optional[int] = None
    raw: RawMap = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any], raw: Optional[RawMap] = None) -> "PipelineRecord":
        user = payload.get("user") or {}
        return cls(
            id=int(payload["id"]),
            status=payload.get("status") or "",
            created_at=parse_timestamp(payload.get("created_at")),
            updated_at=parse_timestamp(payload.get("updated_at")),
            user_id=int(user["id"]) if user.get("id") is not None else None,
            raw=raw if raw is not None else payload,
        )


@dataclass(slots=True)
class JobRecord:
    """A job belonging to a pipeline."""

    id: int
    name: str
    stage: str
    status: str
    web_url: str = ""
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    raw: RawMap = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any], raw: Optional[RawMap] = None) -> "JobRecord":
        return cls(
            id=int(payload["id"]),
            name=payload.get("name") or "",
            stage=payload.get("stage") or "",
            status=payload.get("status") or "",
            web_url=payload.get("web_url") or "",
            started_at=parse_timestamp(payload.get("started_at")),
            finished_at=parse_timestamp(payload.get("finished_at")),
            raw=raw if raw is not None else payload,
        )

    @property
    def is_time_bounded(self) -> bool:
        return self.started_at is not None and self.finished_at is not None
