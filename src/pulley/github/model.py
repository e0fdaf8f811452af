from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Optional

import pydantic
from pydantic import AfterValidator, BeforeValidator

ZERO_SHA = "0" * 40


def _validate_commit_sha(sha: str) -> str:
    if len(sha) != 40:
        raise ValueError("Commit hash must have length 40")
    return sha


def _parse_utc_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        # push events carry repository.pushed_at as epoch seconds
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Unsupported datetime value type: {type(value)!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


CommitSha = Annotated[str, AfterValidator(_validate_commit_sha)]
UTCDateTime = Annotated[datetime, BeforeValidator(_parse_utc_datetime)]


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", frozen=True)


class Repository(Model):
    id: Optional[int] = None
    full_name: str


class PushRepository(Repository):
    pushed_at: UTCDateTime


class PrConnection(Model):
    ref: Optional[str] = None
    sha: CommitSha


class PullRequest(Model):
    number: int
    head: PrConnection
    merged: Optional[bool] = None
    updated_at: UTCDateTime


class PullRequestEvent(Model):
    action: str
    number: int
    pull_request: PullRequest
    repository: Repository


class PushEvent(Model):
    ref: Optional[str] = None
    before: CommitSha
    after: CommitSha
    created: bool
    deleted: bool
    repository: PushRepository


class StatusEvent(Model):
    sha: CommitSha
    state: str
    context: str
    updated_at: UTCDateTime
    repository: Repository
