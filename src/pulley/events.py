from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union


class PREvent(Enum):
    assigned = "assigned"
    unassigned = "unassigned"
    review_requested = "review_requested"
    review_request_removed = "review_request_removed"
    labeled = "labeled"
    unlabeled = "unlabeled"
    opened = "opened"
    edited = "edited"
    closed = "closed"
    ready_for_review = "ready_for_review"
    locked = "locked"
    unlocked = "unlocked"
    reopened = "reopened"
    synchronize = "synchronize"

    def __str__(self) -> str:
        return self.value


class BranchEvent(Enum):
    created = "created"
    deleted = "deleted"
    rebased = "rebased"

    def __str__(self) -> str:
        return self.value


class Status(Enum):
    pending = "pending"
    success = "success"
    failure = "failure"
    error = "error"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PullUpdate:
    """A pull request changed state (opened, closed, reopened, ...)."""

    repo: str
    action: PREvent
    sha: str
    timestamp: datetime
    number: int = 0
    merged: bool = False


@dataclass(frozen=True)
class BranchUpdate:
    """A branch was pushed to, force-pushed, created or deleted.

    ``sha`` is the branch head after the push, ``old_sha`` the head before it.
    """

    repo: str
    action: BranchEvent
    sha: str
    old_sha: str
    timestamp: datetime


@dataclass(frozen=True)
class CommitUpdate:
    """A CI status notification for a commit."""

    repo: str
    status: Status
    context: str
    sha: str
    timestamp: datetime


Update = Union[PullUpdate, BranchUpdate, CommitUpdate]
