"""Correlates pull request, branch and commit status updates into CI latencies.

The processor keeps track of "live" SHAs. A SHA becomes live when a pull
request is opened, reopened or marked ready for review, or when a branch is
pushed to. It stops being live when the pull request is closed or the branch
is deleted or pushed to again. For each live SHA the time it became live is
kept, together with the CI progress seen so far.

The assumption is that the CI builds everything that is tracked. SHAs that
never get closed linger in the table, there should not be many of them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, Dict, Iterator, Optional, Union

import humanize

from pulley.events import (
    BranchEvent,
    BranchUpdate,
    CommitUpdate,
    PREvent,
    PullUpdate,
    Status,
    Update,
)
from pulley.metric import Publisher, error_counter, live_shas, queue_size

logger = logging.getLogger("pulley")

ContextChecker = Callable[[str, str], bool]

_START_ACTIONS = frozenset(
    {PREvent.opened, PREvent.reopened, PREvent.ready_for_review}
)


class ProcessorClosed(RuntimeError):
    pass


@dataclass
class LiveCommitState:
    created_at: datetime
    ci_start: datetime
    # set once a pending status was received
    check_seen: bool = False
    # status context -> time of its latest pending status
    build_starts: Dict[str, datetime] = field(default_factory=dict)

    @classmethod
    def starting_at(cls, timestamp: datetime) -> "LiveCommitState":
        # ci_start is only an approximation until the first pending arrives
        return cls(created_at=timestamp, ci_start=timestamp)


class LiveSHATable:
    """Live commit states by SHA, shared by all repositories."""

    def __init__(self):
        self._states: Dict[str, LiveCommitState] = {}

    def start(self, sha: str, timestamp: datetime) -> LiveCommitState:
        state = LiveCommitState.starting_at(timestamp)
        self._states[sha] = state
        return state

    def get(self, sha: str) -> Optional[LiveCommitState]:
        return self._states.get(sha)

    def discard(self, sha: str) -> Optional[LiveCommitState]:
        return self._states.pop(sha, None)

    def __contains__(self, sha: object) -> bool:
        return sha in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)


class _Stop:
    pass


_STOP = _Stop()


def _seconds(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()


def _fmt(start: datetime, end: datetime) -> str:
    delta = end - start
    text = humanize.precisedelta(abs(delta), minimum_unit="milliseconds")
    return f"-{text}" if delta.total_seconds() < 0 else text


class EventProcessor:
    """Single consumer of the update queue.

    Updates are handled one at a time, in the order they were submitted.
    The live SHA table is only ever touched from the worker task, so it needs
    no locking.
    """

    context_ok: ContextChecker
    publisher: Publisher
    track_build_times: bool
    live_shas: LiveSHATable

    def __init__(
        self,
        context_ok: ContextChecker,
        publisher: Publisher,
        *,
        track_build_times: bool = False,
        maxsize: int = 100,
    ):
        self.context_ok = context_ok
        self.publisher = publisher
        self.track_build_times = track_build_times
        self.live_shas = LiveSHATable()
        self._queue: "asyncio.Queue[Union[Update, _Stop]]" = asyncio.Queue(
            maxsize=maxsize
        )
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> asyncio.Task:
        if self._worker is None:
            logger.debug("Starting update worker")
            self._worker = asyncio.create_task(self.run())
        return self._worker

    async def submit(self, update: Update) -> None:
        if self._closed:
            raise ProcessorClosed(f"Processor is closed, dropping {update}")
        # blocks while the queue is full
        await self._queue.put(update)
        queue_size.set(self._queue.qsize())

    async def close(self) -> None:
        """Process everything already submitted, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._worker is not None:
            await self._queue.put(_STOP)
            await self._worker
        logger.info(
            "Update worker stopped, discarding %d live SHAs", len(self.live_shas)
        )

    async def run(self) -> None:
        logger.info("Entering update loop")
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    self.handle(item)
                except Exception:
                    error_counter.labels(context="processor").inc()
                    logger.error("Failed to process %s", item, exc_info=True)
            finally:
                self._queue.task_done()
                queue_size.set(self._queue.qsize())
                live_shas.set(len(self.live_shas))

    def handle(self, update: Update) -> None:
        match update:
            case PullUpdate():
                logger.info(
                    "Updated PR #%d to commit %s, action=%s",
                    update.number,
                    update.sha,
                    update.action,
                )
                self.process_pull_update(update)
            case BranchUpdate():
                logger.info(
                    "Updated a branch to commit %s (from %s)",
                    update.sha,
                    update.old_sha,
                )
                self.process_branch_update(update)
            case CommitUpdate():
                logger.info(
                    "Updated commit %s context: %s status: %s",
                    update.sha,
                    update.context,
                    update.status,
                )
                self.process_commit_update(update)
            case _:
                logger.warning("Unknown update type %r, skipping", update)

    def process_pull_update(self, up: PullUpdate) -> None:
        if up.action in _START_ACTIONS:
            self.live_shas.start(up.sha, up.timestamp)
        elif up.action == PREvent.closed:
            state = self.live_shas.discard(up.sha)
            if state is None:
                logger.info("%s is not in live SHAs, skipping merge time", up.sha)
            elif up.merged:
                logger.info(
                    "Merge time for SHA %s is %s",
                    up.sha,
                    _fmt(state.created_at, up.timestamp),
                )
                self.publisher.register_merge(
                    up.repo, _seconds(state.created_at, up.timestamp)
                )
        else:
            logger.debug("Skipping action %s", up.action)
            return

        self.publisher.register_pr_event(up.repo, up.action)

    def process_branch_update(self, up: BranchUpdate) -> None:
        if up.action == BranchEvent.deleted:
            # on deletion, sha is all zeros and old_sha is the former head
            logger.info("Branch is deleted, removing live SHA %s", up.old_sha)
            self.live_shas.discard(up.old_sha)
        elif up.action == BranchEvent.rebased:
            logger.info(
                "Branch is updated, replacing live SHA %s with %s", up.old_sha, up.sha
            )
            self.live_shas.discard(up.old_sha)
            self.live_shas.start(up.sha, up.timestamp)

        self.publisher.register_branch_event(up.repo, up.action)

    def process_commit_update(self, up: CommitUpdate) -> None:
        self.publisher.register_status_check(up.repo, up.status)

        state = self.live_shas.get(up.sha)
        if state is None:
            logger.info("Could not find the start time for SHA %s, skipping", up.sha)
            return

        if up.status == Status.pending:
            if not state.check_seen:
                logger.info(
                    "CI start time for SHA %s is %s",
                    up.sha,
                    _fmt(state.created_at, up.timestamp),
                )
                self.publisher.register_start(
                    up.repo, _seconds(state.created_at, up.timestamp)
                )

            state.check_seen = True
            state.ci_start = up.timestamp

            if self.track_build_times:
                state.build_starts[up.context] = up.timestamp

        else:
            # validation time is per PR, only the required context counts
            if self.context_ok(up.repo, up.context):
                logger.info(
                    "Validation time for SHA %s is %s with status %s",
                    up.sha,
                    _fmt(state.created_at, up.timestamp),
                    up.status,
                )
                self.publisher.register_validation(
                    up.repo, up.status, _seconds(state.created_at, up.timestamp)
                )

            if not self.track_build_times:
                return

            build_start = state.build_starts.get(up.context)
            if build_start is None:
                # no pending seen for this context, the latest CI start will do
                logger.debug(
                    "Missed pending status for SHA %s context %s", up.sha, up.context
                )
                build_start = state.ci_start
                self.publisher.register_missed_pending(up.repo)

            self.publisher.register_build_done(
                up.repo, up.context, up.status, _seconds(build_start, up.timestamp)
            )
