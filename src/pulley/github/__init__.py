import logging
from typing import Any, Mapping, Optional

from gidgethub.routing import Router
from gidgethub.sansio import Event

from pulley.events import (
    BranchEvent,
    BranchUpdate,
    CommitUpdate,
    PREvent,
    PullUpdate,
    Status,
)
from pulley.github.model import PullRequestEvent, PushEvent, StatusEvent
from pulley.metric import webhook_skipped_counter
from pulley.processor import EventProcessor

logger = logging.getLogger("pulley")

SUPPORTED_EVENTS = ("pull_request", "push", "status")


def pull_update_from_event(data: Mapping[str, Any]) -> Optional[PullUpdate]:
    payload = PullRequestEvent.model_validate(data)
    try:
        action = PREvent(payload.action)
    except ValueError:
        logger.info("Skipping pull request event with action %s", payload.action)
        webhook_skipped_counter.labels(
            event="pull_request", reason="unknown_action"
        ).inc()
        return None

    return PullUpdate(
        repo=payload.repository.full_name,
        action=action,
        sha=payload.pull_request.head.sha,
        number=payload.number,
        merged=bool(payload.pull_request.merged),
        timestamp=payload.pull_request.updated_at,
    )


def branch_update_from_event(data: Mapping[str, Any]) -> Optional[BranchUpdate]:
    payload = PushEvent.model_validate(data)
    if payload.created and payload.deleted:
        logger.warning(
            "Push on %s both creates and deletes the branch, skipping",
            payload.repository.full_name,
        )
        webhook_skipped_counter.labels(event="push", reason="created_and_deleted").inc()
        return None
    elif payload.created:
        action = BranchEvent.created
    elif payload.deleted:
        action = BranchEvent.deleted
    else:
        action = BranchEvent.rebased

    return BranchUpdate(
        repo=payload.repository.full_name,
        action=action,
        sha=payload.after,
        old_sha=payload.before,
        timestamp=payload.repository.pushed_at,
    )


def commit_update_from_event(data: Mapping[str, Any]) -> Optional[CommitUpdate]:
    payload = StatusEvent.model_validate(data)
    try:
        status = Status(payload.state)
    except ValueError:
        logger.info("Skipping status event with state %s", payload.state)
        webhook_skipped_counter.labels(event="status", reason="unknown_state").inc()
        return None

    return CommitUpdate(
        repo=payload.repository.full_name,
        status=status,
        context=payload.context,
        sha=payload.sha,
        timestamp=payload.updated_at,
    )


def create_router() -> Router:
    router = Router()

    @router.register("pull_request")
    async def on_pr(event: Event, processor: EventProcessor):
        logger.debug("Received pull_request event %s", event.delivery_id)
        if update := pull_update_from_event(event.data):
            await processor.submit(update)

    @router.register("push")
    async def on_push(event: Event, processor: EventProcessor):
        logger.debug("Received push event %s", event.delivery_id)
        if update := branch_update_from_event(event.data):
            await processor.submit(update)

    @router.register("status")
    async def on_status(event: Event, processor: EventProcessor):
        logger.debug("Received status event %s", event.delivery_id)
        if update := commit_update_from_event(event.data):
            await processor.submit(update)

    return router
