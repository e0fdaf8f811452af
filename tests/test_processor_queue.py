import asyncio

import pytest

from pulley.events import CommitUpdate, PREvent, PullUpdate, Status
from pulley.metric import error_counter
from pulley.processor import EventProcessor, ProcessorClosed

from helpers import REPO, FakePublisher, at

SHA = "c" * 40


def match_all_contexts(repo, context):
    return True


def opened(sha=SHA, seconds=0):
    return PullUpdate(repo=REPO, action=PREvent.opened, sha=sha, timestamp=at(seconds))


def status(state, seconds, sha=SHA):
    return CommitUpdate(
        repo=REPO, status=state, context="ci/build", sha=sha, timestamp=at(seconds)
    )


@pytest.mark.asyncio
async def test_updates_are_processed_in_submission_order(publisher):
    processor = EventProcessor(
        match_all_contexts, publisher, track_build_times=True, maxsize=2
    )
    processor.start()

    await processor.submit(opened())
    await processor.submit(status(Status.pending, 13))
    await processor.submit(status(Status.success, 73))
    await processor.close()

    assert [call[0] for call in publisher.calls] == [
        "pr_event",
        "status_check",
        "start",
        "status_check",
        "validation",
        "build_done",
    ]
    assert publisher.of("validation") == [(REPO, Status.success, 73.0)]


@pytest.mark.asyncio
async def test_many_pull_requests_are_all_tracked(publisher):
    processor = EventProcessor(match_all_contexts, publisher, maxsize=3)
    processor.start()

    shas = [f"{i:040x}" for i in range(10)]
    for sha in shas:
        await processor.submit(opened(sha=sha))
        await processor.submit(status(Status.success, 60, sha=sha))
    await processor.close()

    assert len(processor.live_shas) == 10
    assert publisher.of("validation") == [(REPO, Status.success, 60.0)] * 10
    assert publisher.of("branch_event") == []


@pytest.mark.asyncio
async def test_submit_after_close_raises(publisher):
    processor = EventProcessor(match_all_contexts, publisher)
    processor.start()
    await processor.close()

    assert processor.closed
    with pytest.raises(ProcessorClosed):
        await processor.submit(opened())

    # closing twice is harmless
    await processor.close()


@pytest.mark.asyncio
async def test_submit_blocks_when_queue_is_full(publisher):
    processor = EventProcessor(match_all_contexts, publisher, maxsize=1)

    await processor.submit(opened())
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(processor.submit(opened(sha="d" * 40)), timeout=0.05)

    processor.start()
    await processor.close()

    assert SHA in processor.live_shas
    assert "d" * 40 not in processor.live_shas


@pytest.mark.asyncio
async def test_worker_survives_failing_update():
    class FlakyPublisher(FakePublisher):
        failed = False

        def register_pr_event(self, repository, event):
            if not self.failed:
                self.failed = True
                raise RuntimeError("boom")
            super().register_pr_event(repository, event)

    publisher = FlakyPublisher()
    processor = EventProcessor(match_all_contexts, publisher)
    processor.start()

    before = error_counter.labels(context="processor")._value.get()

    await processor.submit(opened())
    await processor.submit(opened(sha="e" * 40))
    await processor.close()

    after = error_counter.labels(context="processor")._value.get()
    assert after == before + 1
    assert publisher.of("pr_event") == [(REPO, PREvent.opened)]
    assert "e" * 40 in processor.live_shas
