import hashlib
import hmac
import json
from types import SimpleNamespace

import pytest

from pulley.config import Settings
from pulley.events import CommitUpdate, Status
from pulley.github import create_router
from pulley.metric import error_counter, webhook_counter, webhook_skipped_counter
from pulley.processor import ProcessorClosed
from pulley.web import handle_webhook

SECRET = "s3cret"


class _RecordingProcessor:
    def __init__(self, closed=False):
        self.updates = []
        self.closed = closed

    async def submit(self, update):
        if self.closed:
            raise ProcessorClosed("closed")
        self.updates.append(update)


def make_app(token=SECRET, processor=None):
    return SimpleNamespace(
        ctx=SimpleNamespace(
            settings=Settings(WEBHOOK_TOKEN=token),
            github_router=create_router(),
            processor=processor or _RecordingProcessor(),
        )
    )


def make_status_body(sha="a" * 40):
    payload = {
        "sha": sha,
        "state": "success",
        "context": "ci/build",
        "updated_at": "2026-02-16T10:01:00Z",
        "repository": {"id": 500, "full_name": "org/repo"},
    }
    return json.dumps(payload).encode("utf-8")


def make_headers(body, event="status", secret=SECRET, delivery_id="delivery-1"):
    headers = {
        "content-type": "application/json",
        "x-github-event": event,
        "x-github-delivery": delivery_id,
    }
    if secret is not None:
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()
        headers["x-hub-signature"] = f"sha1={digest}"
    return headers


@pytest.mark.asyncio
async def test_signed_status_is_submitted():
    app = make_app()
    body = make_status_body()
    before = webhook_counter.labels(event="status")._value.get()

    resp = await handle_webhook(app, make_headers(body), body)

    assert resp.status == 200
    assert webhook_counter.labels(event="status")._value.get() == before + 1
    [update] = app.ctx.processor.updates
    assert isinstance(update, CommitUpdate)
    assert update.status == Status.success
    assert update.context == "ci/build"


@pytest.mark.asyncio
async def test_bad_signature_is_rejected():
    app = make_app()
    body = make_status_body()
    before = error_counter.labels(context="webhook")._value.get()

    resp = await handle_webhook(app, make_headers(body, secret="wrong"), body)

    assert resp.status == 400
    assert app.ctx.processor.updates == []
    assert error_counter.labels(context="webhook")._value.get() == before + 1


@pytest.mark.asyncio
async def test_missing_signature_is_rejected_when_token_is_set():
    app = make_app()
    body = make_status_body()

    resp = await handle_webhook(app, make_headers(body, secret=None), body)

    assert resp.status == 400
    assert app.ctx.processor.updates == []


@pytest.mark.asyncio
async def test_unsigned_delivery_without_token():
    app = make_app(token="")
    body = make_status_body()

    resp = await handle_webhook(app, make_headers(body, secret=None), body)

    assert resp.status == 200
    assert len(app.ctx.processor.updates) == 1


@pytest.mark.asyncio
async def test_signed_delivery_without_token_is_accepted():
    app = make_app(token="")
    body = make_status_body()

    resp = await handle_webhook(app, make_headers(body), body)

    assert resp.status == 200
    [update] = app.ctx.processor.updates
    assert isinstance(update, CommitUpdate)


@pytest.mark.asyncio
async def test_sha256_signed_delivery_without_token_is_accepted():
    app = make_app(token="")
    body = make_status_body()
    headers = make_headers(body, secret=None)
    digest = hmac.new(b"other", body, hashlib.sha256).hexdigest()
    headers["X-Hub-Signature-256"] = f"sha256={digest}"

    resp = await handle_webhook(app, headers, body)

    assert resp.status == 200
    assert len(app.ctx.processor.updates) == 1


@pytest.mark.asyncio
async def test_unsupported_event_is_acknowledged():
    app = make_app()
    body = json.dumps({"zen": "Keep it logically awesome."}).encode("utf-8")
    skipped = webhook_skipped_counter.labels(event="ping", reason="unsupported")
    before = skipped._value.get()

    resp = await handle_webhook(app, make_headers(body, event="ping"), body)

    assert resp.status == 200
    assert app.ctx.processor.updates == []
    assert skipped._value.get() == before + 1


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected():
    app = make_app()
    body = make_status_body(sha="not-a-sha")

    resp = await handle_webhook(app, make_headers(body), body)

    assert resp.status == 400
    assert app.ctx.processor.updates == []


@pytest.mark.asyncio
async def test_delivery_during_shutdown():
    app = make_app(processor=_RecordingProcessor(closed=True))
    body = make_status_body()

    resp = await handle_webhook(app, make_headers(body), body)

    assert resp.status == 503
