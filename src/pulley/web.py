import logging
from typing import Mapping, Optional

import gidgethub
from gidgethub import sansio
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY
from prometheus_client.exposition import generate_latest
from sanic import Request, Sanic, response
from sanic.response import HTTPResponse
from sanic.log import logger

from pulley.config import Settings, get_settings
from pulley.github import SUPPORTED_EVENTS, create_router
from pulley.logger import LOG_FORMAT, get_log_handlers
from pulley.metric import (
    PrometheusPublisher,
    error_counter,
    request_counter,
    webhook_counter,
    webhook_skipped_counter,
)
from pulley.processor import EventProcessor, ProcessorClosed
from pulley.version import register_build_info

_SIGNATURE_HEADERS = ("x-hub-signature", "x-hub-signature-256")


def _unsigned(headers: Mapping[str, str]) -> Mapping[str, str]:
    return {
        k.lower(): v
        for k, v in headers.items()
        if k.lower() not in _SIGNATURE_HEADERS
    }


async def handle_webhook(app, headers: Mapping[str, str], body: bytes) -> HTTPResponse:
    """Validate a GitHub delivery and hand its update to the processor."""
    secret = app.ctx.settings.WEBHOOK_TOKEN or None
    if secret is None:
        # no token configured, signatures are not checked
        headers = _unsigned(headers)
    try:
        event = sansio.Event.from_http(headers, body, secret=secret)
    except (gidgethub.GitHubException, KeyError, ValueError) as e:
        error_counter.labels(context="webhook").inc()
        logger.warning("Rejecting webhook: %r", e)
        return response.text("invalid webhook", status=400)

    webhook_counter.labels(event=event.event).inc()

    if event.event not in SUPPORTED_EVENTS:
        logger.info(
            "Unknown webhook type %s, delivery %s, skipping",
            event.event,
            event.delivery_id,
        )
        webhook_skipped_counter.labels(event=event.event, reason="unsupported").inc()
        return response.empty(200)

    try:
        await app.ctx.github_router.dispatch(event, app.ctx.processor)
    except ValueError:
        error_counter.labels(context="webhook").inc()
        logger.warning(
            "Could not parse %s webhook %s",
            event.event,
            event.delivery_id,
            exc_info=True,
        )
        return response.text("could not parse webhook", status=400)
    except ProcessorClosed:
        logger.warning("Shutting down, dropping delivery %s", event.delivery_id)
        return response.text("shutting down", status=503)

    return response.empty(200)


def create_app(settings: Optional[Settings] = None) -> Sanic:
    if settings is None:
        settings = get_settings()

    app = Sanic("pulley")
    app.ctx.settings = settings
    app.ctx.github_router = create_router()

    for handler in get_log_handlers(logging.getLogger("pulley"), settings):
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    webhook_path = f"/{settings.WEBHOOK_PATH}"
    metrics_path = f"/{settings.METRICS_PATH}"

    @app.listener("before_server_start")
    async def init(app, loop):
        logger.info(settings.describe())
        register_build_info()
        app.ctx.processor = EventProcessor(
            settings.context_matcher(),
            PrometheusPublisher(),
            track_build_times=settings.TRACK_BUILD_TIMES,
            maxsize=settings.QUEUE_SIZE,
        )
        app.ctx.processor.start()

    @app.listener("after_server_stop")
    async def shutdown(app, loop):
        logger.debug("Draining update queue")
        await app.ctx.processor.close()

    @app.on_request
    async def on_request(request: Request):
        if request.path == metrics_path:
            return
        request_counter.labels(path=request.path).inc()

    @app.get("/status")
    async def status(request):
        logger.debug("status check")
        return response.text("ok")

    @app.post(webhook_path)
    async def webhook(request):
        logger.debug("Webhook received")
        return await handle_webhook(app, request.headers, request.body)

    @app.get(metrics_path)
    async def metrics(request):
        data = generate_latest(REGISTRY)
        return response.raw(data, content_type=CONTENT_TYPE_LATEST)

    return app
