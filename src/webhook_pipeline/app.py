import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from webhook_pipeline.alerts import AlertSink, CompositeAlertSink, HttpAlertSink, LoggingAlertSink
from webhook_pipeline.cleanup import cleanup_task, reap_stale_jobs
from webhook_pipeline.config import Settings
from webhook_pipeline.database import open_db
from webhook_pipeline.dependencies import get_settings
from webhook_pipeline.dispatcher import HandlerDispatcher
from webhook_pipeline.handlers import OrderHandlers
from webhook_pipeline.jobs import SQLiteJobQueue
from webhook_pipeline.logging_setup import configure_logging
from webhook_pipeline.router import router
from webhook_pipeline.scheduler import RetryScheduler
from webhook_pipeline.sync import HttpOrderSync, InMemoryOrderSync, OrderSync
from webhook_pipeline.workers import worker

logger = logging.getLogger(__name__)


def build_pipeline(
    queue: SQLiteJobQueue,
    settings: Settings,
    http: httpx.AsyncClient,
) -> tuple[HandlerDispatcher, RetryScheduler]:
    sync: OrderSync = InMemoryOrderSync()
    if settings.internal_api_url:
        sync = HttpOrderSync(http, settings.internal_api_url)
    sinks: list[AlertSink] = [LoggingAlertSink()]
    if settings.alert_webhook_url:
        sinks.append(HttpAlertSink(http, settings.alert_webhook_url))
    dispatcher = HandlerDispatcher(OrderHandlers(sync).registry(), timeout=settings.handler_timeout)
    scheduler = RetryScheduler(
        queue,
        CompositeAlertSink(sinks),
        max_attempts=settings.max_attempts,
        initial_delay=settings.retry_initial_delay,
        max_delay=settings.retry_max_delay,
    )
    return dispatcher, scheduler


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        if not settings.webhook_secret.get_secret_value():
            logger.warning("WEBHOOK_SECRET is empty, every webhook will be rejected")
        app.state.ready = False
        app.state.db = await open_db(settings.db_path, settings.db_busy_timeout_ms)
        queue = SQLiteJobQueue(app.state.db)
        http = httpx.AsyncClient(timeout=settings.http_timeout)
        dispatcher, scheduler = build_pipeline(queue, settings, http)
        # no worker runs yet, so every running job was interrupted by the last shutdown
        requeued, exhausted = await scheduler.recover()
        if requeued or exhausted:
            logger.warning("Recovered interrupted jobs requeued=%d exhausted=%d", requeued, exhausted)
        tasks = [
            asyncio.create_task(worker(queue, dispatcher, scheduler, settings.poll_interval))
            for _ in range(settings.worker_count)
        ]
        tasks.append(asyncio.create_task(cleanup_task(queue, settings)))
        tasks.append(asyncio.create_task(reap_stale_jobs(scheduler, settings)))
        app.state.ready = True
        logger.info("Webhook pipeline started workers=%d topics=%s", settings.worker_count, dispatcher.topics)
        yield
        app.state.ready = False
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await http.aclose()
        await app.state.db.close()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.ready = False
    app.include_router(router)
    return app
