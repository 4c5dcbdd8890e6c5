import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from settlement.core.config import settings
from settlement.core.redis import redis_client
from settlement.core.kafka import kafka_consumer
from settlement.core.metrics import (
    registry,
    background_tasks_running,
    background_task_errors_total,
)
from settlement.api.main import api_router
from settlement.clients.tsara import tsara_client
from settlement.consumers.notification_consumer import start_consumer
from settlement.errors import register_exception_handlers
from settlement.middleware.metrics_middleware import MetricsMiddleware
from settlement.middleware.tracing_middleware import TracingMiddleware
from settlement.middleware.logging_middleware import LoggingMiddleware

# Must run before any module-level logger is used
from settlement.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

CONSUMER_TASK = "notification-consumer"


async def _stop_task(task: asyncio.Task | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def _start_consumer() -> tuple[asyncio.Task, asyncio.Task]:
    await kafka_consumer.start()
    consumer_task = asyncio.create_task(start_consumer(), name=CONSUMER_TASK)
    background_tasks_running.labels(task_name=CONSUMER_TASK).set(1)
    return consumer_task, asyncio.create_task(monitor_background_tasks(consumer_task))


@asynccontextmanager
async def lifespan(app: FastAPI):
    consumer_task = monitor_task = None
    logger.info(
        "application_starting",
        service=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
        tsara_sandbox=settings.TSARA_USE_SANDBOX,
    )

    try:
        await redis_client.connect()
        if settings.ENABLE_NOTIFICATION_CONSUMER:
            consumer_task, monitor_task = await _start_consumer()
    except Exception as e:
        logger.error(
            "application_startup_failed",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        background_task_errors_total.labels(task_name="startup", error_type="startup_error").inc()
        raise

    logger.info("application_started", notification_consumer=consumer_task is not None)
    yield
    logger.info("application_shutting_down")

    try:
        await _stop_task(monitor_task)
        await _stop_task(consumer_task)
        if consumer_task is not None:
            background_tasks_running.labels(task_name=CONSUMER_TASK).set(0)
            await kafka_consumer.stop()
        await tsara_client.aclose()
        await redis_client.disconnect()
    except Exception as e:
        logger.error(
            "application_shutdown_error",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
    else:
        logger.info("application_shutdown_complete")


async def monitor_background_tasks(*tasks: asyncio.Task):
    """Flag a background task that died so the running gauge reflects it"""
    while not any(task.done() for task in tasks):
        await asyncio.sleep(30)

    for task in tasks:
        if not task.done() or task.cancelled() or task.exception() is None:
            continue
        error = task.exception()
        logger.error(
            "background_task_failed",
            task_name=task.get_name(),
            error_type=type(error).__name__,
            error_message=str(error),
            exc_info=error,
        )
        background_tasks_running.labels(task_name=task.get_name()).set(0)
        background_task_errors_total.labels(
            task_name=task.get_name(), error_type=type(error).__name__
        ).inc()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

register_exception_handlers(app)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


# Middleware runs in reverse registration order:
# Tracing -> Logging -> Metrics -> route, so request logs and metrics carry the trace id
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(TracingMiddleware)

app.include_router(api_router, prefix=settings.API_V1_STR)
