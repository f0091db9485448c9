import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response

from casefleet.config import settings
from casefleet.logging_config import configure_logging
from casefleet.metrics import metrics_endpoint
from casefleet.routers import alerts, manager, stats
from casefleet.worker.summary_worker import summary_worker_loop

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure structured logging before anything else
    configure_logging()

    # Start background workers and store in app.state for health checks
    app.state.summary_worker_task = asyncio.create_task(summary_worker_loop())
    try:
        yield
    finally:
        app.state.summary_worker_task.cancel()


app = FastAPI(title="casefleet", version="0.1.0", lifespan=lifespan)

app.include_router(stats.router)
app.include_router(manager.router)
app.include_router(alerts.router)

# Prometheus metrics endpoint
app.get("/metrics")(metrics_endpoint)


@app.get("/health")
async def health_check(response: Response):
    """Health check: database connectivity and summary worker status.

    Returns 200 if all components are healthy, 503 if any component is unhealthy.
    """
    from casefleet.database import async_session_factory
    from sqlalchemy import text

    checks = {}
    overall_healthy = True

    try:
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        overall_healthy = False

    try:
        worker = app.state.summary_worker_task
        if worker.done() or worker.cancelled():
            checks["summary_worker"] = {
                "status": "unhealthy",
                "error": "Worker task stopped",
            }
            overall_healthy = False
        else:
            checks["summary_worker"] = {"status": "healthy"}
    except AttributeError:
        checks["summary_worker"] = {
            "status": "unhealthy",
            "error": "Worker not initialized",
        }
        overall_healthy = False

    response.status_code = 200 if overall_healthy else 503
    return {
        "status": "healthy" if overall_healthy else "unhealthy",
        "app": settings.app_name,
        "checks": checks,
    }
