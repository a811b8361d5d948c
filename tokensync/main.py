import time
from fastapi import FastAPI, Depends
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokensync.core.config import get_settings
from tokensync.core.database import db_manager, get_db
from tokensync.db.init_db import init_db
from tokensync.db.models import SyncRun
from tokensync.services.sync_service import trigger_daily_sync
from tokensync.api.routes import router as api_router

from prometheus_fastapi_instrumentator import Instrumentator
from tokensync.core.logging_config import setup_logging, get_logger

# Setup Structured Logging
setup_logging()
logger = get_logger("main")
settings = get_settings()

app = FastAPI(title=settings.PROJECT_NAME)

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)

@app.on_event("startup")
async def startup_event():
    try:
        await init_db()
    except Exception as e:
        logger.error("db_init_failed", error=str(e))
    if settings.SYNC_ON_STARTUP:
        logger.info("startup_event", msg="Running daily sync")
        try:
            await trigger_daily_sync()
        except Exception as e:
            logger.error("sync_startup_failed", error=str(e))

@app.on_event("shutdown")
async def shutdown_event():
    await db_manager.dispose()

@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    db_status = "unhealthy"
    sync_status = "unknown"
    jobs = {}
    last_run = None

    try:
        await db.execute(select(1))
        db_status = "connected"

        result = await db.execute(select(SyncRun))
        runs = result.scalars().all()

        if not runs:
            sync_status = "no_runs_yet"
        else:
            # Any job whose last run failed degrades the whole service
            failures = [run for run in runs if run.last_status != "success"]
            sync_status = "failure" if failures else "success"
            jobs = {run.job_name: run.last_status for run in runs}

            targets = [run.last_target_date for run in runs if run.last_target_date]
            if targets:
                last_run = max(targets).isoformat()

    except Exception as e:
        db_status = f"error: {str(e)}"

    latency = (time.time() - start_time) * 1000

    return {
        "status": "ok",
        "db_connectivity": db_status,
        "sync_status": sync_status,
        "jobs": jobs,
        "last_target_date": last_run,
        "latency_ms": round(latency, 2)
    }

app.include_router(api_router)
