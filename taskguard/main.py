from contextlib import asynccontextmanager

from fastapi import FastAPI
from taskguard.dependencies import init_db
from taskguard.jobs.registry_init import register_job_handlers
from taskguard.logging_config import setup_logging
from taskguard.routers import circuits, dead_letters, health, jobs, rate_limits, sagas, websocket

setup_logging()
register_job_handlers()

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield

app = FastAPI(title="taskguard", lifespan=lifespan)

app.include_router(jobs.router, prefix="/api/v1")
app.include_router(dead_letters.router, prefix="/api/v1")
app.include_router(circuits.router, prefix="/api/v1")
app.include_router(rate_limits.router, prefix="/api/v1")
app.include_router(sagas.router, prefix="/api/v1")
app.include_router(websocket.router)
app.include_router(health.router, prefix="/api/v1")
