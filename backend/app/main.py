"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import Base, SessionLocal, engine
from app.errors import LifecycleError

# Import routers
from app.routers import group_requests, meetings, requests

# Import all models so Base.metadata knows about them
from app.models.directory import User, Group, GroupMember  # noqa: F401
from app.models.request import Request as SkillRequest     # noqa: F401
from app.models.response import Response, HiddenRequest    # noqa: F401
from app.models.group_request import GroupRequest          # noqa: F401
from app.models.meeting import Meeting                     # noqa: F401
from app.models.request_mutation import RequestMutation    # noqa: F401

from app.services.deadline_monitor import DeadlineMonitor

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SkillShare Requests",
    description="Request lifecycle for one-to-one and group learning sessions",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(requests.router, prefix="/api/requests", tags=["Requests"])
app.include_router(group_requests.router, prefix="/api/group-requests", tags=["GroupRequests"])
app.include_router(meetings.router, prefix="/api/meetings", tags=["Meetings"])

monitor = DeadlineMonitor(SessionLocal)


@app.exception_handler(LifecycleError)
def lifecycle_error_handler(request: Request, exc: LifecycleError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def on_startup():
    """Create database tables (SQLite dev mode) and start the deadline monitor."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    if settings.DEADLINE_MONITOR_ENABLED:
        monitor.start()


@app.on_event("shutdown")
def on_shutdown():
    monitor.stop()


@app.get("/api/health")
def health_check():
    return {"status": "ok", "deadline_monitor": monitor.running}
