# File: app/main.py
# Project: civicpulse-lifecycle

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

from app.core.config import cors_origins_list, settings
from app.core.errors import LifecycleError
from app.core.ratelimit import limiter
from app.db.session import SessionLocal
from app.routers import analytics, chat, issues, issues_stats, wards, live, push_subscriptions
from app.services.events import EventBroker
from app.services.notifications import NotificationDispatcher
from app.services.scheduler import SweepScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.broker = EventBroker()
    app.state.dispatcher = NotificationDispatcher()
    scheduler = None
    if settings.enable_scheduler:
        scheduler = SweepScheduler(SessionLocal, app.state.dispatcher, app.state.broker)
        scheduler.start()
    else:
        logger.info("Background sweeps disabled (ENABLE_SCHEDULER=false)")
    yield
    # Shutdown
    if scheduler:
        scheduler.stop()
    app.state.dispatcher.shutdown()


app = FastAPI(title="CivicPulse Issue Lifecycle API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
def health():
    return {"ok": True}

# stats before issues: /issues/stats/* must not be captured by /issues/{issue_id}/*
app.include_router(issues_stats.router)
app.include_router(issues.router)
app.include_router(chat.router)
app.include_router(analytics.router)
app.include_router(wards.router)
app.include_router(live.router)
app.include_router(push_subscriptions.router)
