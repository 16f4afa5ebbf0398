import asyncio
import os
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

import database
from api.endpoints.notifications import router as notifications_router
from api.endpoints.promises import router as promises_router
from api.endpoints.users import router as users_router
from api.middleware import LoggingMiddleware, allowed_origins
from email_service import EmailService
from exceptions import PromiseServiceError, status_code_for
from infrastructure.uow import UnitOfWork, create_uow_provider
from logging_config import get_logger
from milestone_service import MilestoneService
from models import utcnow
from note_service import NoteService
from notification_service import NotificationEmitter
from overdue_sweeper import OverdueSweeper
from promise_lifecycle_service import PromiseLifecycleService
from user_service import UserService

logger = get_logger(__name__)


async def wait_for_db(bind: AsyncEngine, attempts: int = 30, delay: float = 2.0) -> None:
    logger.info("database_connecting")
    for attempt in range(1, attempts + 1):
        try:
            async with bind.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("database_connected")
            return
        except Exception as e:
            if attempt == attempts:
                raise
            logger.warning("database_not_ready", attempt=attempt, error=str(e))
            await asyncio.sleep(delay)


def create_app(
    uow_factory: Optional[Callable[[], UnitOfWork]] = None,
    email_service=None,
    enable_scheduler: Optional[bool] = None,
    bind: Optional[AsyncEngine] = None,
    clock: Callable = utcnow,
) -> FastAPI:
    """
    Build the application with its services wired once.

    Tests pass their own uow_factory / email_service and leave the
    scheduler off.
    """
    if uow_factory is None:
        uow_factory = create_uow_provider()
    if email_service is None:
        email_service = EmailService()
    if enable_scheduler is None:
        enable_scheduler = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"

    users = UserService(uow_factory)
    notifications = NotificationEmitter(uow_factory)
    lifecycle = PromiseLifecycleService(uow_factory, users, notifications, email_service, clock=clock)
    sweeper = OverdueSweeper(uow_factory, lifecycle, notifications, clock=clock)

    app = FastAPI(title="Promise Tracker Core")
    app.state.users = users
    app.state.notifications = notifications
    app.state.lifecycle = lifecycle
    app.state.milestones = MilestoneService(uow_factory, users, notifications, clock=clock)
    app.state.notes = NoteService(uow_factory, users, notifications, clock=clock)
    app.state.sweeper = sweeper

    # SECURITY: Limit CORS to specific origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.include_router(users_router)
    app.include_router(promises_router)
    app.include_router(notifications_router)

    @app.exception_handler(PromiseServiceError)
    async def promise_service_error_handler(request: Request, exc: PromiseServiceError):
        status_code = status_code_for(exc)
        logger.info(
            "request_rejected",
            path=request.url.path,
            status_code=status_code,
            error=type(exc).__name__,
            message=exc.message,
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup():
        engine = bind or database.engine
        await wait_for_db(engine)
        await database.init_models(engine)
        if enable_scheduler:
            sweeper.start()
        logger.info("system_online", scheduler=enable_scheduler)

    @app.on_event("shutdown")
    async def shutdown():
        sweeper.stop()
        if bind is None:
            await database.close_db_connections()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
