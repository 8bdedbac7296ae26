from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lessonhub.api.errors import install_error_handlers
from lessonhub.api.routes import router as api_router
from lessonhub.core.config import get_settings
from lessonhub.core.container import AppContainer
from lessonhub.core.logging import setup_logging
from lessonhub.db.session import create_engine, create_session_factory


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json or settings.is_production)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    container = AppContainer(settings=settings, session_factory=session_factory)

    app.state.engine = engine
    app.state.container = container

    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(title="LessonHub", lifespan=lifespan)
install_error_handlers(app)
app.include_router(api_router)
