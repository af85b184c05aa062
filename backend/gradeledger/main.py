from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .api.routes import router
from .config import settings
from .logging_config import setup_logging
from .repositories import AssessmentRunStore
from .services.submission_locks import SubmissionLockManager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("gradeledger started; {} submission(s) in store", app.state.run_store.submission_count())
    yield


def create_app(store: AssessmentRunStore | None = None) -> FastAPI:
    setup_logging()

    app = FastAPI(title="GradeLedger API", version="0.1.0", lifespan=lifespan)
    app.state.run_store = store or AssessmentRunStore()
    app.state.submission_locks = SubmissionLockManager()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()
