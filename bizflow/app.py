"""Set up logging before importing anything else"""

import sentry_sdk

from bizflow.constants import CORS_ALLOWED_ORIGINS, SENTRY_DSN
from bizflow.logging_config import ENVIRONMENT, setup_logging

setup_logging()


if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        send_default_pii=False,
        environment=ENVIRONMENT,
    )
    print(f"Sentry initialized in environment: {ENVIRONMENT}")


from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from bizflow.db import db_client
from bizflow.routes.main import router as main_router
from bizflow.tasks.arq import close_arq_redis, get_arq_redis

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # warmup arq pool
    await get_arq_redis()

    yield  # Run app

    logger.info("Shutting down")
    await close_arq_redis()
    await db_client.engine.dispose()


app = FastAPI(
    title="Bizflow API",
    description="Workflow engine for business entities: state-driven triggers, scheduled jobs and notifications",
    version="1.0.0",
    openapi_url=f"{API_PREFIX}/openapi.json",
    lifespan=lifespan,
)


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router = APIRouter()

# include subrouters here
api_router.include_router(main_router)

# main router with api prefix
app.include_router(api_router, prefix=API_PREFIX)
