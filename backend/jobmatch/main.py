"""Application entrypoint: sets up FastAPI app, CORS, logging and registers API routers.

This file centralizes server bootstrap concerns (middleware, routers, log levels)
so the match engine and persistence stay isolated in their respective modules.
"""
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobmatch.api.routers import health as health_router
from jobmatch.api.routers import match as match_router
from jobmatch.core.config import settings
from jobmatch.db.session import init_models


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

# Matcher loggers follow LOG_LEVEL
_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
for name in ("match", "ai.llm", "ai.json"):
    logging.getLogger(name).setLevel(_level)

# Reduce noise from external libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    yield


def create_app(*, create_tables: bool = True) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan if create_tables else None)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router.router)
    app.include_router(match_router.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("jobmatch.main:app", host=settings.API_HOST, port=settings.API_PORT, log_level=settings.LOG_LEVEL.lower())
