"""
NOOS Planner - FastAPI Application
Classifies styles into Core, Bestseller and Fashion buckets so merchandisers
know what to keep perpetually in stock.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from noos import __version__
from noos.api import routes
from noos.config import configure_logging, settings
from noos.exceptions import NoosError
from noos.models import create_tables
from noos.services import shutdown_executors

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_tables()
    logger.info("NOOS planner %s started", __version__)
    yield
    shutdown_executors(wait=True)
    logger.info("NOOS planner stopped")


app = FastAPI(
    title="NOOS Planner",
    description="Classify styles into Core, Bestseller and Fashion from sales history",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NoosError)
async def noos_error_handler(request: Request, exc: NoosError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include API routes
app.include_router(routes.router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    return {
        "message": "NOOS Planner API",
        "docs": "/docs",
        "health": "ok"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
