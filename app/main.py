"""
Compliance Connect API entry point.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.api import admin, audit, auth, companies, invitations, notifications, pirs, questions

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db.session import init_db

    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.APP_ENV})")
    init_db()
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, companies, questions, pirs, invitations, notifications, admin, audit):
    app.include_router(module.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "environment": settings.APP_ENV}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
