from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from gacha_engine.core.db import engine, init_db
from gacha_engine.core.gacha import get_gacha_config
from gacha_engine.services.catalog import catalog_store
from gacha_engine.utils.exception_handlers import (
    EXCEPTION_HANDLERS,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from gacha_engine.utils.router_discovery import register_routers


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncGenerator[None, FastAPI]:
    # Fail at startup on a broken catalog or engine configuration
    catalog_store.refresh()
    config = get_gacha_config()
    logger.info(f"Gacha engine configured with pull types: {', '.join(config.pull_types)}")

    await init_db()
    yield

    await engine.dispose()


app = FastAPI(
    title="Gacha Engine API",
    lifespan=app_lifespan,
    servers=[{"url": "http://localhost:8080", "description": "Local server"}],
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


register_routers(app)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
for exc_class, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exc_class, handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def healthz() -> str:
    return "OK"
