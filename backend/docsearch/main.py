"""Application bootstrap for the Docsearch API.

This module wires the FastAPI application, attaches middleware, and owns the embedding services' lifecycle.

Functions:
    lifespan(app: FastAPI): Initialise the database, embedding cache and execution channel; dispose them on shutdown.
    health_check(): Lightweight readiness probe used by monitoring and local smoke tests.
    run(): Serve the application with uvicorn on the configured host and port.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docsearch.api import api_router
from docsearch.core.config import get_settings
from docsearch.db.session import init_db
from docsearch.services import (
    EmbeddingClient,
    EmbeddingStore,
    TransportProbe,
    VectorStore,
    build_channel_factory,
)

settings = get_settings()
_LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.log_level)
    await init_db()

    store = EmbeddingStore(settings.embedding_cache_url)
    await store.open()
    transport = await TransportProbe(settings).resolve()
    client = EmbeddingClient(build_channel_factory(settings, transport=transport), store=store, settings=settings)
    app.state.embedding_client = client
    app.state.vector_store = VectorStore(settings.embedding_dimensions, excerpt_length=settings.excerpt_length)
    _LOGGER.info("Embedding client ready (transport=%s, runtime=%s)", transport, settings.embedding_runtime)
    try:
        yield
    finally:
        await client.dispose(terminate=True)
        await store.close()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


def run() -> None:
    uvicorn.run("docsearch.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
