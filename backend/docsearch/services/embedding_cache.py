"""Content-addressed embedding cache.

Classes:
    EmbeddingIdentity: Deterministic identity of one embedding (model, device, pooling, normalisation, text hash).
    EmbeddingStore: Durable local key/value store of vectors keyed by identity.

Functions:
    compute_identity(config, text): Derive the identity for embedding *text* under *config*.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import SQLModel, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from docsearch.core.config import get_settings
from docsearch.db.session import create_engine_for_url
from docsearch.models import EmbeddingCache, EmbeddingCacheMeta
from docsearch.services.model_config import EmbeddingModelConfig
from docsearch.utils.clock import utcnow
from docsearch.utils.hashing import fnv1a_32
from docsearch.utils.vectors import VECTOR_DTYPE, vector_from_bytes, vector_to_bytes

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EmbeddingIdentity:
    model_id: str
    device: str
    pooling: str
    normalize: bool
    content_hash: str

    @property
    def key(self) -> str:
        return "|".join(
            (self.model_id, self.device, self.pooling, "norm" if self.normalize else "raw", self.content_hash)
        )


def compute_identity(config: EmbeddingModelConfig, text: str) -> EmbeddingIdentity:
    return EmbeddingIdentity(
        model_id=config.model_id,
        device=config.device,
        pooling=config.pooling,
        normalize=config.normalize,
        content_hash=fnv1a_32(text),
    )


class EmbeddingStore:
    """
    SQLite-backed cache of embedding vectors.

    Entries are only ever replaced wholesale; identical keys always carry the
    same content. Opening the store compares the recorded schema version with
    the configured one and wipes every entry when they differ. Read and write
    failures are logged and reported as a miss / skipped write.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        schema_version: Optional[int] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        settings = get_settings()
        self._engine = engine or create_engine_for_url(url or settings.embedding_cache_url)
        self._owns_engine = engine is None
        self._schema_version = schema_version if schema_version is not None else settings.embedding_cache_schema_version
        self._sessions = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        self._opened = False
        self._open_lock = asyncio.Lock()

    @property
    def schema_version(self) -> int:
        return self._schema_version

    async def open(self) -> None:
        if self._opened:
            return
        async with self._open_lock:
            if self._opened:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(
                    lambda sync_conn: SQLModel.metadata.create_all(
                        sync_conn,
                        tables=[EmbeddingCache.__table__, EmbeddingCacheMeta.__table__],
                    )
                )
            async with self._sessions() as session:
                meta = await session.get(EmbeddingCacheMeta, 1)
                if meta is None or meta.schema_version != self._schema_version:
                    if meta is not None:
                        _LOGGER.info(
                            "Embedding cache schema changed (%s -> %s); wiping entries",
                            meta.schema_version,
                            self._schema_version,
                        )
                    await session.exec(delete(EmbeddingCache))
                    await session.merge(EmbeddingCacheMeta(id=1, schema_version=self._schema_version))
                    await session.commit()
            self._opened = True

    async def get(self, identity: EmbeddingIdentity) -> list[float] | None:
        try:
            await self.open()
            async with self._sessions() as session:
                record = await session.get(EmbeddingCache, identity.key)
        except (SQLAlchemyError, OSError) as exc:
            _LOGGER.warning("Embedding cache read failed for %s: %s", identity.key, exc)
            return None
        if record is None:
            return None
        try:
            vector = vector_from_bytes(record.vector, record.dim, record.vector_dtype or VECTOR_DTYPE)
        except ValueError as exc:
            _LOGGER.warning("Discarding corrupt cache entry %s: %s", identity.key, exc)
            return None
        return vector.tolist()

    async def put(
        self,
        identity: EmbeddingIdentity,
        vector: Sequence[float],
        *,
        owning_entity_id: Optional[str] = None,
    ) -> bool:
        arr = np.asarray(vector, dtype=np.float32)
        record = EmbeddingCache(
            key=identity.key,
            model_id=identity.model_id,
            device=identity.device,
            pooling=identity.pooling,
            normalize=identity.normalize,
            content_hash=identity.content_hash,
            vector=vector_to_bytes(arr),
            vector_dtype=VECTOR_DTYPE,
            dim=int(arr.size),
            owning_entity_id=owning_entity_id,
            updated_at=utcnow(),
        )
        try:
            await self.open()
            async with self._sessions() as session:
                await session.merge(record)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            _LOGGER.warning("Embedding cache write failed for %s: %s", identity.key, exc)
            return False
        return True

    async def clear(self) -> None:
        await self.open()
        async with self._sessions() as session:
            await session.exec(delete(EmbeddingCache))
            await session.commit()

    async def count(self) -> int:
        await self.open()
        async with self._sessions() as session:
            result = await session.exec(select(func.count()).select_from(EmbeddingCache))
            return int(result.one())

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()
        self._opened = False
