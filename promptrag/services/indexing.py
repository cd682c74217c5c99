"""
Indexing orchestrator: prompt text and attached files → chunks → vectors.

A reindex deletes every embedding of the prompt, commits, then rebuilds
them from the current prompt text and files. Between those two commits a
reader sees the prompt with no embeddings. Reindexes of the same prompt are
serialised inside one process; across processes the last writer wins.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import delete, select

from ..db import Database
from ..errors import EmbeddingDimensionError, NotFoundError, require_tenant
from ..models import Embedding, Prompt, PromptFile
from ..schemas import EmbeddingStats
from ..utils.logger import get_logger
from ..utils.text import TextChunker
from .embedding import EmbeddingProvider
from .extract import extract_text
from .search import VectorSearchService
from .storage import BlobStore

logger = get_logger(__name__)


@dataclass
class ProcessedChunk:
    text: str
    chunk_id: str
    source: str


class IndexingService:
    def __init__(
        self,
        db: Database,
        embedder: EmbeddingProvider,
        blobs: BlobStore,
        chunker: TextChunker,
        search: Optional[VectorSearchService] = None,
    ):
        self.db = db
        self.embedder = embedder
        self.blobs = blobs
        self.chunker = chunker
        self.search = search or VectorSearchService(db, embedder)
        self._locks: Dict[Tuple[str, UUID], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, UUID], int] = {}
        self._tasks: Set[asyncio.Task] = set()

    def chunk_text(self, text: str) -> List[str]:
        return self.chunker.split(text)

    def process_prompt_content(self, prompt_text: Optional[str]) -> List[ProcessedChunk]:
        if not prompt_text:
            return []
        return [
            ProcessedChunk(text=chunk, chunk_id=f"prompt_{i}", source="prompt")
            for i, chunk in enumerate(self.chunk_text(prompt_text))
        ]

    def process_file_content(self, file_id: UUID, content: str, filename: str) -> List[ProcessedChunk]:
        return [
            ProcessedChunk(text=chunk, chunk_id=f"file_{file_id}_{i}", source=f"file:{filename}")
            for i, chunk in enumerate(self.chunk_text(content))
        ]

    async def delete_embeddings(self, tenant_id: str, prompt_id: UUID) -> None:
        require_tenant(tenant_id)
        async with self.db.session() as session:
            await session.execute(
                delete(Embedding).where(Embedding.domain_id == tenant_id, Embedding.prompt_id == prompt_id)
            )
            await session.commit()

    async def save_embeddings(self, tenant_id: str, prompt_id: UUID, chunks: List[ProcessedChunk]) -> None:
        if not chunks:
            return
        vectors = await self.embedder.embed_batch([c.text for c in chunks])
        for v in vectors:
            if len(v) != self.embedder.dimensions:
                raise EmbeddingDimensionError(self.embedder.dimensions, len(v))

        async with self.db.session() as session:
            session.add_all(
                Embedding(domain_id=tenant_id, prompt_id=prompt_id, chunk_id=c.chunk_id, text=c.text, vector=v)
                for c, v in zip(chunks, vectors)
            )
            await session.commit()

    async def _file_chunks(self, f: PromptFile) -> List[ProcessedChunk]:
        content = await self.blobs.get(f.storage_path)
        text = await asyncio.to_thread(extract_text, content, f.mime_type)
        return self.process_file_content(f.id, text, f.filename)

    @asynccontextmanager
    async def _prompt_lock(self, tenant_id: str, prompt_id: UUID) -> AsyncIterator[None]:
        # Entries live only while some coroutine holds or awaits the lock.
        key = (tenant_id, prompt_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def reindex(self, tenant_id: str, prompt_id: UUID) -> int:
        """Rebuild every embedding of a prompt and return the chunk count.

        A file that cannot be fetched or extracted is logged and skipped.
        """
        require_tenant(tenant_id)
        async with self._prompt_lock(tenant_id, prompt_id):
            await self.delete_embeddings(tenant_id, prompt_id)

            async with self.db.session() as session:
                prompt = await session.scalar(
                    select(Prompt).where(Prompt.id == prompt_id, Prompt.domain_id == tenant_id)
                )
                if prompt is None:
                    raise NotFoundError(f"Prompt {prompt_id} not found")
                files = (
                    await session.scalars(
                        select(PromptFile)
                        .where(PromptFile.prompt_id == prompt_id, PromptFile.domain_id == tenant_id)
                        .order_by(PromptFile.created_at)
                    )
                ).all()

            chunks = self.process_prompt_content(prompt.prompt)
            for f in files:
                try:
                    chunks.extend(await self._file_chunks(f))
                except Exception:
                    logger.exception("Failed to process file %s (%s) of prompt %s", f.filename, f.id, prompt_id)

            await self.save_embeddings(tenant_id, prompt_id, chunks)

        logger.info("Reindexed prompt %s for tenant %s: %d chunks", prompt_id, tenant_id, len(chunks))
        return len(chunks)

    def schedule_reindex(self, tenant_id: str, prompt_id: UUID) -> asyncio.Task:
        """Start a reindex without waiting for it; failures are only logged."""
        task = asyncio.create_task(self.reindex(tenant_id, prompt_id))
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                logger.warning("Background reindex of prompt %s was cancelled", prompt_id)
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Background reindex of prompt %s failed", prompt_id, exc_info=exc)

        task.add_done_callback(_done)
        return task

    async def wait_pending(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_stats(self, tenant_id: str) -> EmbeddingStats:
        return await self.search.get_stats(tenant_id)
