from typing import List, Optional, Sequence, Tuple
from uuid import UUID

import numpy as np
from sqlalchemy import func, select

from ..db import Database
from ..errors import EmbeddingDimensionError, InvalidInputError, require_tenant
from ..models import Embedding, Prompt
from ..schemas import EmbeddingStats, RelatedPrompt, SearchResult
from .embedding import EmbeddingProvider

BEST_CHUNK_PREVIEW = 200


def cosine_distances(query: Sequence[float], vectors: Sequence[Sequence[float]], dimensions: int) -> np.ndarray:
    """Cosine distance of every row in ``vectors`` to ``query``.

    Zero-magnitude vectors get distance 1 (similarity 0).
    """
    q = np.asarray(query, dtype=np.float64).reshape(-1)
    if q.size != dimensions:
        raise EmbeddingDimensionError(dimensions, q.size)
    if not vectors:
        return np.empty(0, dtype=np.float64)
    for v in vectors:
        if len(v) != dimensions:
            raise EmbeddingDimensionError(dimensions, len(v))
    m = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
    return 1.0 - sims


class VectorSearchService:
    def __init__(self, db: Database, embedder: EmbeddingProvider):
        self.db = db
        self.embedder = embedder

    async def _query_vector(self, query: str) -> List[float]:
        if not query or not query.strip():
            raise InvalidInputError("query must not be empty")
        return await self.embedder.embed(query)

    async def _scored_rows(self, tenant_id: str, query: str, prompt_id: Optional[UUID] = None) -> List[Tuple[float, Embedding, Prompt]]:
        """All chunks in scope with their similarity, best first.

        Ties keep the order the store returned the rows in.
        """
        require_tenant(tenant_id)
        q = await self._query_vector(query)

        stmt = (
            select(Embedding, Prompt)
            .join(Prompt, Embedding.prompt_id == Prompt.id)
            .where(Embedding.domain_id == tenant_id, Prompt.domain_id == tenant_id)
        )
        if prompt_id is not None:
            stmt = stmt.where(Embedding.prompt_id == prompt_id)

        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        distances = cosine_distances(q, [e.vector for e, _ in rows], self.embedder.dimensions)
        order = np.argsort(distances, kind="stable")
        return [(float(1.0 - distances[i]), rows[i][0], rows[i][1]) for i in order]

    async def similarity_search(
        self,
        tenant_id: str,
        query: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
        prompt_id: Optional[UUID] = None,
    ) -> List[SearchResult]:
        """Rank chunks by cosine similarity to ``query``.

        The ``top_k`` cut happens before the ``min_similarity`` filter, so the
        result is "best K overall, then thresholded" and may hold fewer than
        ``top_k`` rows even when lower-ranked rows pass the threshold.
        """
        if top_k < 1:
            raise InvalidInputError("top_k must be at least 1")
        scored = await self._scored_rows(tenant_id, query, prompt_id)
        return [
            SearchResult(
                embedding_id=emb.id,
                prompt_id=emb.prompt_id,
                chunk_id=emb.chunk_id,
                text=emb.text,
                prompt_name=prompt.name,
                prompt_description=prompt.description,
                similarity_score=score,
            )
            for score, emb, prompt in scored[:top_k]
            if score >= min_similarity
        ]

    async def search_within_prompt(self, tenant_id: str, prompt_id: UUID, query: str, top_k: int = 5) -> List[SearchResult]:
        return await self.similarity_search(tenant_id, query, top_k=top_k, prompt_id=prompt_id)

    async def find_related_prompts(
        self,
        tenant_id: str,
        query: str,
        top_k: int = 5,
        min_similarity: float = 0.3,
    ) -> List[RelatedPrompt]:
        scored = await self._scored_rows(tenant_id, query)

        related: dict[UUID, RelatedPrompt] = {}
        for score, emb, prompt in scored:
            if score < min_similarity:
                continue
            current = related.get(emb.prompt_id)
            if current is None or score > current.max_similarity:
                best = emb.text if len(emb.text) <= BEST_CHUNK_PREVIEW else emb.text[:BEST_CHUNK_PREVIEW] + "..."
                related[emb.prompt_id] = RelatedPrompt(
                    prompt_id=emb.prompt_id,
                    prompt_name=prompt.name,
                    prompt_description=prompt.description,
                    max_similarity=score,
                    best_chunk=best,
                    chunk_count=(current.chunk_count if current else 0) + 1,
                )
            else:
                current.chunk_count += 1

        ranked = sorted(related.values(), key=lambda r: r.max_similarity, reverse=True)
        return ranked[:top_k]

    async def get_context(self, tenant_id: str, prompt_id: UUID, query: str, max_chunks: int = 3) -> str:
        chunks = await self.search_within_prompt(tenant_id, prompt_id, query, top_k=max_chunks)
        if not chunks:
            return ""
        return "\n\n".join(f"[Score: {c.similarity_score:.3f}] {c.text}" for c in chunks)

    async def get_stats(self, tenant_id: str) -> EmbeddingStats:
        require_tenant(tenant_id)
        stmt = select(
            func.count(Embedding.id),
            func.count(func.distinct(Embedding.prompt_id)),
            func.avg(func.length(Embedding.text)),
        ).where(Embedding.domain_id == tenant_id)
        async with self.db.session() as session:
            total, prompts, avg_len = (await session.execute(stmt)).one()
        return EmbeddingStats(
            total_embeddings=total or 0,
            prompts_with_embeddings=prompts or 0,
            average_chunk_length=round(float(avg_len)) if avg_len is not None else 0,
        )
