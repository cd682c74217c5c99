from typing import List, Protocol, Sequence

import numpy as np
from openai import AsyncOpenAI

from ..config import Settings
from ..errors import EmbeddingDimensionError, EmbeddingProviderError
from ..utils.logger import get_logger

logger = get_logger(__name__)

_INT32 = 0xFFFFFFFF
_LCG_MULTIPLIER = 1103515245
_LCG_INCREMENT = 12345
_LCG_MASK = 0x7FFFFFFF


class EmbeddingProvider(Protocol):
    model: str
    dimensions: int

    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size != vb.size:
        raise EmbeddingDimensionError(va.size, vb.size)
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def _to_int32(value: int) -> int:
    value &= _INT32
    return value - (1 << 32) if value & 0x80000000 else value


def text_hash(text: str) -> int:
    """31-multiplier rolling hash with 32-bit signed wraparound, made non-negative."""
    h = 0
    for ch in text:
        h = _to_int32((h << 5) - h + ord(ch))
    return abs(h)


class MockEmbeddingProvider:
    """Deterministic embeddings for development and tests.

    The text hash seeds a linear congruential generator; the resulting
    values in [-1, 1] are L2-normalised, so identical text always maps to the
    same unit vector without any network call.
    """

    def __init__(self, dimensions: int, model: str = "mock-embedding-model"):
        self.dimensions = dimensions
        self.model = model

    def _vector(self, text: str) -> List[float]:
        seed = text_hash(text)
        values = np.empty(self.dimensions, dtype=np.float64)
        for i in range(self.dimensions):
            seed = (seed * _LCG_MULTIPLIER + _LCG_INCREMENT) & _LCG_MASK
            values[i] = (seed / _LCG_MASK) * 2 - 1
        norm = np.linalg.norm(values)
        if norm == 0:
            return [0.0] * self.dimensions
        return (values / norm).tolist()

    async def embed(self, text: str) -> List[float]:
        return self._vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._vector(t) for t in texts]


class OpenAIEmbeddingProvider:
    def __init__(self, client: AsyncOpenAI, model: str, dimensions: int):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        logger.info("OpenAI embeddings initialised: model=%s dimensions=%d", model, dimensions)

    def _check(self, vectors: List[List[float]], expected: int, operation: str) -> List[List[float]]:
        if len(vectors) != expected or any(not v for v in vectors):
            raise EmbeddingProviderError("empty embedding response", model=self.model, operation=operation)
        for v in vectors:
            if len(v) != self.dimensions:
                raise EmbeddingDimensionError(self.dimensions, len(v))
        return vectors

    async def _create(self, payload, operation: str):
        try:
            return await self.client.embeddings.create(
                model=self.model, input=payload, dimensions=self.dimensions
            )
        except Exception as e:
            logger.error("%s failed for model %s: %s", operation, self.model, e)
            raise EmbeddingProviderError(str(e), model=self.model, operation=operation) from e

    async def embed(self, text: str) -> List[float]:
        resp = await self._create(text, "embed")
        vectors = [d.embedding for d in (resp.data or [])]
        return self._check(vectors, 1, "embed")[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        resp = await self._create(list(texts), "embed_batch")
        vectors = [d.embedding for d in (resp.data or [])]
        usage = getattr(resp, "usage", None)
        logger.info(
            "Embedded batch of %d texts (tokens=%s)",
            len(texts),
            getattr(usage, "total_tokens", "n/a"),
        )
        return self._check(vectors, len(texts), "embed_batch")


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    if settings.USE_MOCK_EMBEDDINGS:
        return MockEmbeddingProvider(settings.EMBED_DIM)
    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return OpenAIEmbeddingProvider(client, settings.OPENAI_EMBED_MODEL, settings.EMBED_DIM)
