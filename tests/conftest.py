"""
Shared fixtures: SQLite (aiosqlite) database in tmp_path, local blob store,
mock embeddings and a canned LLM client.
"""
import uuid

import pytest

from promptrag.config import Settings
from promptrag.db import Database
from promptrag.models import Prompt, PromptFile
from promptrag.services.embedding import MockEmbeddingProvider
from promptrag.services.indexing import IndexingService
from promptrag.services.llm import Completion
from promptrag.services.search import VectorSearchService
from promptrag.services.storage import LocalBlobStore, generate_file_path
from promptrag.utils.text import TextChunker

pytest_plugins = ["pytest_asyncio"]

DIM = 64
TENANT = "tenant-a"


class FakeLLM:
    def __init__(self, text="<p>done</p>"):
        self.text = text
        self.calls = []

    async def complete(self, system, user, max_tokens=1000, temperature=0.7, model=None):
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens,
                           "temperature": temperature, "model": model})
        return Completion(text=self.text, prompt_tokens=11, completion_tokens=5,
                          total_tokens=16, model=model or "fake-model")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        BLOB_BACKEND="local",
        BLOB_LOCAL_ROOT=str(tmp_path / "blobs"),
        EMBED_DIM=DIM,
        USE_MOCK_EMBEDDINGS=True,
        CHUNK_SIZE=200,
        CHUNK_OVERLAP=20,
    )


@pytest.fixture
async def db(settings):
    database = Database(settings.database_url)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def embedder():
    return MockEmbeddingProvider(DIM)


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def search(db, embedder):
    return VectorSearchService(db, embedder)


@pytest.fixture
def indexing(db, embedder, blobs, search):
    return IndexingService(db, embedder, blobs, TextChunker(200, 20), search=search)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_prompt(db):
    async def _make(text, tenant=TENANT, name="test prompt"):
        async with db.session() as session:
            p = Prompt(domain_id=tenant, name=name, prompt=text)
            session.add(p)
            await session.commit()
            return p.id
    return _make


@pytest.fixture
def attach_file(db, blobs):
    async def _attach(prompt_id, filename, content: bytes, mime_type, tenant=TENANT):
        file_id = uuid.uuid4()
        path = await blobs.put(generate_file_path(tenant, prompt_id, file_id, filename), content)
        async with db.session() as session:
            f = PromptFile(id=file_id, prompt_id=prompt_id, domain_id=tenant, filename=filename,
                           mime_type=mime_type, size_bytes=len(content), storage_path=path)
            session.add(f)
            await session.commit()
            return f.id
    return _attach
