from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings as default_settings
from .db import Database
from .deps import Services
from .errors import (
    BlobStoreError,
    ContentExtractionError,
    EmbeddingProviderError,
    InvalidInputError,
    NotFoundError,
    PromptRagError,
    UnsupportedMimeTypeError,
)
from .routers import files, prompts, search
from .services.embedding import build_embedding_provider
from .services.indexing import IndexingService
from .services.llm import LLMClient, LLMConfigurationError, LLMServiceError
from .services.rag import ApplyService, CompletionClient
from .services.search import VectorSearchService
from .services.storage import BlobStore, build_blob_store
from .utils.logger import get_logger
from .utils.text import TextChunker

logger = get_logger(__name__)


def build_services(
    cfg: Settings,
    *,
    db: Optional[Database] = None,
    blobs: Optional[BlobStore] = None,
    llm: Optional[CompletionClient] = None,
) -> Services:
    db = db or Database(cfg.database_url)
    blobs = blobs or build_blob_store(cfg)
    llm = llm or LLMClient(cfg)
    embedder = build_embedding_provider(cfg)
    search_service = VectorSearchService(db, embedder)
    indexing = IndexingService(
        db, embedder, blobs, TextChunker(cfg.CHUNK_SIZE, cfg.CHUNK_OVERLAP), search=search_service
    )
    return Services(
        settings=cfg,
        db=db,
        blobs=blobs,
        search=search_service,
        indexing=indexing,
        apply=ApplyService(search_service, llm),
        llm=llm,
    )


_STATUS = [
    (NotFoundError, 404),
    (UnsupportedMimeTypeError, 415),
    (InvalidInputError, 400),
    (ContentExtractionError, 422),
    (EmbeddingProviderError, 502),
    (LLMConfigurationError, 502),
    (LLMServiceError, 502),
    (BlobStoreError, 502),
]


async def _error_handler(request: Request, exc: PromptRagError):
    status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def create_app(
    cfg: Settings = default_settings,
    services: Optional[Services] = None,
    *,
    llm: Optional[CompletionClient] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services or build_services(cfg, llm=llm)
        await svc.db.create_all()
        app.state.services = svc
        logger.info("promptrag started (mock embeddings=%s, blob backend=%s)", cfg.USE_MOCK_EMBEDDINGS, cfg.BLOB_BACKEND)
        yield
        await svc.indexing.wait_pending()
        await svc.db.dispose()

    app = FastAPI(title="promptrag", version="0.2.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware,
        allow_origins=[o.strip() for o in cfg.ALLOWED_ORIGINS.split(",")],
        allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(PromptRagError, _error_handler)

    @app.get("/health")
    async def health(): return {"status": "ok"}

    app.include_router(prompts.router, prefix="/v1")
    app.include_router(files.router, prefix="/v1")
    app.include_router(search.router, prefix="/v1")
    return app


app = create_app()
