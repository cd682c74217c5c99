from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from .config import Settings
from .db import Database
from .services.indexing import IndexingService
from .services.rag import ApplyService, CompletionClient
from .services.search import VectorSearchService
from .services.storage import BlobStore


@dataclass
class Services:
    settings: Settings
    db: Database
    blobs: BlobStore
    search: VectorSearchService
    indexing: IndexingService
    apply: ApplyService
    llm: CompletionClient


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_tenant_id(x_domain_id: str | None = Header(default=None)) -> str:
    if not x_domain_id or not x_domain_id.strip():
        raise HTTPException(400, "X-Domain-ID header is required")
    return x_domain_id.strip()
