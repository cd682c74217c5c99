from typing import List

from fastapi import APIRouter, Depends

from ..deps import Services, get_services, get_tenant_id
from ..schemas import (
    ContextRequest,
    ContextResponse,
    EmbeddingStats,
    RelatedPrompt,
    RelatedPromptsRequest,
    SearchRequest,
    SearchResult,
)

router = APIRouter(tags=["search"])


@router.post("/search", response_model=List[SearchResult])
async def similarity_search(req: SearchRequest, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    return await svc.search.similarity_search(
        tenant_id, req.query, top_k=req.top_k, min_similarity=req.min_similarity, prompt_id=req.prompt_id
    )


@router.post("/search/related", response_model=List[RelatedPrompt])
async def related_prompts(req: RelatedPromptsRequest, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    return await svc.search.find_related_prompts(tenant_id, req.query, top_k=req.top_k, min_similarity=req.min_similarity)


@router.post("/search/context", response_model=ContextResponse)
async def prompt_context(req: ContextRequest, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    context = await svc.search.get_context(tenant_id, req.prompt_id, req.query, max_chunks=req.max_chunks)
    return ContextResponse(context=context)


@router.get("/search/stats", response_model=EmbeddingStats)
async def stats(tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    return await svc.indexing.get_stats(tenant_id)
