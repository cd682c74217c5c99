from datetime import datetime, timezone
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Services, get_services, get_tenant_id
from ..errors import NotFoundError
from ..models import Embedding, Prompt, PromptFile
from ..schemas import ApplyRequest, ApplyResponse, PromptCreate, PromptOut, PromptUpdate, ReindexResponse
from ..utils.logger import get_logger

router = APIRouter(tags=["prompts"])
logger = get_logger(__name__)


async def fetch_prompt(session: AsyncSession, tenant_id: str, prompt_id: UUID) -> Prompt:
    prompt = await session.scalar(select(Prompt).where(Prompt.id == prompt_id, Prompt.domain_id == tenant_id))
    if prompt is None:
        raise NotFoundError(f"Prompt {prompt_id} not found")
    return prompt


@router.post("/prompts", response_model=PromptOut, status_code=201)
async def create_prompt(body: PromptCreate, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    async with svc.db.session() as session:
        prompt = Prompt(
            domain_id=tenant_id,
            name=body.name,
            description=body.description,
            prompt=body.prompt,
            meta=body.metadata,
            model_id=body.model_id,
        )
        session.add(prompt)
        await session.commit()

    if prompt.prompt:
        svc.indexing.schedule_reindex(tenant_id, prompt.id)
    return PromptOut.model_validate(prompt)


@router.get("/prompts", response_model=List[PromptOut])
async def list_prompts(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    svc: Services = Depends(get_services),
):
    async with svc.db.session() as session:
        rows = await session.scalars(
            select(Prompt)
            .where(Prompt.domain_id == tenant_id)
            .order_by(Prompt.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return [PromptOut.model_validate(p) for p in rows.all()]


@router.get("/prompts/{prompt_id}", response_model=PromptOut)
async def get_prompt(prompt_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    async with svc.db.session() as session:
        return PromptOut.model_validate(await fetch_prompt(session, tenant_id, prompt_id))


@router.put("/prompts/{prompt_id}", response_model=PromptOut)
async def update_prompt(
    prompt_id: UUID,
    body: PromptUpdate,
    tenant_id: str = Depends(get_tenant_id),
    svc: Services = Depends(get_services),
):
    async with svc.db.session() as session:
        prompt = await fetch_prompt(session, tenant_id, prompt_id)
        changes = body.model_dump(exclude_unset=True)
        if "metadata" in changes:
            changes["meta"] = changes.pop("metadata")
        for key, value in changes.items():
            setattr(prompt, key, value)
        prompt.updated_at = datetime.now(timezone.utc)
        await session.commit()

    if "prompt" in changes:
        svc.indexing.schedule_reindex(tenant_id, prompt_id)
    return PromptOut.model_validate(prompt)


@router.delete("/prompts/{prompt_id}", status_code=204)
async def delete_prompt(prompt_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    async with svc.db.session() as session:
        prompt = await fetch_prompt(session, tenant_id, prompt_id)
        files = (await session.scalars(select(PromptFile).where(PromptFile.prompt_id == prompt_id))).all()
        await session.execute(delete(Embedding).where(Embedding.prompt_id == prompt_id))
        await session.execute(delete(PromptFile).where(PromptFile.prompt_id == prompt_id))
        await session.delete(prompt)
        await session.commit()

    for f in files:
        try:
            await svc.blobs.delete(f.storage_path)
        except Exception:
            logger.exception("Failed to delete blob %s of prompt %s", f.storage_path, prompt_id)


@router.post("/prompts/{prompt_id}/reindex", response_model=ReindexResponse)
async def reindex_prompt(prompt_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    chunks = await svc.indexing.reindex(tenant_id, prompt_id)
    return ReindexResponse(prompt_id=prompt_id, chunks=chunks)


@router.post("/prompts/{prompt_id}/apply", response_model=ApplyResponse)
async def apply_prompt(
    prompt_id: UUID,
    body: ApplyRequest,
    tenant_id: str = Depends(get_tenant_id),
    svc: Services = Depends(get_services),
):
    async with svc.db.session() as session:
        prompt = await fetch_prompt(session, tenant_id, prompt_id)
    return await svc.apply.apply(tenant_id, prompt_id, prompt.prompt or "", prompt.name, body)
