import asyncio
import uuid
from typing import List
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from sqlalchemy import select

from ..deps import Services, get_services, get_tenant_id
from ..errors import NotFoundError
from ..models import PromptFile
from ..schemas import FileContent, FileOut, UploadResponse
from ..services.extract import OCTET_STREAM, detect_mime_type, extract_text
from ..services.storage import generate_file_path, sanitize_filename
from .prompts import fetch_prompt

router = APIRouter(tags=["files"])


def content_disposition(filename: str) -> str:
    # ASCII fallback plus the RFC 5987 form for non-Latin names
    return f"attachment; filename=\"{sanitize_filename(filename)}\"; filename*=UTF-8''{quote(filename, safe='')}"


async def _fetch_file(svc: Services, tenant_id: str, prompt_id: UUID, file_id: UUID) -> PromptFile:
    async with svc.db.session() as session:
        f = await session.scalar(
            select(PromptFile).where(
                PromptFile.id == file_id,
                PromptFile.prompt_id == prompt_id,
                PromptFile.domain_id == tenant_id,
            )
        )
    if f is None:
        raise NotFoundError(f"File {file_id} not found")
    return f


@router.post("/prompts/{prompt_id}/files", response_model=UploadResponse, status_code=201)
async def upload_files(
    prompt_id: UUID,
    files: List[UploadFile] = File(...),
    tenant_id: str = Depends(get_tenant_id),
    svc: Services = Depends(get_services),
):
    if not files:
        raise HTTPException(400, "No files provided")
    if len(files) > svc.settings.MAX_FILES_PER_UPLOAD:
        raise HTTPException(400, f"At most {svc.settings.MAX_FILES_PER_UPLOAD} files per upload")

    payloads = []
    for upload in files:
        filename = upload.filename or "upload"
        data = await upload.read()
        if not data:
            raise HTTPException(400, f"Uploaded file {filename} is empty")
        if len(data) > svc.settings.MAX_UPLOAD_BYTES:
            raise HTTPException(413, f"Uploaded file {filename} is too large")
        # Extension first, then whatever the client sent
        mime = detect_mime_type(filename)
        if mime == OCTET_STREAM and upload.content_type:
            mime = upload.content_type
        payloads.append((filename, mime, data))

    async with svc.db.session() as session:
        await fetch_prompt(session, tenant_id, prompt_id)
        rows = []
        for filename, mime, data in payloads:
            file_id = uuid.uuid4()
            path = await svc.blobs.put(generate_file_path(tenant_id, prompt_id, file_id, filename), data)
            rows.append(PromptFile(
                id=file_id,
                prompt_id=prompt_id,
                domain_id=tenant_id,
                filename=filename,
                mime_type=mime,
                size_bytes=len(data),
                storage_path=path,
            ))
        session.add_all(rows)
        await session.commit()

    chunks = await svc.indexing.reindex(tenant_id, prompt_id)
    return UploadResponse(
        prompt_id=prompt_id,
        files_uploaded=len(rows),
        files=[FileOut.model_validate(r) for r in rows],
        chunks=chunks,
    )


@router.get("/prompts/{prompt_id}/files", response_model=List[FileOut])
async def list_files(prompt_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)):
    async with svc.db.session() as session:
        await fetch_prompt(session, tenant_id, prompt_id)
        rows = await session.scalars(
            select(PromptFile)
            .where(PromptFile.prompt_id == prompt_id, PromptFile.domain_id == tenant_id)
            .order_by(PromptFile.created_at)
        )
        return [FileOut.model_validate(f) for f in rows.all()]


@router.get("/prompts/{prompt_id}/files/{file_id}/download")
async def download_file(
    prompt_id: UUID, file_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)
):
    f = await _fetch_file(svc, tenant_id, prompt_id, file_id)
    data = await svc.blobs.get(f.storage_path)
    return Response(content=data, media_type=f.mime_type, headers={"Content-Disposition": content_disposition(f.filename)})


@router.get("/prompts/{prompt_id}/files/{file_id}/content", response_model=FileContent)
async def file_text(
    prompt_id: UUID, file_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)
):
    """The file as the indexer sees it: extracted plain text."""
    f = await _fetch_file(svc, tenant_id, prompt_id, file_id)
    data = await svc.blobs.get(f.storage_path)
    text = await asyncio.to_thread(extract_text, data, f.mime_type)
    return FileContent(file_id=f.id, filename=f.filename, mime_type=f.mime_type, text=text, length=len(text))


@router.delete("/prompts/{prompt_id}/files/{file_id}", status_code=204)
async def delete_file(
    prompt_id: UUID, file_id: UUID, tenant_id: str = Depends(get_tenant_id), svc: Services = Depends(get_services)
):
    f = await _fetch_file(svc, tenant_id, prompt_id, file_id)
    await svc.blobs.delete(f.storage_path)
    async with svc.db.session() as session:
        row = await session.get(PromptFile, file_id)
        if row is not None:
            await session.delete(row)
            await session.commit()
    await svc.indexing.reindex(tenant_id, prompt_id)
