from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# --- prompts & files ---------------------------------------------------------

class PromptCreate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    name: Optional[str] = None
    description: Optional[str] = None
    prompt: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    model_id: Optional[str] = None

class PromptUpdate(PromptCreate):
    pass

class PromptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: UUID
    domain_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    prompt: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    model_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    prompt_id: UUID
    filename: str
    mime_type: str
    size_bytes: int
    created_at: datetime

class UploadResponse(BaseModel):
    prompt_id: UUID
    files_uploaded: int
    files: List[FileOut]
    chunks: int

class FileContent(BaseModel):
    file_id: UUID
    filename: str
    mime_type: str
    text: str
    length: int

class ReindexResponse(BaseModel):
    prompt_id: UUID
    chunks: int
    message: str = "Prompt reindexed successfully"

# --- retrieval ---------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=50)
    min_similarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    prompt_id: Optional[UUID] = None

class RelatedPromptsRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=50)
    min_similarity: float = Field(default=0.3, ge=-1.0, le=1.0)

class ContextRequest(BaseModel):
    prompt_id: UUID
    query: str = Field(min_length=1)
    max_chunks: int = Field(default=3, ge=1, le=20)

class SearchResult(BaseModel):
    embedding_id: UUID
    prompt_id: UUID
    chunk_id: str
    text: str
    prompt_name: Optional[str] = None
    prompt_description: Optional[str] = None
    similarity_score: float

class RelatedPrompt(BaseModel):
    prompt_id: UUID
    prompt_name: Optional[str] = None
    prompt_description: Optional[str] = None
    max_similarity: float
    best_chunk: str
    chunk_count: int

class ContextResponse(BaseModel):
    context: str

class EmbeddingStats(BaseModel):
    total_embeddings: int
    prompts_with_embeddings: int
    average_chunk_length: int

# --- apply -------------------------------------------------------------------

class ApplyRequest(BaseModel):
    query: str = Field(min_length=1)
    text: str = ""
    include_context: bool = True
    max_context_chunks: int = Field(default=3, ge=1, le=20)
    min_similarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    max_tokens: int = Field(default=1000, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    model_override: Optional[str] = None

class ContextChunk(BaseModel):
    chunk_id: str
    text: str
    similarity_score: float
    source: Literal["file", "prompt"]

class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

class ApplyResponse(BaseModel):
    prompt_id: UUID
    prompt_name: Optional[str] = None
    query: str
    response: str
    context_used: List[ContextChunk]
    token_usage: TokenUsage
    execution_time_ms: int
    model: str
