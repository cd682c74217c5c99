import time
from typing import List, Optional, Protocol
from uuid import UUID

from ..schemas import ApplyRequest, ApplyResponse, ContextChunk, TokenUsage
from ..utils.logger import get_logger
from .llm import Completion
from .search import VectorSearchService

logger = get_logger(__name__)

SYSTEM = """You are a helpful assistant that modifies text according to given instructions while preserving and using TinyMCE HTML formatting.

FORMATTING REQUIREMENTS:
1. Always output valid HTML that can be rendered in TinyMCE editor
2. Preserve all existing HTML formatting from the input text
3. Use proper HTML tags for structure:
   - Wrap paragraphs in <p></p> tags
   - Use <strong> or <b> for bold, <em> or <i> for italics
   - Use <h1> through <h6> for headings
   - Use <ul>/<ol> with <li> for lists
   - Use <br /> for line breaks within paragraphs

FORMATTING GUIDELINES:
- Only add new formatting elements if they already exist in the input OR if explicitly requested
- Be conservative with formatting, do not over-format
- Keep the original formatting style (if the input uses <strong>, keep using <strong> rather than <b>)
- Ensure all tags are properly closed
- Preserve any inline styles, classes, or attributes from the original
- Do not add decorative formatting unless specifically asked

OUTPUT FORMAT:
Return ONLY the modified HTML content without any markdown code blocks or explanations."""

USER_TEMPLATE = """Instruction: {instruction}

User Query: {query}

{context_section}Text to modify (TinyMCE HTML): {text}

Please modify the text according to the instruction and user query, maintaining proper TinyMCE HTML formatting:"""


class CompletionClient(Protocol):
    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        model: Optional[str] = None,
    ) -> Completion: ...


def chunk_source(chunk_id: str) -> str:
    return "file" if chunk_id.startswith("file_") else "prompt"


def format_context(chunks: List[ContextChunk]) -> str:
    return "\n\n".join(f"[{i}] {c.text}" for i, c in enumerate(chunks, start=1))


def format_context_section(context: str) -> str:
    if not context or not context.strip():
        return ""
    return f"Relevant Context:\n{context}\n\n"


def build_user_prompt(instruction: str, query: str, text: str, context: str) -> str:
    return USER_TEMPLATE.format(
        instruction=instruction,
        query=query,
        context_section=format_context_section(context),
        text=text,
    )


class ApplyService:
    def __init__(self, search: VectorSearchService, llm: CompletionClient):
        self.search = search
        self.llm = llm

    async def retrieve_context(self, tenant_id: str, prompt_id: UUID, req: ApplyRequest) -> List[ContextChunk]:
        if not req.include_context:
            return []
        results = await self.search.similarity_search(
            tenant_id,
            req.query,
            top_k=req.max_context_chunks,
            min_similarity=req.min_similarity,
            prompt_id=prompt_id,
        )
        return [
            ContextChunk(
                chunk_id=r.chunk_id,
                text=r.text,
                similarity_score=r.similarity_score,
                source=chunk_source(r.chunk_id),
            )
            for r in results
        ]

    async def apply(
        self,
        tenant_id: str,
        prompt_id: UUID,
        prompt_text: str,
        prompt_name: Optional[str],
        req: ApplyRequest,
    ) -> ApplyResponse:
        started = time.perf_counter()
        logger.info("Applying prompt %s for tenant %s", prompt_id, tenant_id)

        chunks = await self.retrieve_context(tenant_id, prompt_id, req)
        if chunks:
            logger.info("Retrieved %d context chunks", len(chunks))

        user = build_user_prompt(prompt_text, req.query, req.text, format_context(chunks))
        out = await self.llm.complete(
            SYSTEM,
            user,
            max_tokens=req.max_tokens,
            temperature=req.temperature,
            model=req.model_override,
        )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Prompt %s applied in %dms (%d tokens)", prompt_id, elapsed_ms, out.total_tokens)
        return ApplyResponse(
            prompt_id=prompt_id,
            prompt_name=prompt_name,
            query=req.query,
            response=out.text,
            context_used=chunks,
            token_usage=TokenUsage(
                prompt_tokens=out.prompt_tokens,
                completion_tokens=out.completion_tokens,
                total_tokens=out.total_tokens,
            ),
            execution_time_ms=elapsed_ms,
            model=out.model,
        )
