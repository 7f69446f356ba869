"""Retrieval and question answering endpoints."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from librarian.api.deps import Context, QueryRateLimit
from librarian.rag.answerer import AnswerGenerationError
from librarian.rag.retriever import Retriever


router = APIRouter()


class QueryRequest(BaseModel):
    """RAG query request. Unset fields use the runtime settings."""

    query: str = Field(..., min_length=1, max_length=10000)
    k: int | None = Field(None, ge=1, le=100)
    content_weight: float | None = Field(None, ge=0.0)
    meta_weight: float | None = Field(None, ge=0.0)
    score_threshold: float | None = Field(None, ge=0.0, le=1.0)


class QueryResult(BaseModel):
    """Single query result."""

    id: str
    content: str
    score: float
    metadata: dict


class QueryResponse(BaseModel):
    """RAG query response."""

    query: str
    status: str
    results: list[QueryResult]
    context: str
    error: str | None = None


@router.post("/query", response_model=QueryResponse)
async def query(request: QueryRequest, context: Context, rate_limit: QueryRateLimit):
    """Retrieve the chunks most relevant to a query.

    Failures degrade to an empty result with status "no_relevant_context".
    """
    result = await context.retriever.retrieve(
        request.query,
        k=request.k,
        content_weight=request.content_weight,
        meta_weight=request.meta_weight,
        score_threshold=request.score_threshold,
    )
    return QueryResponse(
        query=result.query,
        status=result.status,
        results=[
            QueryResult(id=h.id, content=h.content, score=h.score, metadata=h.metadata)
            for h in result.hits
        ],
        context=Retriever.format_context(result.hits),
        error=result.error,
    )


class AskRequest(BaseModel):
    """Question answering request. Unset fields use the runtime settings."""

    question: str = Field(..., min_length=1, max_length=10000)
    k: int | None = Field(None, ge=1, le=100)
    score_threshold: float | None = Field(None, ge=0.0, le=1.0)


class AskResponse(BaseModel):
    """Generated answer with its sources."""

    question: str
    answer: str
    status: str
    has_context: bool
    notice: str | None = None
    sources: list[QueryResult]
    model: str
    latency_ms: float
    retrieval_error: str | None = None


@router.post("/ask", response_model=AskResponse)
async def ask(request: AskRequest, context: Context, rate_limit: QueryRateLimit):
    """Answer a question from the library's documents.

    When no relevant context is found the model answers without sources,
    and the response says so through `status` and `notice`.
    """
    try:
        answer = await context.answerer.answer(
            request.question, k=request.k, score_threshold=request.score_threshold
        )
    except AnswerGenerationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return AskResponse(
        question=answer.question,
        answer=answer.answer,
        status=answer.status,
        has_context=answer.has_context,
        notice=answer.notice,
        sources=[
            QueryResult(id=h.id, content=h.content, score=h.score, metadata=h.metadata)
            for h in answer.sources
        ],
        model=answer.model,
        latency_ms=answer.latency_ms,
        retrieval_error=answer.retrieval_error,
    )
