"""Sync and library administration endpoints."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from librarian.api.deps import Context
from librarian.core.runtime_settings import load_runtime_settings
from librarian.db.models import DocumentStatus

router = APIRouter()


class SyncDetailResponse(BaseModel):
    document_id: str
    filename: str | None
    outcome: str
    chunk_count: int
    canonical_document_id: str | None
    error: str | None
    processing_time_ms: int


class SyncResponse(BaseModel):
    """Summary of a sync run."""

    processed: int
    skipped_duplicates: int
    failed: int
    details: list[SyncDetailResponse]


class SyncStatsResponse(BaseModel):
    by_status: dict[str, int]
    total: int
    unique_texts: int
    sync_needed: bool


class ResetRequest(BaseModel):
    """Which documents to send back to the queue."""

    statuses: list[DocumentStatus] = Field(default_factory=lambda: [DocumentStatus.FAILED])


class ResetResponse(BaseModel):
    reset: int


@router.post("/sync", response_model=SyncResponse)
async def run_sync(
    context: Context,
    limit: int | None = None,
):
    """Process all pending documents now."""
    report = await context.sync.run(limit=limit)
    return SyncResponse(
        processed=report.processed,
        skipped_duplicates=report.skipped_duplicates,
        failed=report.failed,
        details=[
            SyncDetailResponse(
                document_id=d.document_id,
                filename=d.filename,
                outcome=d.outcome.value,
                chunk_count=d.chunk_count,
                canonical_document_id=d.canonical_document_id,
                error=d.error,
                processing_time_ms=d.processing_time_ms,
            )
            for d in report.details
        ],
    )


@router.get("/sync", response_model=SyncStatsResponse)
async def sync_stats(context: Context):
    """Document counts per status."""
    return SyncStatsResponse(**(await context.sync.stats()))


@router.post("/sync/reset", response_model=ResetResponse)
async def reset_documents(context: Context, request: ResetRequest | None = None):
    """Return failed (or otherwise stuck) documents to the pending queue."""
    statuses = (request or ResetRequest()).statuses
    if DocumentStatus.UPLOADED in statuses:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Documents in 'uploaded' status are already pending",
        )
    return ResetResponse(reset=await context.sync.reset(statuses))


@router.get("/vector-store")
async def vector_store_info(context: Context):
    """Collection statistics."""
    info = await context.vector_store.get_collection_info()
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Collection does not exist")
    return info


@router.post("/vector-store/recreate")
async def recreate_vector_store(context: Context):
    """Drop and recreate the collection with the current vector layout.

    Every embedded document must be reset and synced again afterwards.
    """
    runtime = await load_runtime_settings(context.settings_provider)
    await context.vector_store.create_collection(
        multi_vector=runtime.multivector_enabled,
        recreate=True,
    )
    return {"recreated": True, "multi_vector": runtime.multivector_enabled}
