"""Document upload and listing endpoints."""

from fastapi import APIRouter, File, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel

from librarian.api.deps import Context, DocumentRepo, UploadRateLimit
from librarian.db.models import Document, DocumentStatus
from librarian.rag.ingestion import Duplicate, Rejected

router = APIRouter()


# ============================================
# Request/Response Models
# ============================================


class UploadResponse(BaseModel):
    """Result of an upload."""

    status: str  # accepted, duplicate
    document_id: str
    message: str


class DocumentResponse(BaseModel):
    """Document metadata."""

    id: str
    filename: str
    media_type: str | None
    kind: str
    file_size: int
    status: str
    error_message: str | None
    canonical_document_id: str | None
    created_at: str | None
    processed_at: str | None

    @classmethod
    def from_model(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            filename=document.filename,
            media_type=document.media_type,
            kind=document.kind,
            file_size=document.file_size,
            status=DocumentStatus(document.status).value,
            error_message=document.error_message,
            canonical_document_id=document.canonical_document_id,
            created_at=document.created_at.isoformat() if document.created_at else None,
            processed_at=document.processed_at.isoformat() if document.processed_at else None,
        )


# ============================================
# Endpoints
# ============================================


@router.post(
    "/documents",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_document(
    response: Response,
    context: Context,
    rate_limit: UploadRateLimit,
    file: UploadFile = File(...),
):
    """Upload an original document.

    The file is stored and queued; text extraction and embedding happen on
    the next sync run. Uploading identical bytes again returns the existing
    document with status 200.
    """
    data = await file.read()
    result = await context.ingestion.upload(
        data,
        filename=file.filename or "unknown",
        media_type=file.content_type,
    )
    response.headers["X-RateLimit-Remaining"] = str(rate_limit.remaining)

    if isinstance(result, Rejected):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.reason)

    if isinstance(result, Duplicate):
        response.status_code = status.HTTP_200_OK
        return UploadResponse(
            status="duplicate",
            document_id=result.existing_id,
            message="This file has already been uploaded",
        )

    return UploadResponse(
        status="accepted",
        document_id=result.document_id,
        message="File stored, it will be processed on the next sync",
    )


@router.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    repo: DocumentRepo,
    status_filter: DocumentStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List documents, newest first, optionally filtered by status."""
    documents = await repo.list_documents(status=status_filter, limit=limit, offset=offset)
    return [DocumentResponse.from_model(d) for d in documents]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: str, repo: DocumentRepo):
    """Get a single document."""
    document = await repo.get(document_id)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return DocumentResponse.from_model(document)
