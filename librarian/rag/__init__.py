"""RAG (Retrieval-Augmented Generation) package.

Components:
- Hashing: raw and normalized-text content hashes
- Extractor: Text extraction from PDF, DOCX, DOC, TXT, MD
- Chunker: Token-window chunking with overlap
- Enricher: LLM-derived document metadata
- Embedder: OpenAI embedding service
- VectorStore: Qdrant client for vector operations
- Retriever: Hybrid semantic search
- AnswerGenerator: Question answering over retrieved context
- IngestionService: Upload boundary
- SyncOrchestrator: Document ingestion pipeline
"""

from librarian.rag.chunking import Chunk, TokenWindowChunker
from librarian.rag.hashing import hash_bytes, hash_text, normalize_text
from librarian.rag.extractors import DocumentExtractor, DocumentKind, ExtractionError
from librarian.rag.embedder import Embedder, EmbeddingErrorKind, EmbeddingProviderError
from librarian.rag.enrichment import MetadataEnricher
from librarian.rag.vector_store import VectorPoint, VectorStore, VectorStoreError
from librarian.rag.retriever import MergedHit, RetrievalResult, Retriever, merge_results
from librarian.rag.answerer import Answer, AnswerGenerationError, AnswerGenerator
from librarian.rag.storage import FileStorage
from librarian.rag.ingestion import Accepted, Duplicate, IngestionService, Rejected, UploadResult
from librarian.rag.sync import SyncOrchestrator, SyncOutcome, SyncReport

__all__ = [
    "Accepted",
    "Answer",
    "AnswerGenerationError",
    "AnswerGenerator",
    "Chunk",
    "DocumentExtractor",
    "DocumentKind",
    "Duplicate",
    "Embedder",
    "EmbeddingErrorKind",
    "EmbeddingProviderError",
    "ExtractionError",
    "FileStorage",
    "IngestionService",
    "MergedHit",
    "MetadataEnricher",
    "Rejected",
    "RetrievalResult",
    "Retriever",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncReport",
    "TokenWindowChunker",
    "UploadResult",
    "VectorPoint",
    "VectorStore",
    "VectorStoreError",
    "hash_bytes",
    "hash_text",
    "merge_results",
    "normalize_text",
]
