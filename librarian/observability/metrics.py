"""Prometheus metrics for the ingestion and retrieval pipeline.

Exposed on `/metrics` by the API application.
"""

from prometheus_client import Counter, Histogram

# Sync
DOCUMENTS_SYNCED = Counter(
    "librarian_documents_synced_total",
    "Documents processed by the sync orchestrator",
    ["outcome"],  # embedded, duplicate, failed
)

SYNC_DURATION = Histogram(
    "librarian_document_sync_seconds",
    "Per-document processing time in seconds",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

CHUNKS_UPSERTED = Counter(
    "librarian_chunks_upserted_total",
    "Chunks written to the vector store",
)

# Embeddings
EMBEDDING_REQUESTS = Counter(
    "librarian_embedding_requests_total",
    "Requests sent to the embedding provider",
)

EMBEDDED_TEXTS = Counter(
    "librarian_embedded_texts_total",
    "Texts sent to the embedding provider",
)

EMBEDDING_CACHE_HITS = Counter(
    "librarian_embedding_cache_hits_total",
    "Embeddings served from the in-process cache",
)

EMBEDDING_ERRORS = Counter(
    "librarian_embedding_errors_total",
    "Failed embedding requests",
    ["kind"],
)

# Enrichment
ENRICHMENT_RESULTS = Counter(
    "librarian_enrichment_total",
    "Metadata enrichment attempts",
    ["result"],  # ok, empty
)

# Uploads and rate limiting
UPLOADS = Counter(
    "librarian_uploads_total",
    "Upload attempts",
    ["result"],  # accepted, duplicate, rejected
)

RATE_LIMIT_REJECTIONS = Counter(
    "librarian_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["route"],
)

# Retrieval
RETRIEVALS = Counter(
    "librarian_retrievals_total",
    "Retrieval requests",
    ["status"],  # ok, no_relevant_context
)

RETRIEVAL_LATENCY = Histogram(
    "librarian_retrieval_seconds",
    "Retrieval latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# Answers
ANSWERS = Counter(
    "librarian_answers_total",
    "Generated answers",
    ["status"],  # ok, no_relevant_context, failed
)
