"""Main entry point for the help-center retrieval API."""
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import (
    PORT,
    DOCS_DIR,
    DOCS_BASE_URL,
    ADMIN_KEY,
    LOG_LEVEL,
    LOG_FORMAT,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_MS,
    RATE_LIMIT_PRUNE_INTERVAL_S,
)
from logger import setup_logging
from models.api import (
    RetrieveRequest,
    RetrieveResponse,
    PassageOut,
    SyncResponse,
    SyncAllResponse,
    ReindexResponse,
)
from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingModel, EmbeddingError
from services.snapshot_store import SnapshotStore, IndexNotFoundError
from services.help_api_client import HelpApiClient, SourceFetchError
from services.markdown_crawler import MarkdownCrawler, CrawlError
from services.sync_engine import SyncEngine
from services.index_builder import IndexBuilder, IndexBuildError
from services.vector_store import IndexCache
from services.retrieval_engine import RetrievalEngine
from services.rate_limiter import RateLimiter, client_identifier

# Initialize logging
logger = logging.getLogger(__name__)

# Services (populated on startup)
sync_engine: SyncEngine = None
index_builder: IndexBuilder = None
index_cache: IndexCache = None
retrieval_engine: RetrievalEngine = None
rate_limiter: RateLimiter = None


def init_services() -> None:
    """Build the service graph from configuration."""
    global sync_engine, index_builder, index_cache, retrieval_engine, rate_limiter

    store = SnapshotStore(DOCS_DIR)
    embedding_model = EmbeddingModel()
    index_cache = IndexCache(store)

    crawler = MarkdownCrawler(DOCS_BASE_URL) if DOCS_BASE_URL else None
    sync_engine = SyncEngine(store, help_client=HelpApiClient(), crawler=crawler)
    index_builder = IndexBuilder(store, ChunkingEngine(), embedding_model, index_cache=index_cache)
    retrieval_engine = RetrievalEngine(index_cache, embedding_model)
    rate_limiter = RateLimiter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup and stop background pruning on shutdown."""
    setup_logging(LOG_LEVEL, LOG_FORMAT)
    logger.info("Initializing retrieval services...")
    try:
        init_services()
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    rate_limiter.start_pruning(RATE_LIMIT_PRUNE_INTERVAL_S)
    logger.info("All services initialized successfully")
    try:
        yield
    finally:
        rate_limiter.stop_pruning()


app = FastAPI(
    title="Help Center Retrieval API",
    description="Hybrid passage retrieval over a synced help-center corpus",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Widget is embedded on third-party sites
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def require_admin(admin_key: Optional[str]) -> None:
    if not ADMIN_KEY or admin_key != ADMIN_KEY:
        raise HTTPException(status_code=401, detail="unauthorized")


def _rate_limit_headers(result) -> dict:
    return {
        "X-RateLimit-Limit": str(RATE_LIMIT_MAX_REQUESTS),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Help Center Retrieval API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "help-center-retrieval",
        "version": "1.0.0",
        "cached_partitions": index_cache.cached_partitions() if index_cache else [],
    }


@app.post("/retrieve", response_model=RetrieveResponse)
def retrieve_endpoint(request: RetrieveRequest, http_request: Request):
    """
    Retrieve ranked passages for a question.

    The caller is rate limited per IP + user-agent fingerprint. A partition
    that was never indexed answers 409 so the client can ask for a reindex.
    """
    start_time = time.time()

    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Query field is required and cannot be empty")

    identifier = client_identifier(
        http_request.headers,
        http_request.client.host if http_request.client else None,
        include_user_agent=True
    )
    limit = rate_limiter.check(identifier, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_MS)
    headers = _rate_limit_headers(limit)

    if not limit.allowed:
        retry_after = max(0, (limit.reset_at - int(time.time() * 1000) + 999) // 1000)
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too Many Requests",
                "message": f"Rate limit exceeded. Maximum {RATE_LIMIT_MAX_REQUESTS} requests per window.",
                "reset_at": limit.reset_at,
            },
            headers={**headers, "Retry-After": str(retry_after)}
        )

    try:
        passages = retrieval_engine.retrieve_text(request.query, request.partition, k=request.k)
    except IndexNotFoundError as e:
        logger.warning(str(e))
        return JSONResponse(
            status_code=409,
            content={"error": "Index not found", "message": str(e), "needs_reindex": True},
            headers=headers
        )
    except EmbeddingError as e:
        logger.error(f"Query embedding failed: {e}")
        raise HTTPException(status_code=502, detail=f"Embedding service error: {str(e)}")

    response = RetrieveResponse(
        partition=request.partition,
        passages=[PassageOut(**asdict(p)) for p in passages]
    )
    logger.info(
        f"Retrieved {len(passages)} passages from {request.partition} "
        f"in {int((time.time() - start_time) * 1000)}ms"
    )
    return JSONResponse(content=response.model_dump(), headers=headers)


@app.post("/admin/sync")
def sync_endpoint(partition: Optional[str] = None, x_admin_key: Optional[str] = Header(None)):
    """Sync one partition, or all partitions when none is given."""
    require_admin(x_admin_key)

    if partition is None:
        result = sync_engine.sync_all()
        return SyncAllResponse(
            ok=result.ok,
            results={name: SyncResponse(**asdict(r)) for name, r in result.results.items()},
            errors=result.errors
        )

    try:
        return SyncResponse(**asdict(sync_engine.sync(partition)))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (SourceFetchError, CrawlError) as e:
        logger.error(f"Sync failed for {partition}: {e}")
        raise HTTPException(status_code=502, detail=f"Sync failed: {str(e)}")


@app.post("/admin/reindex")
def reindex_endpoint(
    partition: Optional[str] = None,
    sync: bool = False,
    x_admin_key: Optional[str] = Header(None)
):
    """Rebuild the index of one or all partitions, optionally syncing first."""
    require_admin(x_admin_key)

    try:
        if partition is None:
            if sync:
                sync_engine.sync_all()
            result = index_builder.reindex_all()
            return {
                "ok": result.ok,
                "results": {name: ReindexResponse(**asdict(r)).model_dump() for name, r in result.results.items()},
                "errors": result.errors,
            }

        if sync:
            sync_engine.sync(partition)
        return ReindexResponse(**asdict(index_builder.reindex(partition)))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (SourceFetchError, CrawlError) as e:
        raise HTTPException(status_code=502, detail=f"Sync failed: {str(e)}")
    except IndexBuildError as e:
        logger.error(f"Reindex failed: {e}")
        raise HTTPException(status_code=500, detail=f"Reindex failed: {str(e)}")


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Help Center Retrieval API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
