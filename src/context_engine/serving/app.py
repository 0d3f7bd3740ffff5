"""FastAPI application exposing the context engine as a REST API.

The engine is provided by the :func:`get_engine` dependency.  By default it
is built from the global settings (HuggingFace embeddings + Chroma);
tests and embedding applications override it with
``app.dependency_overrides[get_engine] = ...``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from context_engine.engine import ContextEngine, ContextEngineConfig
from context_engine.errors import ConfigurationError, IngestError
from context_engine.models import DeleteInput, IngestInput, IngestResult, RetrieveInput, RetrieveResult

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Context Engine API",
    version="0.1.0",
    description="REST interface to ingest, retrieve and delete document chunks.",
)


@lru_cache(maxsize=1)
def get_engine() -> ContextEngine:
    """Build the default engine once per process."""
    from context_engine.embedding.huggingface import HuggingFaceEmbeddingProvider
    from context_engine.retrieval.chroma_store import ChromaVectorStore

    return ContextEngine(
        ContextEngineConfig(embedding=HuggingFaceEmbeddingProvider(), store=ChromaVectorStore())
    )


# ── Error mapping ─────────────────────────────────────────────────────
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
    logger.warning("Ingest aborted: %s", exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "warning": exc.warning.model_dump(mode="json")},
    )


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/ingest", response_model=IngestResult)
async def ingest(request: IngestInput, engine: ContextEngine = Depends(get_engine)) -> IngestResult:
    """Chunk, embed and store a document (replaces prior chunks of its source)."""
    return await engine.ingest(request)


@app.post("/retrieve", response_model=RetrieveResult)
async def retrieve(request: RetrieveInput, engine: ContextEngine = Depends(get_engine)) -> RetrieveResult:
    """Semantic search over stored chunks."""
    return await engine.retrieve(request)


@app.post("/delete")
async def delete(request: DeleteInput, engine: ContextEngine = Depends(get_engine)) -> dict[str, str]:
    """Delete by exact ``source_id`` or ``source_id_prefix``."""
    await engine.delete(request)
    return {"status": "deleted"}
