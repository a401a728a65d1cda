from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from queue import Empty
from typing import Annotated

import anyio
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from translationmatcher.db import _connect, clear_matches, init_db, list_candidates, list_matches
from translationmatcher.errors import ManifestReadError
from translationmatcher.pipeline.manifest import read_manifest, suggest_filename_column
from translationmatcher.pipeline.orchestrator import PipelineOrchestrator
from translationmatcher.schemas import (
    CandidateResult,
    ManifestReadRequest,
    ManifestReadResponse,
    ManifestSheetInfo,
    MatchResult,
    PipelineConfig,
    PipelineStatusResponse,
    StartResponse,
)
from translationmatcher.settings import settings

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

_orchestrator: PipelineOrchestrator | None = None


def get_orchestrator() -> PipelineOrchestrator:
    """Process-wide orchestrator; only one pipeline run may be active."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator(settings)
    return _orchestrator


OrchestratorDep = Annotated[PipelineOrchestrator, Depends(get_orchestrator)]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        logger.info("Starting Translation Matcher API...")
        settings.resolved_data_dir.mkdir(parents=True, exist_ok=True)
        init_db(settings.db_path)
        logger.info("Database initialized at %s", settings.db_path)
    except Exception as e:
        logger.error("FATAL: Startup failed: %s", e, exc_info=True)
        raise

    yield

    logger.info("Shutting down Translation Matcher API...")
    if _orchestrator is not None:
        _orchestrator.stop()
        _orchestrator.log_stream.close()


app = FastAPI(title="Translation matcher", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded. Try again later."})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
@limiter.limit("60/minute")
def health_check(request: Request, orchestrator: OrchestratorDep) -> dict:
    """Returns 200 if the database answers, 503 otherwise."""
    try:
        with _connect(orchestrator.db_path) as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error:
        return JSONResponse(status_code=503, content={"status": "degraded", "db": "unavailable"})
    return {"status": "healthy", "db": "ok"}


@app.get("/api/stream")
async def api_stream(orchestrator: OrchestratorDep) -> StreamingResponse:
    """
    Server-Sent Events stream of pipeline log lines.

    Only events published after the connection opens are delivered.
    """
    stream = orchestrator.log_stream
    queue = stream.subscribe()

    async def event_stream():
        try:
            while True:
                # Poll with a small timeout so a client disconnect is noticed
                try:
                    event = await anyio.to_thread.run_sync(lambda: queue.get(timeout=0.1))
                except Empty:
                    continue

                if event is None:
                    break

                yield event.to_sse()
        finally:
            stream.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/api/pipeline/start")
@limiter.limit("10/minute")
def api_start(request: Request, config: PipelineConfig, orchestrator: OrchestratorDep) -> StartResponse:
    if not orchestrator.start_background(config):
        raise HTTPException(status_code=409, detail="Pipeline is already running")
    return StartResponse(success=True, state=orchestrator.state.value)


@app.post("/api/pipeline/stop")
def api_stop(orchestrator: OrchestratorDep) -> PipelineStatusResponse:
    orchestrator.stop()
    return api_status(orchestrator)


@app.get("/api/pipeline/status")
def api_status(orchestrator: OrchestratorDep) -> PipelineStatusResponse:
    status = orchestrator.status()
    return PipelineStatusResponse(
        is_running=status.is_running,
        stop_requested=status.stop_requested,
        state=status.state.value,
        last_error=status.last_error,
    )


@app.get("/api/results")
def api_results(orchestrator: OrchestratorDep, min_confidence: float = 0.0) -> list[MatchResult]:
    out: list[MatchResult] = []
    for m in list_matches(orchestrator.db_path, min_confidence=min_confidence):
        evidence = m.evidence
        out.append(
            MatchResult(
                id=m.id,
                article_ref=m.article_ref,
                document_ref=m.document_ref,
                source_filename=evidence.get("source_document"),
                match_type=m.match_type,
                confidence=m.confidence,
                article_title=evidence.get("article_title"),
                reason=evidence.get("reason"),
                matching_snippets=evidence.get("matching_snippets") or [],
                evidence=evidence,
                citation=m.citation,
                created_at_utc=m.created_at_utc,
            )
        )
    return out


@app.delete("/api/results")
def api_clear_results(orchestrator: OrchestratorDep) -> dict[str, int]:
    if orchestrator.status().is_running:
        raise HTTPException(status_code=409, detail="Pipeline is running")
    return {"deleted": clear_matches(orchestrator.db_path)}


@app.get("/api/candidates")
def api_candidates(orchestrator: OrchestratorDep) -> list[CandidateResult]:
    out: list[CandidateResult] = []
    for c in list_candidates(orchestrator.db_path):
        raw = c.raw_response or {}
        out.append(
            CandidateResult(
                id=c.id,
                article_ref=c.article_ref,
                document_ref=c.document_ref,
                reason=c.reason,
                confidence=c.confidence,
                match_count=raw.get("match_count"),
            )
        )
    return out


@app.post("/api/manifest/read")
def api_read_manifest(req: ManifestReadRequest) -> ManifestReadResponse:
    """List sheets and columns so the UI can pick each sheet's filename column."""
    try:
        manifest = read_manifest(Path(req.path).expanduser())
    except ManifestReadError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ManifestReadResponse(
        path=str(manifest.path),
        sheets=[
            ManifestSheetInfo(
                name=s.name,
                columns=s.columns,
                row_count=len(s.rows),
                suggested_filename_column=suggest_filename_column(s.columns),
            )
            for s in manifest.sheets
        ],
    )
