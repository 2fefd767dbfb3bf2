from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional, Type

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from notememory.config import EmbeddingConfig, settings
from notememory.errors import ConfigError, RetrievalError
from notememory.retrieval.chunking import ChunkConfig
from notememory.retrieval.embedder import EmbeddingClient
from notememory.retrieval.memory import NoteMemory
from notememory.retrieval.reindex import reindex_notes
from notememory.schemas import (
    ClearResponse,
    IndexNoteResponse,
    NoteIn,
    ReindexRequest,
    ReindexResponse,
    RemoveNoteResponse,
    SearchRequest,
    SearchResponse,
)
from notememory.utils.logging import setup_logging


log = setup_logging(settings.LOG_LEVEL)


def build_memory() -> NoteMemory:
    config = EmbeddingConfig.from_settings(settings)
    client = EmbeddingClient(
        config,
        timeout_s=settings.EMBED_TIMEOUT_S,
        retries=settings.EMBED_RETRIES,
    )
    return NoteMemory(
        settings.MEMORY_DB_PATH,
        client,
        model=client.config.model,
        max_note_chars=settings.MAX_NOTE_CHARS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.memory = None
    app.state.memory_error = None
    try:
        memory = build_memory()
        await memory.open()
        app.state.memory = memory
    except (ConfigError, RetrievalError) as e:
        # the service stays up; every retrieval call reports the reason
        app.state.memory_error = f"{type(e).__name__}: {e}"
        log.error("STARTUP semantic memory unavailable | err=%s", app.state.memory_error)

    yield

    memory = app.state.memory
    if memory is not None:
        await memory.close()
        close = getattr(memory.embedder, "aclose", None)
        if close is not None:
            await close()


app = FastAPI(title="Note Memory Service", version="1.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "request_id": str(uuid.uuid4()),
            "error": f"invalid request: {exc.errors()}",
        },
    )


def _memory(request: Request) -> NoteMemory:
    memory = getattr(request.app.state, "memory", None)
    if memory is None:
        reason = getattr(request.app.state, "memory_error", None) or "not initialized"
        raise RetrievalError(f"semantic memory is unavailable ({reason})")
    return memory


def _status_for(e: Exception) -> int:
    if isinstance(e, (RetrievalError, ConfigError)):
        return 503
    if isinstance(e, ValueError):
        return 422
    return 500


def _failure(
    e: Exception,
    op: str,
    request_id: str,
    t0: float,
    model: Type[BaseModel],
    **fields,
) -> JSONResponse:
    status = _status_for(e)
    latency_ms = int((time.perf_counter() - t0) * 1000)
    err = f"{type(e).__name__}: {e}"

    if status == 500:
        log.exception(
            "RES %s | request_id=%s | status=error | latency_ms=%s | err=%s",
            op, request_id, latency_ms, err,
        )
    else:
        log.warning(
            "RES %s | request_id=%s | status=%s | latency_ms=%s | err=%s",
            op, request_id, status, latency_ms, err,
        )

    return JSONResponse(
        status_code=status,
        content=model(ok=False, error=err, request_id=request_id, **fields).model_dump(),
    )


@app.put("/notes/{note_id}", response_model=IndexNoteResponse)
async def index_note(note_id: str, body: NoteIn, request: Request):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    log.info("REQ index | request_id=%s | note_id=%s | chars=%s", request_id, note_id, len(body.content))

    try:
        doc = await _memory(request).index_note(note_id, body.content, body.metadata)
    except Exception as e:
        return _failure(e, "index", request_id, t0, IndexNoteResponse, note_id=note_id)

    res = IndexNoteResponse(
        ok=True,
        note_id=doc.id,
        chars=len(doc.content),
        latency_ms=int((time.perf_counter() - t0) * 1000),
        request_id=request_id,
    )
    return JSONResponse(status_code=200, content=res.model_dump())


@app.delete("/notes/{note_id}", response_model=RemoveNoteResponse)
async def remove_note(note_id: str, request: Request):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    log.info("REQ remove | request_id=%s | note_id=%s", request_id, note_id)

    try:
        removed = await _memory(request).remove_note(note_id)
    except Exception as e:
        return _failure(e, "remove", request_id, t0, RemoveNoteResponse, note_id=note_id)

    res = RemoveNoteResponse(ok=True, note_id=note_id, removed=removed, request_id=request_id)
    return JSONResponse(status_code=200, content=res.model_dump())


@app.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest, request: Request):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    q = (req.query or "").strip()
    limit = req.limit or settings.SEARCH_LIMIT
    min_score = req.min_score if req.min_score is not None else settings.MIN_SIMILARITY
    log.info("REQ search | request_id=%s | q_len=%s | limit=%s", request_id, len(q), limit)

    try:
        hits = await _memory(request).search(q, limit, min_score=min_score)
    except Exception as e:
        return _failure(e, "search", request_id, t0, SearchResponse)

    res = SearchResponse(
        ok=True,
        hits=hits,
        latency_ms=int((time.perf_counter() - t0) * 1000),
        request_id=request_id,
    )
    return JSONResponse(status_code=200, content=res.model_dump())


@app.post("/clear", response_model=ClearResponse)
async def clear(request: Request):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    log.info("REQ clear | request_id=%s", request_id)

    try:
        dropped = await _memory(request).clear_all()
    except Exception as e:
        return _failure(e, "clear", request_id, t0, ClearResponse)

    return JSONResponse(
        status_code=200,
        content=ClearResponse(ok=True, dropped=dropped, request_id=request_id).model_dump(),
    )


@app.post("/reindex", response_model=ReindexResponse)
async def reindex(req: ReindexRequest, request: Request):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()
    log.info("REQ reindex | request_id=%s | notes=%s", request_id, len(req.notes))

    try:
        memory = _memory(request)
        stats = await reindex_notes(
            memory,
            [(n.id, n.content, n.metadata) for n in req.notes],
            chunk_config=ChunkConfig.from_embedding_config(EmbeddingConfig.from_settings(settings)),
        )
    except Exception as e:
        return _failure(e, "reindex", request_id, t0, ReindexResponse)

    res = ReindexResponse(
        ok=not stats.errors,
        total_notes=stats.total_notes,
        indexed_notes=stats.indexed_notes,
        skipped_notes=stats.skipped_notes,
        total_chunks=stats.total_chunks,
        total_tokens=stats.total_tokens,
        success_rate=round(stats.success_rate(), 2),
        errors=stats.errors,
        latency_ms=int((time.perf_counter() - t0) * 1000),
        request_id=request_id,
    )
    return JSONResponse(status_code=200, content=res.model_dump())


@app.get("/")
async def root(request: Request):
    memory: Optional[NoteMemory] = getattr(request.app.state, "memory", None)
    if memory is None:
        return {"ok": False, "notes": None}
    return {"ok": True, "notes": await memory.count()}
