# ============================================================================
# api/main.py
# ============================================================================
"""
FastAPI Backend for the Notarial Intake Engine

Accepts upload batches per intake session and serves the resulting case
record, wizard snapshot and per-document status.
"""

import sys
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from contextlib import asynccontextmanager

from notarial_intake.adapters import HttpUploadAdapter
from notarial_intake.cache import CacheCheckClient, FingerprintStore
from notarial_intake.config import base_settings, logging_settings
from notarial_intake.core import IntakePipeline, SessionStore, get_config
from notarial_intake.extractors import ExtractionClient, SourceFile
from notarial_intake.utils.logging import setup_logging

# One pipeline per live session; records survive restarts through the store
sessions: Dict[str, IntakePipeline] = {}

# Shared collaborators, created at startup unless already provided
services: Dict[str, Any] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create the shared service clients."""
    setup_logging(
        level=logging_settings.LOG_LEVEL,
        log_file=logging_settings.LOG_FILE,
        format_json=logging_settings.LOG_JSON,
    )
    base_settings.create_directories()
    config = get_config()

    if "extraction_client" not in services:
        services["extraction_client"] = ExtractionClient(config)
    if "cache_check" not in services:
        services["cache_check"] = CacheCheckClient(config)
    if "uploader" not in services:
        services["uploader"] = HttpUploadAdapter(config)
    if "session_store" not in services:
        services["session_store"] = SessionStore(base_settings.SESSION_DB_PATH)
    if "store" not in services:
        services["store"] = FingerprintStore(
            max_size=config['cache_max_size'],
            default_ttl=config['cache_ttl'],
            cache_dir=base_settings.CACHE_DIR if config['cache_persist'] else None,
        )
    logger.info("Intake services ready")

    yield

    store = services.get("store")
    if store is not None:
        store.cleanup_expired()
        if store.cache_dir:
            store.save()
    for name in ("extraction_client", "cache_check", "uploader"):
        client = services.get(name)
        if client is not None and hasattr(client, "close"):
            await client.close()


app = FastAPI(
    title="Notarial Intake Engine API",
    description="Document intake and case record fusion for notarial cases",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_pipeline(session_id: str, case_id: Optional[str] = None) -> IntakePipeline:
    """Return the live pipeline of a session, resuming it from the store if needed."""
    pipeline = sessions.get(session_id)
    if pipeline is not None:
        if case_id and not pipeline.case_id:
            pipeline.case_id = case_id
        return pipeline

    pipeline = IntakePipeline.resume(
        session_id,
        services["extraction_client"],
        services["session_store"],
        case_id=case_id,
        store=services.get("store"),
        cache_check=services.get("cache_check"),
        uploader=services.get("uploader"),
    )
    sessions[session_id] = pipeline
    return pipeline


def _require_pipeline(session_id: str) -> IntakePipeline:
    pipeline = sessions.get(session_id)
    if pipeline is not None:
        return pipeline
    if services["session_store"].load(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _get_pipeline(session_id)


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/api/health")
async def health():
    """Health check for monitoring."""
    return {"status": "healthy", "active_sessions": len(sessions)}


@app.post("/api/sessions/{session_id}/documents")
async def upload_documents(
    session_id: str,
    files: List[UploadFile] = File(...),
    user_text: str = Form(""),
    last_question: Optional[str] = Form(None),
    force_reprocess: bool = Form(False),
    case_id: Optional[str] = Form(None),
):
    """
    Process one upload batch for a session.

    Returns:
        Batch result, including the per-document status of this batch
    """
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required")

    sources = []
    for upload in files:
        content = await upload.read()
        if not content:
            raise HTTPException(status_code=400, detail=f"File {upload.filename} is empty")
        sources.append(SourceFile(
            name=upload.filename or "upload",
            content=content,
            mime_type=upload.content_type if upload.content_type != "application/octet-stream" else None,
        ))

    pipeline = _get_pipeline(session_id, case_id)
    result = await pipeline.process_batch(
        sources,
        user_text=user_text,
        last_question=last_question,
        force_reprocess=force_reprocess,
    )
    return result.to_dict()


@app.post("/api/sessions/{session_id}/cancel")
async def cancel_batch(session_id: str):
    """Cancel the batch currently running for a session."""
    pipeline = sessions.get(session_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session_id": session_id, "cancelled": pipeline.cancel()}


@app.get("/api/sessions/{session_id}/record")
async def get_record(session_id: str):
    """Current canonical case record of a session."""
    pipeline = _require_pipeline(session_id)
    return pipeline.engine.snapshot()


@app.get("/api/sessions/{session_id}/wizard")
async def get_wizard(session_id: str):
    """Current wizard snapshot of a session."""
    pipeline = _require_pipeline(session_id)
    return pipeline.wizard_snapshot.to_dict()


@app.get("/api/sessions/{session_id}/documents")
async def list_documents(session_id: str):
    """Processing status of every document uploaded in this session."""
    pipeline = _require_pipeline(session_id)
    return {
        "session_id": session_id,
        "documents": [d.to_dict() for d in pipeline.documents],
        "progress": dict(pipeline.progress),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
