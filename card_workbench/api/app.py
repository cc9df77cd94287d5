"""FastAPI application and routes."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional, List
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from card_workbench import __version__
from card_workbench.config import ConfigLoader, ConfigLoadError, SystemConfig
from card_workbench.services.character_cards import (
    EncodeError,
    FormatError,
    WorkGroup,
    count_card_words,
    generate_work_groups,
    parse_card_bytes,
    parse_json_card,
    should_segment,
)
from card_workbench.services.workbench_service import (
    SessionNotFoundError,
    SessionStore,
    TaskNotFoundError,
    WorkbenchSession,
)

logger = logging.getLogger(__name__)


# Global state
app_state = {
    "system_config": SystemConfig(),
    "sessions": SessionStore(),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting Card Workbench...")

    try:
        system_config = ConfigLoader().load_system_config()
    except ConfigLoadError as e:
        logger.error(f"Could not load system config, using defaults: {e}")
        system_config = SystemConfig()

    app_state["system_config"] = system_config
    app_state["sessions"] = SessionStore(system_config)
    logger.info(
        f"✓ Segmentation thresholds: {system_config.segmentation.word_threshold} chars, "
        f"{system_config.segmentation.world_book_threshold} entries, "
        f"{system_config.segmentation.alternate_greetings_threshold} greetings"
    )

    yield

    logger.info(f"Shutting down Card Workbench ({len(app_state['sessions'])} open session(s))")


# Create FastAPI app
app = FastAPI(
    title="Card Workbench",
    description="Character card segmentation and backfill service",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    sessions_open: int


class BackfillRequest(BaseModel):
    """Edited text for one work unit."""
    result: str


class GroupsResponse(BaseModel):
    """Segmentation of a card."""
    word_count: int
    is_segmented: bool
    groups: List[WorkGroup]


def _get_session(session_id: str) -> WorkbenchSession:
    try:
        return app_state["sessions"].get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_").replace('"', "_")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


# Routes

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Check system health."""
    return HealthResponse(
        status="ok",
        version=__version__,
        sessions_open=len(app_state["sessions"]),
    )


@app.post("/sessions")
async def create_session(file: UploadFile = File(...)):
    """
    Upload a PNG or JSON card and open an editing session for it.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    try:
        parsed = parse_card_bytes(content, file.filename or "")
    except FormatError as e:
        logger.warning(f"Rejected upload '{file.filename}': {e}")
        raise HTTPException(status_code=400, detail=str(e))

    session = app_state["sessions"].create(parsed)
    return session.summary()


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Session overview plus the current card."""
    session = _get_session(session_id)
    summary = session.summary()
    summary["card"] = session.card.model_dump(mode='json')
    return summary


@app.get("/sessions/{session_id}/groups", response_model=GroupsResponse)
async def get_session_groups(session_id: str):
    """Work groups of a session with their completion state."""
    session = _get_session(session_id)
    return GroupsResponse(
        word_count=session.word_count,
        is_segmented=session.is_segmented,
        groups=session.groups,
    )


@app.get("/sessions/{session_id}/tasks/{task_id}/prompt")
async def get_task_prompt(session_id: str, task_id: str, target: Optional[str] = Query(None)):
    """Instruction-wrapped content of one unit, ready to paste into an editor."""
    session = _get_session(session_id)
    try:
        prompt = session.prompt_for(task_id, target)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"task_id": task_id, "target": target or session.config.prompts.default_target, "prompt": prompt}


@app.post("/sessions/{session_id}/tasks/{task_id}/backfill")
async def backfill_task(session_id: str, task_id: str, request: BackfillRequest):
    """Merge an edited result into the session's card."""
    session = _get_session(session_id)
    try:
        card = session.complete_task(task_id, request.result)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "task_id": task_id,
        "completed_tasks": sum(1 for t in session.tasks if t.completed),
        "task_count": len(session.tasks),
        "can_undo": session.can_undo,
        "card": card.model_dump(mode='json'),
    }


@app.post("/sessions/{session_id}/undo")
async def undo_backfill(session_id: str):
    """Revert the last backfill."""
    session = _get_session(session_id)
    if not session.undo():
        raise HTTPException(status_code=409, detail="Nothing to undo")
    return {"can_undo": session.can_undo, "card": session.card.model_dump(mode='json')}


@app.post("/sessions/{session_id}/regenerate", response_model=GroupsResponse)
async def regenerate_groups(session_id: str):
    """Re-split the current card into fresh work groups."""
    session = _get_session(session_id)
    groups = session.regenerate_groups()
    return GroupsResponse(word_count=session.word_count, is_segmented=session.is_segmented, groups=groups)


@app.get("/sessions/{session_id}/export")
async def export_session(session_id: str, preserve_text_chunks: Optional[bool] = Query(None)):
    """Download the edited card in its source format."""
    session = _get_session(session_id)
    try:
        exported = session.export(preserve_text_chunks=preserve_text_chunks)
    except FormatError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EncodeError as e:
        logger.error(f"Failed to export session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to export card: {e}")

    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": _content_disposition(exported.filename)},
    )


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Close a session."""
    try:
        app_state["sessions"].delete(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted", "session_id": session_id}


@app.post("/cards/groups", response_model=GroupsResponse)
async def card_groups(request: dict):
    """Segment a card posted as JSON without opening a session."""
    try:
        card = parse_json_card(json.dumps(request, ensure_ascii=False))
    except FormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    config = app_state["system_config"].segmentation
    return GroupsResponse(
        word_count=count_card_words(card),
        is_segmented=should_segment(card, config),
        groups=generate_work_groups(card, config),
    )
