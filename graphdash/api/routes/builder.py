"""Session-scoped builder endpoints backed by an ExecutionController."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, ValidationError

from graphdash.api.routes.query import invalid_model, invalid_token, not_representable
from graphdash.api.shared import BUILDER_SESSIONS, BuilderSession
from graphdash.graph.models import QueryRequest
from graphdash.querybuilder.codec import InvalidToken
from graphdash.querybuilder.decompiler import NotRepresentable
from graphdash.querybuilder.models import ModelValidationError
from graphdash.querybuilder.operations import parse_operation

log = logging.getLogger("graphdash.builder")

router = APIRouter(prefix="/builder", tags=["builder"])


class CreateSessionRequest(BaseModel):
    token: Optional[str] = None     # shared link state
    cypher: Optional[str] = None    # initial query handed over from the editor


class RestoreRequest(BaseModel):
    token: str
    from_link: bool = True


def _get(session_id: str) -> BuilderSession:
    session = BUILDER_SESSIONS.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Builder session not found")
    return session


@router.post("/sessions")
async def create_session(req: Optional[CreateSessionRequest] = Body(default=None)):
    """Open a builder session, optionally restored from a token or Cypher text."""
    req = req or CreateSessionRequest()
    session = BuilderSession()
    try:
        if req.token:
            session.controller.restore_from_token(req.token, from_link=True)
        elif req.cypher:
            session.controller.load_cypher(req.cypher, from_link=True)
    except InvalidToken as e:
        raise invalid_token(e)
    except NotRepresentable as e:
        raise not_representable(e)
    BUILDER_SESSIONS[session.id] = session
    log.info("Builder session %s opened", session.id)
    return session.state()


@router.get("/sessions")
async def list_builder_sessions():
    return [
        {"session_id": s.id, "created_at": s.created_at.isoformat(), "nodes": len(s.controller.model.nodes)}
        for s in BUILDER_SESSIONS.values()
    ]


@router.get("/sessions/{session_id}")
async def get_builder_session(session_id: str):
    return _get(session_id).state()


@router.delete("/sessions/{session_id}")
async def delete_builder_session(session_id: str):
    session = _get(session_id)
    session.close()
    del BUILDER_SESSIONS[session_id]
    return {"status": "deleted", "session_id": session_id}


@router.post("/sessions/{session_id}/mutate")
async def mutate_session(session_id: str, payload: dict = Body(...)):
    """Apply one builder operation (`{"op": "add_node", ...}`)."""
    session = _get(session_id)
    try:
        op = parse_operation(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    try:
        session.controller.mutate(op)
    except ModelValidationError as e:
        raise invalid_model(e)
    return session.state()


@router.post("/sessions/{session_id}/restore")
async def restore_session(session_id: str, req: RestoreRequest):
    """Replace the model from a token; an invalid token leaves it as it was."""
    session = _get(session_id)
    try:
        session.controller.restore_from_token(req.token, from_link=req.from_link)
    except InvalidToken as e:
        raise invalid_token(e)
    return session.state()


@router.post("/sessions/{session_id}/convert")
async def convert_session(session_id: str, req: QueryRequest):
    """Switch from the text editor: decompile Cypher into the session's model."""
    session = _get(session_id)
    try:
        session.controller.load_cypher(req.query)
    except NotRepresentable as e:
        raise not_representable(e)
    return session.state()


@router.post("/sessions/{session_id}/execute")
async def execute_session(session_id: str):
    session = _get(session_id)
    await session.controller.execute()
    return session.state()
