"""Stateless query endpoints: compile, decompile, encode, decode, execute."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException

from graphdash.api import shared
from graphdash.artifacts.storage_queries import record_execution
from graphdash.graph.models import QueryRequest, QueryResult, TokenRequest
from graphdash.querybuilder.codec import InvalidToken, decode, encode
from graphdash.querybuilder.compiler import compile_query
from graphdash.querybuilder.decompiler import NotRepresentable, decompile
from graphdash.querybuilder.models import ModelValidationError, QueryModel

router = APIRouter(prefix="/query", tags=["query"])


def not_representable(exc: NotRepresentable) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"error": "not_representable", "message": str(exc), "reason": exc.reason},
    )


def invalid_model(exc: ModelValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"error": "invalid_model", "message": str(exc)})


def invalid_token(exc: InvalidToken) -> HTTPException:
    return HTTPException(status_code=422, detail={"error": "invalid_token", "message": str(exc)})


@router.post("/compile")
async def compile_model(model: QueryModel):
    """Compile a builder model to Cypher."""
    try:
        return {"query": compile_query(model)}
    except ModelValidationError as e:
        raise invalid_model(e)


@router.post("/decompile")
async def decompile_query(req: QueryRequest):
    """Recover a builder model from Cypher, or 422 when it cannot be represented."""
    try:
        model = decompile(req.query)
    except NotRepresentable as e:
        raise not_representable(e)
    return model.model_dump(mode="json", by_alias=True)


@router.post("/encode")
async def encode_model(model: QueryModel):
    try:
        return {"token": encode(model)}
    except ModelValidationError as e:
        raise invalid_model(e)


@router.post("/decode")
async def decode_token(req: TokenRequest):
    try:
        model = decode(req.token)
    except InvalidToken as e:
        raise invalid_token(e)
    return model.model_dump(mode="json", by_alias=True)


@router.post("/execute", response_model=QueryResult)
async def execute_query(req: QueryRequest, saved_query_id: Optional[str] = None):
    """Run raw Cypher; errors are returned in the result body, not as HTTP errors."""
    result = await shared.execute_and_record(req.query)
    if saved_query_id and result.ok:
        await record_execution(saved_query_id)
    return result
