from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatAck, ChatQueryCreate, QUERY_ACCEPTED_MESSAGE
from ...domain.errors import NoQueryAvailable, QueryRequired
from ...infrastructure.query_store import QueryStore, get_query_store
from ...services.stream_orchestrator import StreamOrchestrator, get_orchestrator
from ...services.streaming import SSE_HEADERS, encode_events


LOG = logging.getLogger("deepthink.stream")

router = APIRouter(tags=["chat"])


def _parse_query(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise QueryRequired()
    try:
        req = ChatQueryCreate.model_validate(payload)
    except ValueError as exc:
        raise QueryRequired() from exc
    query = req.query or ""
    if not query:
        raise QueryRequired()
    return query


@router.post("/chat", response_model=ChatAck)
def submit_query(
    payload: Any = Body(default=None),
    store: QueryStore = Depends(get_query_store),
) -> ChatAck:
    query = _parse_query(payload)
    store.set(query)
    LOG.info("query_accepted", extra={"query_chars": len(query)})
    return ChatAck(message=QUERY_ACCEPTED_MESSAGE)


@router.get("/chat-stream", response_class=StreamingResponse)
async def chat_stream(
    request: Request,
    store: QueryStore = Depends(get_query_store),
    orchestrator: StreamOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    query = store.get()
    if not query:
        raise NoQueryAvailable()

    events = orchestrator.serve(query, is_disconnected=request.is_disconnected)
    return StreamingResponse(
        encode_events(events),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
