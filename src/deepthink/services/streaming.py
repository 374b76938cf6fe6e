from __future__ import annotations

import json
from contextlib import aclosing
from typing import AsyncIterator, Iterable, TypeVar

from ..domain.chat_models import StreamEvent

T = TypeVar("T")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def iter_as_async(it: Iterable[T]) -> AsyncIterator[T]:
    async def gen() -> AsyncIterator[T]:
        for x in it:
            yield x

    return gen()


def encode_event(event: StreamEvent) -> str:
    """Render one event as an SSE frame; ``None`` data becomes an empty data line."""
    data = "" if event.data is None else json.dumps(event.data, ensure_ascii=False)
    return f"event: {event.event}\ndata: {data}\n\n"


async def encode_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async with aclosing(events) as source:
        async for event in source:
            yield encode_event(event)
