from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple, Union

from src.deepthink.services import prompts
from src.deepthink.services.stage_chain import StageChain
from src.deepthink.services.stream_orchestrator import StreamOrchestrator


class BackendError(RuntimeError):
    pass


class FakeGenerationClient:
    """Scripted backend: yields ``fragments`` and optionally fails after ``fail_after`` of them."""

    def __init__(
        self,
        fragments: Sequence[str] = (),
        *,
        fail_after: Optional[int] = None,
        delay: Union[float, Callable[[int], float]] = 0.0,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.delay = delay
        self.prompts: List[str] = []
        self.yielded = 0
        self.closed = False

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        limit = len(self.fragments) if self.fail_after is None else self.fail_after
        try:
            for idx, fragment in enumerate(self.fragments[:limit]):
                pause = self.delay(idx) if callable(self.delay) else self.delay
                if pause:
                    await asyncio.sleep(pause)
                self.yielded += 1
                yield fragment
            if self.fail_after is not None:
                raise BackendError("backend exploded")
        finally:
            self.closed = True


def make_orchestrator(
    analysis: FakeGenerationClient, response: FakeGenerationClient
) -> StreamOrchestrator:
    return StreamOrchestrator(
        analysis_stage=StageChain(prompts.DEEP_THINKING, analysis, name="analysis"),
        response_stage=StageChain(prompts.FINAL_RESPONSE, response, name="response"),
    )


def collect(orchestrator: StreamOrchestrator, query: str, **kwargs: Any) -> List[Tuple[str, Any]]:
    async def _run() -> List[Tuple[str, Any]]:
        return [(ev.event, ev.data) async for ev in orchestrator.serve(query, **kwargs)]

    return asyncio.run(_run())


def parse_sse(body: str) -> List[Tuple[str, str]]:
    """Split an SSE body into ``(event, raw data)`` pairs."""
    events: List[Tuple[str, str]] = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        fields: Dict[str, str] = {}
        for line in frame.split("\n"):
            name, _, value = line.partition(": ")
            fields[name] = value
        events.append((fields.get("event", ""), fields.get("data", "")))
    return events


def decode_data(raw: str) -> Any:
    return json.loads(raw) if raw else None
