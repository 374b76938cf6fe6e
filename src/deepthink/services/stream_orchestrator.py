"""Two-stage streaming pipeline.

A session runs the analysis stage to completion, relaying every fragment to
the client while accumulating it, then feeds the whole analysis together with
the query into the response stage and relays that too. Exactly one terminal
event follows: ``end`` on success, ``error`` on a generation failure, nothing
when the client has gone away.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import AsyncIterator, Awaitable, Callable, List, Mapping, Optional

from ..core import state_machine as sm
from ..core.settings import Settings, get_settings
from ..domain.chat_models import DEEP_THINKING, FINAL_RESPONSE, StreamEvent
from ..domain.errors import ChannelFailure, GenerationFailure
from ..observability.metrics import ACTIVE_STREAMS, STAGE_LATENCY, STAGE_TTFB, STREAM_SESSIONS
from . import prompts
from .generation import ChatGenerationClient, GenerationClient
from .model_router import ModelRouter
from .stage_chain import FragmentStream, StageChain


LOG = logging.getLogger("deepthink.stream")

DisconnectProbe = Callable[[], Awaitable[bool]]


class StreamSession:
    """State of one stream-initiation request."""

    def __init__(self, query: str) -> None:
        self.session_id = uuid.uuid4().hex
        self.query = query
        self.phase = sm.INIT
        self._analysis_parts: List[str] = []
        self._analysis: Optional[str] = None
        self._stream: Optional[FragmentStream] = None
        self._stage_started = 0.0
        self._first_fragment_seen = False

    def advance(self, target: str) -> None:
        if not sm.is_valid_transition(self.phase, target):
            raise RuntimeError(f"Invalid stream transition {self.phase} -> {target}")
        self.phase = target

    def append_analysis(self, fragment: str) -> None:
        if self._analysis is not None:
            raise RuntimeError("Analysis already finalized")
        self._analysis_parts.append(fragment)

    def finalize_analysis(self) -> str:
        if self._analysis is None:
            self._analysis = "".join(self._analysis_parts)
            self._analysis_parts = []
        return self._analysis

    def start_stage(self, stage: StageChain, fields: Mapping[str, str]) -> FragmentStream:
        self._stage_started = time.perf_counter()
        self._first_fragment_seen = False
        self._stream = stage.run(fields)
        return self._stream

    def observe_fragment(self) -> None:
        if not self._first_fragment_seen and self._stream is not None:
            self._first_fragment_seen = True
            STAGE_TTFB.labels(stage=self._stream.stage).observe(time.perf_counter() - self._stage_started)

    async def finish_stage(self, outcome: str) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await stream.aclose()
        finally:
            STAGE_LATENCY.labels(stage=stream.stage, outcome=outcome).observe(
                time.perf_counter() - self._stage_started
            )


class StreamOrchestrator:
    def __init__(self, analysis_stage: StageChain, response_stage: StageChain) -> None:
        self.analysis_stage = analysis_stage
        self.response_stage = response_stage

    async def _ensure_connected(self, is_disconnected: Optional[DisconnectProbe]) -> None:
        if is_disconnected is not None and await is_disconnected():
            raise ChannelFailure("client disconnected")

    async def serve(self, query: str, is_disconnected: Optional[DisconnectProbe] = None) -> AsyncIterator[StreamEvent]:
        """Yield the typed events of one session for ``query``.

        The ``finally`` block is the only cleanup point: it releases whichever
        stage stream is live and records the session outcome, whether the
        session ended normally, on a stage failure, or because the consumer
        stopped iterating.
        """

        session = StreamSession(query)
        session.advance(sm.OPEN)
        ACTIVE_STREAMS.inc()
        LOG.info("stream_opened", extra={"session_id": session.session_id, "query_chars": len(query)})
        outcome = "disconnected"
        try:
            await self._ensure_connected(is_disconnected)
            session.advance(sm.ANALYSIS)
            stream = session.start_stage(self.analysis_stage, {"query": query})
            async for fragment in stream:
                session.observe_fragment()
                session.append_analysis(fragment)
                yield StreamEvent.fragment(DEEP_THINKING, fragment)
            await session.finish_stage("ok")
            analysis = session.finalize_analysis()

            await self._ensure_connected(is_disconnected)
            session.advance(sm.RESPONSE)
            stream = session.start_stage(self.response_stage, {"analysis": analysis, "query": query})
            async for fragment in stream:
                session.observe_fragment()
                yield StreamEvent.fragment(FINAL_RESPONSE, fragment)
            await session.finish_stage("ok")

            yield StreamEvent.end()
            outcome = "completed"
            LOG.info("stream_completed", extra={"session_id": session.session_id, "analysis_chars": len(analysis)})
        except ChannelFailure:
            LOG.info("stream_client_disconnected", extra={"session_id": session.session_id, "phase": session.phase})
        except GenerationFailure as exc:
            outcome = "error"
            LOG.error(
                "stream_failed",
                exc_info=(type(exc.cause), exc.cause, exc.cause.__traceback__),
                extra={"session_id": session.session_id, "stage": exc.stage, "phase": session.phase},
            )
            await session.finish_stage("error")
            yield StreamEvent.error()
        except Exception:
            outcome = "error"
            LOG.exception("stream_failed", extra={"session_id": session.session_id, "phase": session.phase})
            await session.finish_stage("error")
            yield StreamEvent.error()
        except (asyncio.CancelledError, GeneratorExit):
            LOG.info("stream_client_disconnected", extra={"session_id": session.session_id, "phase": session.phase})
            raise
        finally:
            try:
                await session.finish_stage("cancelled")
            except Exception:
                LOG.exception("stage_close_failed", extra={"session_id": session.session_id, "phase": session.phase})
            finally:
                session.phase = sm.CLOSE
                ACTIVE_STREAMS.dec()
                STREAM_SESSIONS.labels(outcome=outcome).inc()
                LOG.info("stream_closed", extra={"session_id": session.session_id, "outcome": outcome})


def build_orchestrator(client: GenerationClient) -> StreamOrchestrator:
    return StreamOrchestrator(
        analysis_stage=StageChain(prompts.DEEP_THINKING, client, name="analysis"),
        response_stage=StageChain(prompts.FINAL_RESPONSE, client, name="response"),
    )


_orchestrator: Optional[StreamOrchestrator] = None


def get_orchestrator() -> StreamOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        settings: Settings = get_settings()
        router = ModelRouter(preferred_provider=settings.preferred_provider)
        _orchestrator = build_orchestrator(ChatGenerationClient(router, temperature=settings.temperature))
    return _orchestrator
