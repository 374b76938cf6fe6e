from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from src.deepthink.domain.chat_models import GENERIC_ERROR_MESSAGE
from src.deepthink.services import prompts
from src.deepthink.services.stage_chain import StageChain
from src.deepthink.services.stream_orchestrator import StreamOrchestrator, StreamSession

from .utils import FakeGenerationClient, collect, make_orchestrator


def test_events_follow_analysis_then_response_then_end():
    analysis = FakeGenerationClient(["Intent: ", "learn ", "TCP"])
    response = FakeGenerationClient(["TCP is ", "a protocol."])
    events = collect(make_orchestrator(analysis, response), "explain TCP")

    assert events == [
        ("deep-thinking", "Intent: "),
        ("deep-thinking", "learn "),
        ("deep-thinking", "TCP"),
        ("final-response", "TCP is "),
        ("final-response", "a protocol."),
        ("end", None),
    ]


@pytest.mark.parametrize("a_len,r_len", [(0, 0), (0, 2), (3, 0), (1, 1)])
def test_empty_stages_still_terminate_with_end(a_len, r_len):
    analysis = FakeGenerationClient([f"a{i}" for i in range(a_len)])
    response = FakeGenerationClient([f"r{i}" for i in range(r_len)])
    events = collect(make_orchestrator(analysis, response), "q")

    names = [name for name, _ in events]
    assert names == ["deep-thinking"] * a_len + ["final-response"] * r_len + ["end"]
    # The response stage runs even when the analysis is empty
    assert len(response.prompts) == 1


def test_response_prompt_carries_full_analysis_and_query():
    fragments = ["First, ", "the {user} ", "wants\nmultiline ", "", "détails."]
    analysis = FakeGenerationClient(fragments)
    response = FakeGenerationClient(["ok"])
    events = collect(make_orchestrator(analysis, response), "explain TCP")

    relayed = "".join(data for name, data in events if name == "deep-thinking")
    assert relayed == "".join(fragments)
    expected_prompt = prompts.render(prompts.FINAL_RESPONSE, {"analysis": relayed, "query": "explain TCP"})
    assert response.prompts == [expected_prompt]
    assert analysis.prompts == [prompts.render(prompts.DEEP_THINKING, {"query": "explain TCP"})]


def test_irregular_fragment_timing_keeps_order_and_content():
    delays = [0.02, 0.0, 0.01, 0.0, 0.03]
    fragments = ["alpha ", "beta ", "gamma ", "delta ", "epsilon"]
    analysis = FakeGenerationClient(fragments, delay=lambda i: delays[i])
    response = FakeGenerationClient(["done"], delay=0.01)
    events = collect(make_orchestrator(analysis, response), "q")

    assert [data for name, data in events if name == "deep-thinking"] == fragments
    assert "alpha beta gamma delta epsilon" in response.prompts[0]


def test_analysis_failure_reports_one_error_and_skips_response():
    analysis = FakeGenerationClient(["f1", "f2", "f3", "f4"], fail_after=2)
    response = FakeGenerationClient(["never"])
    events = collect(make_orchestrator(analysis, response), "q")

    assert events == [
        ("deep-thinking", "f1"),
        ("deep-thinking", "f2"),
        ("error", {"message": GENERIC_ERROR_MESSAGE}),
    ]
    assert response.prompts == []


def test_analysis_failure_before_any_fragment():
    analysis = FakeGenerationClient(["x"], fail_after=0)
    response = FakeGenerationClient(["never"])
    events = collect(make_orchestrator(analysis, response), "q")

    assert events == [("error", {"message": GENERIC_ERROR_MESSAGE})]


def test_response_failure_keeps_analysis_and_partial_response():
    analysis = FakeGenerationClient(["a1", "a2"])
    response = FakeGenerationClient(["g1", "g2", "g3"], fail_after=2)
    events = collect(make_orchestrator(analysis, response), "q")

    assert events == [
        ("deep-thinking", "a1"),
        ("deep-thinking", "a2"),
        ("final-response", "g1"),
        ("final-response", "g2"),
        ("error", {"message": GENERIC_ERROR_MESSAGE}),
    ]
    assert all(name != "end" for name, _ in events)


def test_failure_cause_is_logged_not_sent(caplog):
    analysis = FakeGenerationClient(["a"], fail_after=1)
    response = FakeGenerationClient([])
    with caplog.at_level("ERROR", logger="deepthink.stream"):
        events = collect(make_orchestrator(analysis, response), "q")

    assert "exploded" not in repr(events)
    failed = [rec for rec in caplog.records if rec.getMessage() == "stream_failed"]
    assert failed and failed[0].exc_info is not None
    assert "exploded" in str(failed[0].exc_info[1])


def test_disconnect_before_response_stops_without_terminal_event():
    calls = {"n": 0}

    async def probe() -> bool:
        calls["n"] += 1
        return calls["n"] > 1

    analysis = FakeGenerationClient(["a1", "a2"])
    response = FakeGenerationClient(["never"])
    events = collect(make_orchestrator(analysis, response), "q", is_disconnected=probe)

    assert events == [("deep-thinking", "a1"), ("deep-thinking", "a2")]
    assert response.prompts == []


def test_disconnect_before_start_emits_nothing():
    async def probe() -> bool:
        return True

    analysis = FakeGenerationClient(["a1"])
    response = FakeGenerationClient(["r1"])
    events = collect(make_orchestrator(analysis, response), "q", is_disconnected=probe)

    assert events == []
    assert analysis.prompts == []


def test_consumer_closing_mid_stream_closes_backend():
    analysis = FakeGenerationClient(["a1", "a2", "a3"])
    response = FakeGenerationClient(["r1"])
    orchestrator = make_orchestrator(analysis, response)

    async def _run():
        agen = orchestrator.serve("q")
        first = await agen.__anext__()
        await agen.aclose()
        return first

    first = asyncio.run(_run())
    assert first.data == "a1"
    assert analysis.closed is True
    assert analysis.yielded == 1
    assert response.prompts == []


def test_cancelled_task_closes_backend():
    analysis = FakeGenerationClient(["a1", "a2"], delay=lambda i: 0.0 if i == 0 else 5.0)
    response = FakeGenerationClient(["r1"])
    orchestrator = make_orchestrator(analysis, response)
    seen = []

    async def consume():
        async for ev in orchestrator.serve("q"):
            seen.append(ev.event)

    async def _run():
        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())
    assert seen == ["deep-thinking"]
    assert analysis.closed is True
    assert response.prompts == []


def test_shared_client_serves_both_stages():
    client = FakeGenerationClient(["same"])
    orchestrator = StreamOrchestrator(
        StageChain(prompts.DEEP_THINKING, client, name="analysis"),
        StageChain(prompts.FINAL_RESPONSE, client, name="response"),
    )
    events = collect(orchestrator, "q")

    assert events == [("deep-thinking", "same"), ("final-response", "same"), ("end", None)]
    assert len(client.prompts) == 2


def test_session_analysis_buffer_is_append_then_read_once():
    session = StreamSession("q")
    session.append_analysis("a")
    session.append_analysis("b")
    assert session.finalize_analysis() == "ab"
    assert session.finalize_analysis() == "ab"
    with pytest.raises(RuntimeError):
        session.append_analysis("c")


def test_session_rejects_out_of_order_transitions():
    session = StreamSession("q")
    with pytest.raises(RuntimeError):
        session.advance("response")
    session.advance("open")
    session.advance("analysis")
    session.advance("response")
    assert session.phase == "response"


class _ResetOnCloseClient:
    """Backend whose teardown fails, as a reset connection would."""

    def __init__(self, fragments):
        self.fragments = list(fragments)

    async def stream(self, prompt):
        try:
            for fragment in self.fragments:
                yield fragment
        finally:
            raise RuntimeError("connection reset during close")


def _sessions(outcome):
    return REGISTRY.get_sample_value("deepthink_stream_sessions_total", {"outcome": outcome}) or 0.0


def test_failing_backend_close_still_runs_session_cleanup(caplog):
    orchestrator = make_orchestrator(_ResetOnCloseClient(["a1", "a2"]), FakeGenerationClient(["r1"]))
    active_before = REGISTRY.get_sample_value("deepthink_active_streams")
    disconnected_before = _sessions("disconnected")

    async def _run():
        agen = orchestrator.serve("q")
        await agen.__anext__()
        await agen.aclose()

    with caplog.at_level("INFO", logger="deepthink.stream"):
        asyncio.run(_run())

    assert REGISTRY.get_sample_value("deepthink_active_streams") == active_before
    assert _sessions("disconnected") == disconnected_before + 1
    messages = [rec.getMessage() for rec in caplog.records]
    assert "stage_close_failed" in messages
    assert messages[-1] == "stream_closed"


def test_close_at_end_event_is_not_counted_as_completed():
    orchestrator = make_orchestrator(FakeGenerationClient(["a"]), FakeGenerationClient(["r"]))
    completed_before = _sessions("completed")
    disconnected_before = _sessions("disconnected")

    async def _run():
        agen = orchestrator.serve("q")
        events = [await agen.__anext__() for _ in range(3)]
        await agen.aclose()
        return events

    events = asyncio.run(_run())
    assert [ev.event for ev in events] == ["deep-thinking", "final-response", "end"]
    assert _sessions("completed") == completed_before
    assert _sessions("disconnected") == disconnected_before + 1
