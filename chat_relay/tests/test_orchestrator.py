import asyncio

import pytest

from chat_relay.agents.orchestrator import GenerationOrchestrator, run_stream
from chat_relay.domain.exceptions import ConfigurationError
from chat_relay.domain.models import Attachment, GenerationConfig, ProviderKind, ProviderSettings
from chat_relay.infrastructure.logging.events import EventLog


CONFIG = GenerationConfig(
    provider=ProviderKind.OPENAI,
    settings=ProviderSettings(model_name="gpt-4o", api_key="sk", base_url="https://x/v1"),
    system_instruction="sys",
)


class StubProvider:
    name = "stub"

    def __init__(self, deltas=(), error=None, gate=None):
        self._deltas = list(deltas)
        self._error = error
        self._gate = gate
        self.requests = []

    async def stream(self, req):
        self.requests.append(req)
        for d in self._deltas:
            yield d
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error


def orchestrator_for(provider, sink=None):
    return GenerationOrchestrator(sink=sink, provider_factory=lambda kind, sink=None, **kw: provider)


@pytest.mark.asyncio
async def test_deltas_fold_into_single_assistant_message():
    provider = StubProvider(["Hel", "lo", " world"])
    orch = orchestrator_for(provider)
    gen = await orch.send("hi", (), CONFIG)

    msgs = orch.conversation.messages
    assert [m.role for m in msgs] == ["user", "assistant"]
    assert msgs[1].content == "Hello world"
    assert msgs[1].id == gen.assistant_message_id
    assert msgs[1].model == "gpt-4o"
    assert gen.state == "finished"


@pytest.mark.asyncio
async def test_request_history_is_snapshot_including_new_user_message():
    provider = StubProvider(["ok"])
    orch = orchestrator_for(provider)
    att = Attachment(kind="image", name="a.png", mime_type="image/png", data="QQ==")
    await orch.send("first", [att], CONFIG)
    await orch.send("second", (), CONFIG)

    first_req, second_req = provider.requests
    assert [m.content for m in first_req.history] == ["first"]
    assert first_req.history[0].attachments == (att,)
    assert [m.content for m in second_req.history] == ["first", "ok", "second"]
    assert first_req.system_instruction == "sys"


@pytest.mark.asyncio
async def test_failure_keeps_partial_text_and_appends_system_message():
    sink = EventLog()
    provider = StubProvider(["part"], error=RuntimeError("connection reset"))
    orch = orchestrator_for(provider, sink)
    gen = await orch.send("hi", (), CONFIG)

    msgs = orch.conversation.messages
    assert [m.role for m in msgs] == ["user", "assistant", "system"]
    assert msgs[1].content == "part"
    assert msgs[2].content == "Error: connection reset"
    assert gen.state == "failed"
    assert any(e.category == "error" and e.summary == "Generation Failed" for e in sink.entries)


@pytest.mark.asyncio
async def test_failure_before_first_delta_creates_no_assistant_message():
    provider = StubProvider(error=ConfigurationError(code="MISSING_API_KEY", message="API Key is required"))
    orch = orchestrator_for(provider)
    await orch.send("hi", (), CONFIG)
    assert [(m.role, m.content) for m in orch.conversation.messages] == [
        ("user", "hi"),
        ("system", "Error: API Key is required"),
    ]


def test_delta_after_finish_is_ignored():
    orch = orchestrator_for(StubProvider())
    gen, _ = orch.begin("hi", (), CONFIG)
    gen.on_chunk("done")
    gen.on_finish()
    gen.on_chunk(" extra")
    gen.on_error(RuntimeError("late"))
    assert [m.content for m in orch.conversation.messages] == ["hi", "done"]


def test_delta_after_error_is_ignored():
    orch = orchestrator_for(StubProvider())
    gen, _ = orch.begin("hi", (), CONFIG)
    gen.on_error(RuntimeError("boom"))
    gen.on_chunk("stray")
    gen.on_finish()
    assert [(m.role, m.content) for m in orch.conversation.messages] == [
        ("user", "hi"),
        ("system", "Error: boom"),
    ]


def test_stray_delta_from_previous_generation_does_not_touch_newest_message():
    orch = orchestrator_for(StubProvider())
    old, _ = orch.begin("one", (), CONFIG)
    old.on_chunk("A")
    old.on_finish()
    new, _ = orch.begin("two", (), CONFIG)
    new.on_chunk("B")
    old.on_chunk("zzz")
    assert [m.content for m in orch.conversation.messages] == ["one", "A", "two", "B"]


def test_late_events_after_clear_are_ignored():
    orch = orchestrator_for(StubProvider())
    gen, _ = orch.begin("hi", (), CONFIG)
    gen.on_chunk("par")
    orch.clear()
    gen.on_chunk("tial")
    gen.on_error(RuntimeError("late"))
    assert orch.conversation.messages == ()

    pending, _ = orch.begin("again", (), CONFIG)
    orch.clear()
    pending.on_chunk("first delta after clear")
    assert orch.conversation.messages == ()


@pytest.mark.asyncio
async def test_started_task_can_be_cancelled_mid_stream():
    gate = asyncio.Event()
    provider = StubProvider(["partial"], gate=gate)
    orch = orchestrator_for(provider)
    gen, task = orch.start("hi", (), CONFIG)
    while gen.state != "streaming":
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert orch.conversation.messages[-1].content == "partial"
    assert gen.state == "streaming"


@pytest.mark.asyncio
async def test_run_stream_signals_exactly_once():
    class Recorder:
        def __init__(self):
            self.finish = 0
            self.errors = []
            self.chunks = []

        def on_chunk(self, text):
            self.chunks.append(text)

        def on_finish(self):
            self.finish += 1

        def on_error(self, error):
            self.errors.append(error)

    ok = Recorder()
    await run_stream(StubProvider(["a", "b"]), None, ok)
    assert (ok.chunks, ok.finish, ok.errors) == (["a", "b"], 1, [])

    bad = Recorder()
    await run_stream(StubProvider(["a"], error=ValueError("x")), None, bad)
    assert bad.finish == 0
    assert len(bad.errors) == 1


def test_unknown_provider_is_rejected_before_touching_conversation():
    orch = orchestrator_for(StubProvider())
    bogus = GenerationConfig(provider="Mistral", settings=ProviderSettings(model_name="m", api_key="k"))
    with pytest.raises(ConfigurationError) as exc:
        orch.begin("hi", (), bogus)
    assert exc.value.code == "UNKNOWN_PROVIDER"
    assert orch.conversation.messages == ()
