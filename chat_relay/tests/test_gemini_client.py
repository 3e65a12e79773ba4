from types import SimpleNamespace

import pytest
from google.genai import errors

from chat_relay.agents.orchestrator import run_stream
from chat_relay.domain.exceptions import ApiError, ConfigurationError, RateLimitError
from chat_relay.domain.models import Attachment, Message, ProviderKind, ResolvedRequest
from chat_relay.providers import create_provider
from chat_relay.providers.gemini_client import GeminiClient


def make_request(history, api_key="g-key", model_name="gemini-test"):
    return ResolvedRequest(
        provider=ProviderKind.GEMINI,
        api_key=api_key,
        model_name=model_name,
        system_instruction="Answer in English.",
        history=tuple(history),
    )


def install_fake_sdk(monkeypatch, chunks, error=None):
    captured = {}

    class FakeChat:
        async def send_message_stream(self, message):
            captured["message"] = message

            async def gen():
                for c in chunks:
                    yield SimpleNamespace(text=c)
                if error is not None:
                    raise error

            return gen()

    class FakeChats:
        def create(self, model, config, history):
            captured["model"] = model
            captured["config"] = config
            captured["history"] = history
            return FakeChat()

    class FakeAio:
        chats = FakeChats()

        async def aclose(self):
            captured["closed"] = captured.get("closed", 0) + 1

    class FakeClient:
        def __init__(self, api_key=None, http_options=None, **kw):
            captured["api_key"] = api_key
            captured["http_options"] = http_options
            self.aio = FakeAio()

    monkeypatch.setattr("chat_relay.providers.gemini_client.genai.Client", FakeClient)
    return captured


@pytest.mark.asyncio
async def test_gemini_stream_drops_empty_fragments(monkeypatch):
    captured = install_fake_sdk(monkeypatch, ["Hel", "", None, "lo"])
    client = GeminiClient()
    deltas = [d async for d in client.stream(make_request([Message(role="user", content="hi")]))]
    assert deltas == ["Hel", "lo"]
    assert captured["api_key"] == "g-key"
    assert captured["model"] == "gemini-test"
    assert captured["config"].system_instruction == "Answer in English."
    assert captured["history"] == []
    assert captured["http_options"] is None
    assert captured["closed"] == 1


@pytest.mark.asyncio
async def test_gemini_history_turns_and_parts(monkeypatch):
    captured = install_fake_sdk(monkeypatch, ["ok"])
    img = Attachment(kind="image", name="a.png", mime_type="image/png", data="QUJD")
    doc = Attachment(kind="file", name="b.pdf", mime_type="application/pdf", data="REVG")
    history = [
        Message(role="user", content="", attachments=(img,)),
        Message(role="assistant", content="seen"),
        Message(role="system", content="Error: x"),
        Message(role="user", content="and this?", attachments=(doc,)),
    ]
    [d async for d in GeminiClient().stream(make_request(history))]

    turns = captured["history"]
    assert [t.role for t in turns] == ["user", "model", "model"]
    first = turns[0].parts
    assert first[0].inline_data.mime_type == "image/png"
    assert first[0].inline_data.data == b"ABC"
    # 即使文本为空，也要保留最后的文本 part
    assert len(first) == 2
    assert first[1].text == ""

    live = captured["message"]
    assert live[0].inline_data.mime_type == "application/pdf"
    assert live[-1].text == "and this?"


@pytest.mark.asyncio
async def test_gemini_missing_key_is_configuration_error(monkeypatch):
    captured = install_fake_sdk(monkeypatch, ["x"])
    with pytest.raises(ConfigurationError):
        [d async for d in GeminiClient().stream(make_request([Message(role="user", content="hi")], api_key=""))]
    assert "api_key" not in captured


@pytest.mark.asyncio
async def test_gemini_failure_after_chunks_reports_single_error(monkeypatch):
    install_fake_sdk(monkeypatch, ["partial"], error=RuntimeError("decode failed"))

    class Recorder:
        def __init__(self):
            self.events = []

        def on_chunk(self, text):
            self.events.append(("chunk", text))

        def on_finish(self):
            self.events.append(("finish",))

        def on_error(self, error):
            self.events.append(("error", str(error)))

    rec = Recorder()
    await run_stream(GeminiClient(), make_request([Message(role="user", content="hi")]), rec)
    assert rec.events == [("chunk", "partial"), ("error", "decode failed")]


@pytest.mark.asyncio
async def test_gemini_rate_limit_maps_to_rate_limit_error(monkeypatch):
    error = errors.ClientError(
        429,
        {"error": {"code": 429, "message": "Resource has been exhausted", "status": "RESOURCE_EXHAUSTED"}},
    )
    captured = install_fake_sdk(monkeypatch, [], error=error)
    with pytest.raises(RateLimitError) as exc:
        [d async for d in GeminiClient().stream(make_request([Message(role="user", content="hi")]))]
    assert exc.value.http_status == 429
    assert exc.value.message == "Gemini API Error: 429 Resource has been exhausted"
    assert captured["closed"] == 1


@pytest.mark.asyncio
async def test_gemini_client_error_maps_to_api_error(monkeypatch):
    error = errors.ClientError(
        400,
        {"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}},
    )
    install_fake_sdk(monkeypatch, ["partial"], error=error)
    deltas = []
    with pytest.raises(ApiError) as exc:
        async for d in GeminiClient().stream(make_request([Message(role="user", content="hi")])):
            deltas.append(d)
    assert not isinstance(exc.value, RateLimitError)
    assert exc.value.http_status == 400
    assert "API key not valid" in exc.value.message
    assert deltas == ["partial"]


@pytest.mark.asyncio
async def test_gemini_timeout_is_passed_in_milliseconds(monkeypatch):
    captured = install_fake_sdk(monkeypatch, ["ok"])
    [d async for d in GeminiClient(timeout=2.5).stream(make_request([Message(role="user", content="hi")]))]
    assert captured["http_options"].timeout == 2500


def test_factory_forwards_timeout_to_session_client():
    client = create_provider(ProviderKind.GEMINI, timeout=7)
    assert isinstance(client, GeminiClient)
    assert client._http_options().timeout == 7000
