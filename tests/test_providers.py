import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import api_handler
import gemini_handler


class FakeOpenAI:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.requests = []
        self.reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="  Hello there. "))])
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        FakeOpenAI.instances.append(self)

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        return self.reply


@pytest.fixture
def fake_openai(monkeypatch):
    FakeOpenAI.instances = []
    monkeypatch.setattr(api_handler.openai, "OpenAI", FakeOpenAI)
    return FakeOpenAI


def test_openrouter_client_configuration(fake_openai):
    generator = api_handler.OpenRouterGenerator(
        "deepseek/deepseek-chat-v3-0324:free",
        "sk-or-1234567890",
        base_url="https://openrouter.ai/api/v1/",
        site_url="https://chat2.app",
        app_title="Interactive Story Chat",
        timeout=10,
    )

    client = fake_openai.instances[0]
    assert client.kwargs["base_url"] == "https://openrouter.ai/api/v1"
    assert client.kwargs["max_retries"] == 0
    assert client.kwargs["timeout"] == 10.0
    assert client.kwargs["default_headers"] == {
        "HTTP-Referer": "https://chat2.app",
        "X-Title": "Interactive Story Chat",
    }
    assert generator.signature() == ("deepseek/deepseek-chat-v3-0324:free", "sk-o…7890")


def test_openrouter_generate_response(fake_openai):
    generator = api_handler.OpenRouterGenerator("model", "key-123456")

    text = generator.generate_response("Hi", max_new_tokens=200, temperature=0.9)

    assert text == "Hello there."
    request = fake_openai.instances[0].requests[0]
    assert request == {
        "model": "model",
        "messages": [{"role": "user", "content": "Hi"}],
        "max_tokens": 200,
        "temperature": 0.9,
    }


def test_openrouter_joins_text_parts_and_rejects_empty(fake_openai):
    generator = api_handler.OpenRouterGenerator("model", "key-123456")
    client = fake_openai.instances[0]

    client.reply = SimpleNamespace(
        choices=[SimpleNamespace(message={"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]})]
    )
    assert generator.generate_response("Hi") == "a\nb"

    client.reply = SimpleNamespace(choices=[])
    with pytest.raises(RuntimeError):
        generator.generate_response("Hi")
    with pytest.raises(ValueError):
        generator.generate_response("  ")


def test_openrouter_requires_model_and_key(fake_openai):
    with pytest.raises(ValueError):
        api_handler.OpenRouterGenerator("", "key")
    with pytest.raises(RuntimeError):
        api_handler.OpenRouterGenerator("model", "")


class BlockedResponse:
    def __init__(self, parts):
        self.candidates = [SimpleNamespace(content=SimpleNamespace(parts=parts))]

    @property
    def text(self):
        raise ValueError("blocked")


def test_gemini_generate_response(monkeypatch):
    calls = {}

    class FakeModels:
        def generate_content(self, **kwargs):
            calls["request"] = kwargs
            return SimpleNamespace(text=" Under the bridge. ")

    class FakeClient:
        def __init__(self, **kwargs):
            calls["client"] = kwargs
            self.models = FakeModels()

    monkeypatch.setattr(gemini_handler.genai, "Client", FakeClient)

    generator = gemini_handler.GeminiGenerator("gemini-pro", "gm-key-0000", timeout=2.5)
    text = generator.generate_response("Where?", max_new_tokens=60, top_p=0.5)

    assert text == "Under the bridge."
    assert calls["client"] == {"api_key": "gm-key-0000", "http_options": {"timeout": 2500}}
    assert calls["request"] == {
        "model": "gemini-pro",
        "contents": "Where?",
        "config": {"max_output_tokens": 60, "top_p": 0.5},
    }


def test_gemini_reads_candidate_parts_and_rejects_empty(monkeypatch):
    replies = [
        BlockedResponse([SimpleNamespace(text="part one"), SimpleNamespace(text="part two")]),
        BlockedResponse([]),
    ]

    class FakeClient:
        def __init__(self, **kwargs):
            self.models = SimpleNamespace(generate_content=lambda **_: replies.pop(0))

    monkeypatch.setattr(gemini_handler.genai, "Client", FakeClient)
    generator = gemini_handler.GeminiGenerator("gemini-pro", "gm-key-0000")

    assert generator.generate_response("Go") == "part one\npart two"
    with pytest.raises(RuntimeError):
        generator.generate_response("Go")
