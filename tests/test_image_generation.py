import random
import sys
from pathlib import Path

import pytest
import requests

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_chat import create_app
from story_chat.config import TestConfig
from story_chat.services import image_generation


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


class FakeResponse:
    def __init__(self, status_code, content=b"", content_type="image/png"):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": content_type}


def test_placeholder_used_when_endpoint_not_configured(app_ctx):
    result = image_generation.generate_image("a scary hallway", rng=random.Random(3))

    assert result.source == "placeholder"
    assert result.url.startswith("https://picsum.photos/400/600?random=4")
    assert result.url.endswith("&grayscale&blur=2")


def test_hugging_face_image_is_returned_as_data_url(monkeypatch, app_ctx):
    app_ctx.config["IMAGE_GENERATION_URL"] = "https://example.test/model"
    app_ctx.config["HUGGING_FACE_API_TOKEN"] = "hf_token"
    calls = []

    def fake_post(url, json, headers, timeout):
        calls.append((url, json, headers, timeout))
        return FakeResponse(200, b"png", "image/png")

    monkeypatch.setattr(image_generation.requests, "post", fake_post)

    result = image_generation.generate_image("Moonlit town square")

    assert result.source == "hugging_face"
    assert result.url == "data:image/png;base64,cG5n"
    url, payload, headers, timeout = calls[0]
    assert url == "https://example.test/model"
    assert payload["inputs"].startswith("Moonlit town square")
    assert headers["Authorization"] == "Bearer hf_token"
    assert timeout == 20.0


@pytest.mark.parametrize(
    "outcome",
    [FakeResponse(503), FakeResponse(200, b'{"error": "loading"}', "application/json")],
)
def test_unusable_hugging_face_responses_fall_back(monkeypatch, app_ctx, outcome):
    app_ctx.config["IMAGE_GENERATION_URL"] = "https://example.test/model"
    monkeypatch.setattr(image_generation.requests, "post", lambda *args, **kwargs: outcome)

    result = image_generation.generate_image("a quiet landscape", rng=random.Random(0))

    assert result.source == "placeholder"
    assert "/800/400?random=10" in result.url


def test_network_errors_fall_back(monkeypatch, app_ctx):
    app_ctx.config["IMAGE_GENERATION_URL"] = "https://example.test/model"

    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(image_generation.requests, "post", fake_post)

    assert image_generation.generate_image("love letter").source == "placeholder"


def test_stock_image_lookup():
    assert image_generation.stock_image_for_prompt("A GLITCH in the sky") == image_generation.STOCK_IMAGES["glitch"]
    assert image_generation.stock_image_for_prompt("coffee") == image_generation.DEFAULT_STOCK_IMAGE


def test_gemini_provider_uses_stock_photos(monkeypatch, app_ctx):
    app_ctx.config["STORY_AI_PROVIDER"] = "gemini"
    app_ctx.config["IMAGE_GENERATION_URL"] = "https://example.test/model"

    def fail_post(*args, **kwargs):
        raise AssertionError("no remote image call expected")

    monkeypatch.setattr(image_generation.requests, "post", fail_post)

    result = image_generation.generate_image("The town square at dusk")

    assert result.source == "stock"
    assert result.url == image_generation.STOCK_IMAGES["town"]
