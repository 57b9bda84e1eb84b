import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_chat import create_app
from story_chat.config import TestConfig
from story_chat.services import fallbacks, story_ai


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


def test_generate_story_content_cleans_provider_text(monkeypatch, app_ctx):
    prompts = []

    class DummyGenerator:
        def generate_response(self, prompt: str, **kwargs: object) -> str:
            prompts.append((prompt, kwargs))
            return '```\n```"The clock tower struck thirteen."'

    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: DummyGenerator())

    text = story_ai.generate_story_content("Write the next line", {"player_name": "Sam"})

    assert text == "The clock tower struck thirteen."
    prompt, kwargs = prompts[0]
    assert "Prompt: Write the next line" in prompt
    assert '"player_name": "Sam"' in prompt
    assert kwargs == {"max_new_tokens": 200, "temperature": 0.9}


def test_generate_story_content_returns_none_on_provider_failure(monkeypatch, app_ctx):
    class FailingGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            raise RuntimeError("timeout")

    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: FailingGenerator())

    assert story_ai.generate_story_content("Continue", {}) is None


def test_generate_story_content_without_provider(monkeypatch, app_ctx):
    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: None)

    assert story_ai.generate_story_content("Continue", {}) is None
    with pytest.raises(story_ai.StoryGenerationError):
        story_ai.generate_story_content("   ", {})


def test_generate_choices_uses_stage_fallback_without_provider(monkeypatch, app_ctx):
    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: None)

    result = story_ai.generate_choices({"story_progression": "climax"}, "maya")

    assert result.used_fallback
    assert result.choices == fallbacks.stage_choices("maya", "climax")
    assert result.choices[1]["relationship_effect"] == {"maya": 3}


def test_generate_choices_falls_back_on_malformed_json(monkeypatch, app_ctx):
    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            return "Sure! Here are some ideas: be brave, be careful."

    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: DummyGenerator())

    result = story_ai.generate_choices({}, "alex")

    assert result.used_fallback
    assert result.choices == fallbacks.stage_choices("alex", "developing")


def test_generate_choices_renders_context_into_prompt(monkeypatch, app_ctx):
    prompts = []
    payload = [
        {"text": "Hold my hand", "consequence": "romance grows", "relationshipEffect": {"maya": 2}},
    ]

    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            prompts.append(prompt)
            return json.dumps(payload)

    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: DummyGenerator())

    context = {
        "character": {"name": "Dr. Maya Rodriguez"},
        "player_name": "Sam",
        "relationship_level": 12,
        "relationship_tier": "friendly",
        "story_progression": "developing",
        "chapter": 2,
        "total_messages": 9,
        "last_ai_response": "The lab lights dimmed.",
    }
    result = story_ai.generate_choices(context, "maya")

    assert not result.used_fallback
    assert result.choices == [
        {"text": "Hold my hand", "consequence": "romance grows", "relationship_effect": {"maya": 2}}
    ]
    prompt = prompts[0]
    assert "Character: Dr. Maya Rodriguez" in prompt
    assert "Relationship Level: 12 (friendly)" in prompt
    assert "Chapter: 2" in prompt
    assert 'Last AI Response: "The lab lights dimmed."' in prompt
    assert '{"maya": number between -3 and 3}' in prompt


def test_parse_choices_normalises_entries():
    raw = """```json
    [
      {"text": " Run! ", "consequence": "flees", "relationshipEffect": {"alex": 7, "maya": "-5"}},
      {"text": "", "relationship_effect": {"alex": true}},
      "not a choice",
      {"text": "Open the door", "consequence": "risk", "unlockCharacters": ["unknown"], "isPaywallLocked": true},
      {"text": "Four"},
      {"text": "Five"}
    ]
    ```"""

    choices = story_ai.parse_choices(raw, "alex")

    assert len(choices) == 4
    assert choices[0] == {"text": "Run!", "consequence": "flees", "relationship_effect": {"alex": 3, "maya": -3}}
    assert choices[1] == {"text": "Continue...", "consequence": "neutral response", "relationship_effect": {"alex": 0}}
    assert choices[2]["unlock_characters"] == ["unknown"]
    assert choices[2]["is_paywall_locked"] is True
    assert choices[3]["text"] == "Four"


def test_parse_choices_rejects_non_arrays():
    assert story_ai.parse_choices("", "alex") == []
    assert story_ai.parse_choices('{"text": "hi"}', "alex") == []
    assert story_ai.parse_choices("[not json]", "alex") == []


def test_clean_story_text_rejects_short_replies():
    assert story_ai.clean_story_text("  'ok'  ") is None
    assert story_ai.clean_story_text(None) is None
    assert story_ai.clean_story_text("'Meet me at midnight.'") == "Meet me at midnight."


def test_prompt_builders_fill_templates(app_ctx):
    opening = story_ai.build_opening_prompt("Alex Chen")
    continuation = story_ai.build_continuation_prompt("Alex Chen", "builds trust with character")

    assert opening.startswith("Generate an opening message from Alex Chen")
    assert "Alex Chen is responding" in continuation
    assert "Consequence: builds trust with character." in continuation


def test_story_generator_disabled_without_provider(app_ctx):
    app_ctx.config["STORY_AI_PROVIDER"] = "openrouter"
    app_ctx.config["OPENROUTER_API_KEY"] = ""

    assert story_ai._get_story_generator() is None
    assert app_ctx.config[story_ai.GENERATOR_CACHE_KEY] is None


def test_stage_and_relationship_heuristics():
    assert fallbacks.story_progression(5) == "beginning"
    assert fallbacks.story_progression(6) == "developing"
    assert fallbacks.story_progression(15) == "climax"
    assert fallbacks.story_progression(25) == "resolution"
    assert fallbacks.relationship_tier(-11) == "hostile"
    assert fallbacks.relationship_tier(-1) == "unfriendly"
    assert fallbacks.relationship_tier(4) == "neutral"
    assert fallbacks.relationship_tier(14) == "friendly"
    assert fallbacks.relationship_tier(24) == "close"
    assert fallbacks.relationship_tier(25) == "intimate"
    assert fallbacks.relationship_status(15) == "Very Close"
    assert fallbacks.relationship_status(-6) == "Hostile"
    assert fallbacks.chapter_for_message_count(29) == 1
    assert fallbacks.chapter_for_message_count(60) == 3


def test_choice_prompt_keeps_braces_in_player_values(monkeypatch, app_ctx):
    prompts = []

    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            prompts.append(prompt)
            return "[]"

    monkeypatch.setattr(story_ai, "_get_story_generator", lambda: DummyGenerator())

    story_ai.generate_choices({"player_name": "{character_id}"}, "alex")

    assert "Player: {character_id}\n" in prompts[0]
    assert '{"alex": number between -3 and 3}' in prompts[0]


def test_apply_template_leaves_unknown_placeholders():
    assert story_ai._apply_template("{a} and {b}", a="{b}") == "{b} and {b}"
