from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app

from . import fallbacks

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_STORY_GENERATOR_INSTANCE"

PROMPT_KEY_STORY = "story_content"
PROMPT_KEY_OPENING = "opening_message"
PROMPT_KEY_CONTINUATION = "story_continuation"
PROMPT_KEY_CHOICES = "choice_generation"

MIN_STORY_TEXT_LENGTH = 5
MAX_CHOICES = 4
MAX_RELATIONSHIP_EFFECT = 3


class StoryGenerationError(RuntimeError):
    """Raised when the story prompts cannot be prepared."""


@dataclass
class ChoiceGenerationResult:
    choices: List[Dict[str, Any]]
    used_fallback: bool


def generate_story_content(prompt: str, context: Mapping[str, Any]) -> Optional[str]:
    """Ask the configured provider for a short narrative message.

    Returns the cleaned text, or ``None`` when no provider is configured, the
    call fails or the response is unusable. Callers own the fallback.
    """

    prompt_text = (prompt or "").strip()
    if not prompt_text:
        raise StoryGenerationError("A prompt is required to generate story content.")

    config_entry = _load_prompt_entry(PROMPT_KEY_STORY)
    prompt_template = config_entry.get("prompt_template")
    if not prompt_template:
        raise StoryGenerationError("Prompt configuration is missing the story template text.")

    final_prompt = _apply_template(
        prompt_template,
        context=json.dumps(dict(context), ensure_ascii=False, default=str),
        prompt=prompt_text,
    )

    generator = _get_story_generator()
    if generator is None:
        return None

    generation_kwargs = _extract_generation_parameters(config_entry.get("parameters"))
    try:
        raw_text = generator.generate_response(final_prompt, **generation_kwargs)
    except Exception as exc:  # pragma: no cover - defensive logging for external integrations
        current_app.logger.warning("Story content generation failed; caller will use fallback text. Error: %s", exc)
        return None

    return clean_story_text(raw_text)


def generate_choices(context: Mapping[str, Any], character_id: str) -> ChoiceGenerationResult:
    """Generate the next set of player choices for ``character_id``.

    Falls back to the canned set for the context's story stage whenever the
    provider is unavailable or its JSON cannot be used.
    """

    story_stage = str(context.get("story_progression") or "developing")
    fallback = ChoiceGenerationResult(
        choices=fallbacks.stage_choices(character_id, story_stage),
        used_fallback=True,
    )

    generator = _get_story_generator()
    if generator is None:
        return fallback

    config_entry = _load_prompt_entry(PROMPT_KEY_CHOICES)
    prompt_template = config_entry.get("prompt_template")
    if not prompt_template:
        raise StoryGenerationError("Prompt configuration is missing the choice template text.")

    character = context.get("character") if isinstance(context.get("character"), Mapping) else {}
    final_prompt = _apply_template(
        prompt_template,
        character_name=str(character.get("name") or character_id),
        player_name=str(context.get("player_name") or "Player"),
        relationship_level=str(context.get("relationship_level") or 0),
        relationship_tier=str(context.get("relationship_tier") or "neutral"),
        story_stage=story_stage,
        chapter=str(context.get("chapter") or 1),
        total_messages=str(context.get("total_messages") or 0),
        last_ai_response=str(context.get("last_ai_response") or "No previous response"),
        conversation_history=json.dumps(context.get("conversation_history") or [], ensure_ascii=False),
        character_id=character_id,
    )

    generation_kwargs = _extract_generation_parameters(config_entry.get("parameters"))
    try:
        raw_response = generator.generate_response(final_prompt, **generation_kwargs)
    except Exception as exc:  # pragma: no cover - defensive logging for external integrations
        current_app.logger.warning(
            "Choice generation failed for '%s'; using %s fallback choices. Error: %s",
            character_id,
            story_stage,
            exc,
        )
        return fallback

    choices = parse_choices(raw_response, character_id)
    if not choices:
        current_app.logger.warning(
            "Choice response for '%s' was not a usable JSON array; using fallback choices.",
            character_id,
        )
        return fallback

    return ChoiceGenerationResult(choices=choices, used_fallback=False)


def build_opening_prompt(character_name: str) -> str:
    return _render_prompt(PROMPT_KEY_OPENING, character_name=character_name)


def build_continuation_prompt(character_name: str, consequence: str) -> str:
    return _render_prompt(
        PROMPT_KEY_CONTINUATION,
        character_name=character_name,
        consequence=consequence,
    )


_CODE_BLOCK_PATTERN = re.compile(r"```[^`]*```")
_EDGE_QUOTE_PATTERN = re.compile(r"^[\"']|[\"']$")
_JSON_FENCE_PATTERN = re.compile(r"```json\s*")
_FENCE_PATTERN = re.compile(r"```\s*")
_JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def clean_story_text(raw_text: Optional[str]) -> Optional[str]:
    """Strip markdown fences and wrapping quotes from a narrative reply."""

    if not isinstance(raw_text, str):
        return None
    text = raw_text.strip()
    text = _CODE_BLOCK_PATTERN.sub("", text)
    text = text.replace("```", "")
    text = _EDGE_QUOTE_PATTERN.sub("", text.strip()).strip()
    if len(text) < MIN_STORY_TEXT_LENGTH:
        return None
    return text


def parse_choices(raw_response: Optional[str], character_id: str) -> List[Dict[str, Any]]:
    if not raw_response:
        return []

    cleaned = raw_response.strip()
    cleaned = _JSON_FENCE_PATTERN.sub("", cleaned)
    cleaned = _FENCE_PATTERN.sub("", cleaned)
    match = _JSON_ARRAY_PATTERN.search(cleaned)
    json_text = match.group(0) if match else cleaned

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError:
        return []

    if not isinstance(data, list):
        return []

    choices: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        choices.append(_normalise_choice(item, character_id))
        if len(choices) >= MAX_CHOICES:
            break
    return choices


def _normalise_choice(item: Mapping[str, Any], character_id: str) -> Dict[str, Any]:
    text_raw = item.get("text")
    consequence_raw = item.get("consequence")
    text = text_raw.strip() if isinstance(text_raw, str) else ""
    consequence = consequence_raw.strip() if isinstance(consequence_raw, str) else ""

    effect_raw = item.get("relationshipEffect", item.get("relationship_effect"))
    relationship_effect: Dict[str, int] = {}
    if isinstance(effect_raw, dict):
        for key, value in effect_raw.items():
            if isinstance(value, bool):
                continue
            try:
                delta = int(round(float(value)))
            except (TypeError, ValueError):
                continue
            relationship_effect[str(key)] = max(-MAX_RELATIONSHIP_EFFECT, min(MAX_RELATIONSHIP_EFFECT, delta))
    if not relationship_effect:
        relationship_effect = {character_id: 0}

    normalised: Dict[str, Any] = {
        "text": text or "Continue...",
        "consequence": consequence or "neutral response",
        "relationship_effect": relationship_effect,
    }

    unlock_raw = item.get("unlockCharacters", item.get("unlock_characters"))
    if isinstance(unlock_raw, list):
        unlocks = [entry.strip() for entry in unlock_raw if isinstance(entry, str) and entry.strip()]
        if unlocks:
            normalised["unlock_characters"] = unlocks

    if item.get("isPaywallLocked", item.get("is_paywall_locked")) is True:
        normalised["is_paywall_locked"] = True

    return normalised


def _render_prompt(key: str, **values: str) -> str:
    config_entry = _load_prompt_entry(key)
    prompt_template = config_entry.get("prompt_template")
    if not prompt_template:
        raise StoryGenerationError(f"Prompt template is missing for '{key}'.")
    return _apply_template(prompt_template, **values)


def _load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise StoryGenerationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise StoryGenerationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise StoryGenerationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise StoryGenerationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise StoryGenerationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise StoryGenerationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "max_new_tokens",
    "temperature",
    "top_p",
}


def _extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the providers."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def _get_story_generator() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if GENERATOR_CACHE_KEY in app.config:
        return app.config[GENERATOR_CACHE_KEY]

    provider = (app.config.get("STORY_AI_PROVIDER") or "none").strip().lower()
    timeout = float(app.config.get("AI_REQUEST_TIMEOUT") or 10)
    generator = None

    if provider == "openrouter":
        api_key = app.config.get("OPENROUTER_API_KEY")
        if not api_key:
            app.logger.error("OpenRouter API key is not configured; using fallback story content.")
        else:
            try:
                from api_handler import OpenRouterGenerator

                generator = OpenRouterGenerator(
                    app.config.get("OPENROUTER_MODEL", ""),
                    api_key,
                    base_url=app.config.get("OPENROUTER_API_URL") or "https://openrouter.ai/api/v1",
                    site_url=app.config.get("OPENROUTER_SITE_URL"),
                    app_title=app.config.get("OPENROUTER_APP_TITLE"),
                    timeout=timeout,
                )
            except Exception as exc:
                app.logger.warning("Failed to initialise the OpenRouter client: %s", exc)
    elif provider == "gemini":
        api_key = app.config.get("GEMINI_API_KEY")
        if not api_key:
            app.logger.error("Gemini API key is not configured; using fallback story content.")
        else:
            try:
                from gemini_handler import GeminiGenerator

                generator = GeminiGenerator(app.config.get("GEMINI_MODEL", ""), api_key, timeout=timeout)
            except Exception as exc:
                app.logger.warning("Failed to initialise the Gemini client: %s", exc)
    else:
        app.logger.info("STORY_AI_PROVIDER is '%s'; using fallback story content only.", provider)

    if generator is not None:
        app.logger.info("Story generator ready: %s (%s)", provider, generator.signature()[0])
    app.config[GENERATOR_CACHE_KEY] = generator
    return generator


_PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def _apply_template(template: str, **values: str) -> str:
    """Fill ``{name}`` placeholders in one pass; unknown names are left as-is."""

    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER_PATTERN.sub(substitute, template)
