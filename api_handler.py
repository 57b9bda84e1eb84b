# api_handler.py
from __future__ import annotations
from typing import Any, Dict, Optional, Tuple

import openai


DEFAULT_OPENROUTER_URL = "https://openrouter.ai/api/v1"
_DEBUG_LIMIT = 1200


class OpenRouterGenerator:
    """
    Story text generator backed by OpenRouter's OpenAI-compatible chat API.

    - One request per call: the client is built with ``max_retries=0`` so a
      slow or failing provider surfaces immediately and callers can fall back.
    - The referer/title headers identify the game in OpenRouter's dashboard.
    - Any response without text raises ``RuntimeError``.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        base_url: str = DEFAULT_OPENROUTER_URL,
        site_url: Optional[str] = None,
        app_title: Optional[str] = None,
        timeout: float = 10.0,
        default_max_tokens: int = 512,
    ) -> None:
        self.model_name = (model_name or "").strip()
        if not self.model_name:
            raise ValueError("An OpenRouter model name is required.")
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise RuntimeError("An OpenRouter API key is required to use the API backend.")
        self.default_max_tokens = int(default_max_tokens or 512)

        attribution = {
            "HTTP-Referer": site_url,
            "X-Title": app_title,
        }
        headers = {name: value for name, value in attribution.items() if value}

        self._client = openai.OpenAI(
            api_key=self.api_key,
            base_url=(base_url or DEFAULT_OPENROUTER_URL).rstrip("/"),
            timeout=float(timeout),
            max_retries=0,
            default_headers=headers or None,
        )

    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("A non-empty prompt is required.")
        limit = self.default_max_tokens if max_new_tokens is None else int(max_new_tokens)
        if limit <= 0:
            raise ValueError("max_new_tokens must be positive.")

        request: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": limit,
        }
        sampling = {"temperature": temperature, "top_p": top_p}
        request.update({key: float(value) for key, value in sampling.items() if value is not None})

        completion = self._client.chat.completions.create(**request)
        reply = _completion_text(completion).strip()
        if not reply:
            raw = str(completion).replace("\n", " ")
            if len(raw) > _DEBUG_LIMIT:
                raw = raw[:_DEBUG_LIMIT] + "…"
            raise RuntimeError(f"OpenRouter returned an empty reply: {raw}")
        return reply

    def signature(self) -> Tuple[str, str]:
        masked = f"{self.api_key[:4]}…{self.api_key[-4:]}" if self.api_key else ""
        return (self.model_name, masked)


def _completion_text(completion: Any) -> str:
    """Pull the first choice's text out of a chat completion.

    OpenRouter relays some providers' multi-part content as a list of
    ``{"type": "text", "text": ...}`` blocks; those are joined by newlines.
    """

    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if isinstance(content, list):
        blocks = [
            str(block.get("text") or "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(block for block in blocks if block)
    return str(content or "")
