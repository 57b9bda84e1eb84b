# gemini_handler.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from google import genai


class GeminiGenerator:
    """Thin wrapper around ``google-genai`` exposing the shared generator API.

    Mirrors :class:`api_handler.OpenRouterGenerator`: a single
    ``generate_response`` call per prompt, raising when the model returns no
    text so the caller can substitute its own fallback content.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        default_max_tokens: int = 512,
    ) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        if not self.model_name:
            raise ValueError("model_name must be a non-empty string.")
        if not self.api_key:
            raise RuntimeError("A Gemini API key is required to use the Gemini backend.")
        self.default_max_tokens = int(default_max_tokens or 512)
        # google-genai expects the timeout in milliseconds.
        self._client = genai.Client(
            api_key=self.api_key,
            http_options={"timeout": int(float(timeout) * 1000)},
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
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        config: Dict[str, Any] = {"max_output_tokens": max_tokens}
        if temperature is not None:
            config["temperature"] = float(temperature)
        if top_p is not None:
            config["top_p"] = float(top_p)

        resp = self._client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=config,
        )
        text = (self._extract_text(resp) or "").strip()
        if text:
            return text
        raise RuntimeError("Gemini returned no text content.")

    def signature(self) -> Tuple[str, str]:
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    @staticmethod
    def _extract_text(resp: Any) -> str:
        try:
            text = getattr(resp, "text", None)
        except ValueError:
            # ``.text`` raises when the candidate was blocked.
            text = None
        if text:
            return str(text)

        parts: List[str] = []
        for candidate in getattr(resp, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                value = getattr(part, "text", None)
                if value:
                    parts.append(str(value))
            if parts:
                break
        return "\n".join(parts)
