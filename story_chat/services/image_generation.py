"""Map narrative prompts to illustration URLs."""

from __future__ import annotations

import base64
import random
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from flask import current_app


DEFAULT_STOCK_IMAGE = "https://images.pexels.com/photos/1314544/pexels-photo-1314544.jpeg"

STOCK_IMAGES: Dict[str, str] = {
    "glitch": "https://images.pexels.com/photos/1054289/pexels-photo-1054289.jpeg",
    "supernatural": "https://images.pexels.com/photos/1314544/pexels-photo-1314544.jpeg",
    "town": "https://images.pexels.com/photos/1105766/pexels-photo-1105766.jpeg",
    "mystery": "https://images.pexels.com/photos/1090638/pexels-photo-1090638.jpeg",
    "horror": "https://images.pexels.com/photos/1624438/pexels-photo-1624438.jpeg",
    "future": "https://images.pexels.com/photos/3913025/pexels-photo-3913025.jpeg",
}


@dataclass(frozen=True)
class PlaceholderTheme:
    seed_base: int
    grayscale: bool = False
    blur: Optional[int] = None


PLACEHOLDER_THEMES: Dict[str, PlaceholderTheme] = {
    "horror": PlaceholderTheme(seed_base=400, grayscale=True, blur=2),
    "mystery": PlaceholderTheme(seed_base=500, grayscale=True, blur=1),
    "supernatural": PlaceholderTheme(seed_base=600, grayscale=True),
    "romance": PlaceholderTheme(seed_base=700),
    "futuristic": PlaceholderTheme(seed_base=800),
    "character": PlaceholderTheme(seed_base=900),
    "landscape": PlaceholderTheme(seed_base=1000),
    "portrait": PlaceholderTheme(seed_base=1100),
}

_THEME_KEYWORDS = (
    ("horror", ("horror", "scary")),
    ("mystery", ("mystery", "suspense")),
    ("supernatural", ("supernatural", "ghost")),
    ("romance", ("romance", "love")),
    ("futuristic", ("future", "sci-fi")),
    ("landscape", ("landscape", "scenery")),
)

PORTRAIT_DIMENSIONS = "400/600"
LANDSCAPE_DIMENSIONS = "800/400"


@dataclass
class ImageResult:
    url: str
    source: str


def stock_image_for_prompt(prompt: str) -> str:
    lowered = (prompt or "").lower()
    for keyword, url in STOCK_IMAGES.items():
        if keyword in lowered:
            return url
    return DEFAULT_STOCK_IMAGE


def themed_placeholder_url(prompt: str, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    lowered = (prompt or "").lower()

    theme_name = "character"
    for candidate, keywords in _THEME_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            theme_name = candidate
            break

    theme = PLACEHOLDER_THEMES[theme_name]
    dimensions = LANDSCAPE_DIMENSIONS if theme_name == "landscape" else PORTRAIT_DIMENSIONS
    seed = theme.seed_base + rng.randrange(100)

    url = f"https://picsum.photos/{dimensions}?random={seed}"
    if theme.grayscale:
        url += "&grayscale"
    if theme.blur:
        url += f"&blur={theme.blur}"
    return url


def generate_image(prompt: str, *, rng: Optional[random.Random] = None) -> ImageResult:
    """Return an illustration for ``prompt``.

    With the Gemini story provider, which cannot draw, a keyword-matched stock
    photo is returned. Otherwise the Hugging Face inference endpoint is tried
    first and any failure (network, non-200 status, empty body) drops to a
    themed placeholder image.
    """

    prompt_text = (prompt or "").strip()
    provider = (current_app.config.get("STORY_AI_PROVIDER") or "").strip().lower()
    if provider == "gemini":
        return ImageResult(url=stock_image_for_prompt(prompt_text), source="stock")

    data_url = _generate_with_hugging_face(prompt_text) if prompt_text else None
    if data_url:
        return ImageResult(url=data_url, source="hugging_face")
    return ImageResult(url=themed_placeholder_url(prompt_text, rng), source="placeholder")


def _generate_with_hugging_face(prompt: str) -> Optional[str]:
    app = current_app
    endpoint = app.config.get("IMAGE_GENERATION_URL")
    if not endpoint:
        return None

    headers = {"Content-Type": "application/json"}
    token = app.config.get("HUGGING_FACE_API_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    payload = {
        "inputs": f"{prompt}, high quality, detailed, digital art",
        "parameters": {
            "guidance_scale": 7.5,
            "num_inference_steps": 20,
        },
    }

    try:
        response = requests.post(
            endpoint,
            json=payload,
            headers=headers,
            timeout=float(app.config.get("IMAGE_REQUEST_TIMEOUT") or 20),
        )
    except requests.RequestException as exc:
        app.logger.warning("Hugging Face image generation failed; using placeholder. Error: %s", exc)
        return None

    if response.status_code != 200 or not response.content:
        app.logger.info("Hugging Face returned status %s; using placeholder image.", response.status_code)
        return None

    content_type = response.headers.get("Content-Type", "image/png").split(";")[0].strip()
    if not content_type.startswith("image/"):
        return None
    encoded = base64.b64encode(response.content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"
