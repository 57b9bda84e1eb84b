import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'story_chat.db'}"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "openrouter", "gemini" or "none" (static fallback content only).
    STORY_AI_PROVIDER = os.environ.get("STORY_AI_PROVIDER", "openrouter")
    AI_REQUEST_TIMEOUT = float(os.environ.get("AI_REQUEST_TIMEOUT", "10"))

    OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY", "")
    OPENROUTER_API_URL = os.environ.get("OPENROUTER_API_URL", "https://openrouter.ai/api/v1")
    OPENROUTER_MODEL = os.environ.get("OPENROUTER_MODEL", "deepseek/deepseek-chat-v3-0324:free")
    OPENROUTER_SITE_URL = os.environ.get("OPENROUTER_SITE_URL", "https://chat2.app")
    OPENROUTER_APP_TITLE = os.environ.get("OPENROUTER_APP_TITLE", "Interactive Story Chat")

    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-pro")

    STORY_RESPONSE_DELAY = float(os.environ.get("STORY_RESPONSE_DELAY", "1.5"))
    STORY_BACKGROUND_TASKS = _env_flag("STORY_BACKGROUND_TASKS", True)

    IMAGE_GENERATION_URL = os.environ.get(
        "IMAGE_GENERATION_URL",
        "https://api-inference.huggingface.co/models/runwayml/stable-diffusion-v1-5",
    )
    HUGGING_FACE_API_TOKEN = os.environ.get("HUGGING_FACE_API_TOKEN", "")
    IMAGE_REQUEST_TIMEOUT = float(os.environ.get("IMAGE_REQUEST_TIMEOUT", "20"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORY_AI_PROVIDER = "none"
    STORY_RESPONSE_DELAY = 0.0
    STORY_BACKGROUND_TASKS = False
    IMAGE_GENERATION_URL = ""
