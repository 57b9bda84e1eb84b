from flask import current_app, jsonify

from . import bp


@bp.route("/")
def index():
    config = current_app.config
    provider = (config.get("STORY_AI_PROVIDER") or "none").strip().lower()
    return jsonify(
        {
            "name": config.get("OPENROUTER_APP_TITLE") or "Interactive Story Chat",
            "status": "ok",
            "ai_provider": provider,
            "ai_configured": bool(
                (provider == "openrouter" and config.get("OPENROUTER_API_KEY"))
                or (provider == "gemini" and config.get("GEMINI_API_KEY"))
            ),
            "image_generation": bool(config.get("IMAGE_GENERATION_URL")),
        }
    )
