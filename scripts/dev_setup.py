"""Prepare a local .env for the story chat API and create its database tables."""
from __future__ import annotations

import argparse
import secrets
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from story_chat import create_app, db  # noqa: E402

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"
PROVIDERS = ("openrouter", "gemini", "none")
SECRET_KEYS = {"SECRET_KEY", "OPENROUTER_API_KEY", "GEMINI_API_KEY", "HUGGING_FACE_API_TOKEN"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Write the Flask and AI provider settings to .env and initialise the database."
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        help="Story AI provider stored as STORY_AI_PROVIDER.",
    )
    parser.add_argument("--openrouter-key", help="API key for OpenRouter (DeepSeek models).")
    parser.add_argument("--gemini-key", help="API key for Google Gemini.")
    parser.add_argument("--hugging-face-token", help="Token for the image generation endpoint.")
    parser.add_argument(
        "--secret-key",
        help="Flask secret key. A random one is generated when .env does not have one yet.",
    )
    parser.add_argument("--database-url", help="Override DATABASE_URL (optional).")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument("--skip-db", action="store_true", help="Only update the .env file.")
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    path.write_text("".join(f"{key}={value}\n" for key, value in values.items()))
    print(f"Environment written to {path}.")


def collect_updates(args: argparse.Namespace, current: Dict[str, str]) -> Dict[str, str]:
    updates = {"FLASK_APP": args.flask_app}
    if args.secret_key:
        updates["SECRET_KEY"] = args.secret_key
    elif not current.get("SECRET_KEY"):
        updates["SECRET_KEY"] = secrets.token_hex(32)

    optional = {
        "STORY_AI_PROVIDER": args.provider,
        "OPENROUTER_API_KEY": args.openrouter_key,
        "GEMINI_API_KEY": args.gemini_key,
        "HUGGING_FACE_API_TOKEN": args.hugging_face_token,
        "DATABASE_URL": args.database_url,
    }
    updates.update({key: value for key, value in optional.items() if value})
    return updates


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
    print(f"Database initialised ({app.config['SQLALCHEMY_DATABASE_URI']}).")


def _mask(key: str, value: str) -> str:
    if key in SECRET_KEYS and value:
        return value[:4] + "..."
    return value


def main() -> None:
    args = parse_args()
    env_values = read_env(args.env_path)
    env_values.update(collect_updates(args, env_values))
    write_env(args.env_path, env_values)

    if args.skip_db:
        print("Database initialisation skipped.")
    else:
        initialize_database()

    print("\nSetup complete:")
    for key in sorted(env_values):
        print(f"  {key}={_mask(key, env_values[key])}")


if __name__ == "__main__":
    main()
