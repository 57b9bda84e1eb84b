"""Send one short prompt to the configured story provider and print the reply."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from story_chat import create_app  # noqa: E402
from story_chat.services import story_ai  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--provider",
        choices=("openrouter", "gemini"),
        help="Override STORY_AI_PROVIDER for this check.",
    )
    parser.add_argument(
        "--prompt",
        default="Say hello in exactly 5 words.",
        help="Prompt sent to the provider.",
    )
    parser.add_argument("--max-tokens", type=int, default=50)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    app = create_app()
    if args.provider:
        app.config["STORY_AI_PROVIDER"] = args.provider

    with app.app_context():
        generator = story_ai._get_story_generator()
        if generator is None:
            print("No story provider is configured; check STORY_AI_PROVIDER and the API key.")
            return 1

        name, source = generator.signature()
        print(f"Testing {name} ({source})...")
        try:
            reply = generator.generate_response(args.prompt, max_new_tokens=args.max_tokens)
        except Exception as exc:
            print(f"Request failed: {exc}")
            return 1

    print(f"Reply: {reply}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
