from flask import current_app, jsonify

from ..services.image_generation import generate_image
from ..services.story_service import (
    CharacterUnavailableError,
    ChoiceLockedError,
    ChoiceNotFoundError,
    ConversationNotFoundError,
    GameNotInitializedError,
    StoryServiceError,
    get_story_service,
)
from . import bp
from .forms import ChoiceForm, FlagForm, ImageForm, PlayerNameForm


_ERROR_STATUS = (
    (GameNotInitializedError, 409),
    (CharacterUnavailableError, 403),
    (ConversationNotFoundError, 404),
    (ChoiceNotFoundError, 404),
    (ChoiceLockedError, 402),
)


@bp.errorhandler(StoryServiceError)
def handle_story_error(exc: StoryServiceError):
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return jsonify({"error": str(exc)}), status
    current_app.logger.exception("Unhandled story service error")
    return jsonify({"error": "The story could not continue right now. Please try again."}), 500


def _form_error(form, message: str):
    return jsonify({"error": message, "fields": form.errors}), 400


def _current_state():
    service = get_story_service()
    state = service.get_game_state()
    if state is None:
        state = service.load_game()
    return state


@bp.route("/game", methods=["GET"])
def get_game():
    state = _current_state()
    if state is None:
        return jsonify({"error": "No saved game found."}), 404
    return jsonify({"game": state.to_dict()})


@bp.route("/game", methods=["POST"])
def start_game():
    form = PlayerNameForm()
    if not form.validate_on_submit():
        return _form_error(form, "Enter a player name to begin.")

    state = get_story_service().initialize_game(form.player_name.data)
    return jsonify({"game": state.to_dict()}), 201


@bp.route("/game", methods=["DELETE"])
def reset_game():
    get_story_service().reset_game()
    return jsonify({"status": "reset"})


@bp.route("/game/progress", methods=["GET"])
def game_progress():
    if _current_state() is None:
        raise GameNotInitializedError("Game not initialized")
    return jsonify(get_story_service().progress_summary())


@bp.route("/game/flags/<string:flag>", methods=["PUT"])
def set_flag(flag: str):
    form = FlagForm()
    if not form.validate_on_submit():
        return _form_error(form, "Flag value must be true or false.")

    _current_state()
    flags = get_story_service().set_global_flag(flag, bool(form.value.data))
    return jsonify({"flags": flags})


@bp.route("/contacts", methods=["GET"])
def contacts():
    _current_state()
    return jsonify({"contacts": get_story_service().contacts_overview()})


@bp.route("/characters/<string:character_id>/unlock", methods=["POST"])
def unlock_character(character_id: str):
    _current_state()
    try:
        character = get_story_service().unlock_character(character_id)
    except CharacterUnavailableError:
        return jsonify({"error": "Unknown character."}), 404
    return jsonify({"character": character.to_dict()})


@bp.route("/conversations/<string:character_id>", methods=["POST"])
def start_conversation(character_id: str):
    _current_state()
    conversation = get_story_service().start_conversation(character_id)
    return jsonify({"conversation": conversation.to_dict()})


@bp.route("/conversations/<string:character_id>", methods=["GET"])
def get_conversation(character_id: str):
    state = _current_state()
    if state is None:
        raise GameNotInitializedError("Game not initialized")

    conversation = state.conversations.get(character_id)
    if conversation is None:
        raise ConversationNotFoundError("Conversation not found")
    return jsonify(
        {
            "conversation": conversation.to_dict(),
            "is_typing": conversation.is_typing,
        }
    )


@bp.route("/conversations/<string:character_id>/choices", methods=["POST"])
def make_choice(character_id: str):
    form = ChoiceForm()
    if not form.validate_on_submit():
        return _form_error(form, "Select a choice to continue.")

    _current_state()
    conversation = get_story_service().make_choice(character_id, form.choice_id.data)
    return jsonify(
        {
            "conversation": conversation.to_dict(),
            "is_typing": conversation.is_typing,
        }
    ), 202


@bp.route("/conversations/<string:character_id>/read", methods=["POST"])
def mark_read(character_id: str):
    _current_state()
    updated = get_story_service().mark_conversation_read(character_id)
    return jsonify({"updated": updated})


@bp.route("/images", methods=["POST"])
def create_image():
    form = ImageForm()
    if not form.validate_on_submit():
        return _form_error(form, "Describe the image you want to see.")

    result = generate_image(form.prompt.data)
    return jsonify({"url": result.url, "source": result.source})
