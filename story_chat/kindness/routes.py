from flask import jsonify, request

from ..services.kindness import KindnessEntryError, KindnessJournal
from ..services.storage import SQLAlchemyStorage
from . import bp
from .forms import KindnessEntryForm


def _journal() -> KindnessJournal:
    return KindnessJournal(SQLAlchemyStorage())


@bp.route("/entries", methods=["GET"])
def list_entries():
    limit = request.args.get("limit", default=10, type=int)
    entries = _journal().get_recent_entries(limit=max(1, min(limit, 100)))
    return jsonify({"entries": [entry.to_dict() for entry in entries]})


@bp.route("/entries", methods=["POST"])
def add_entry():
    form = KindnessEntryForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Check the kindness entry and try again.", "fields": form.errors}), 400

    try:
        entry = _journal().add_entry(
            type=form.type.data,
            description=form.description.data,
            value=form.value.data,
            category=form.category.data,
        )
    except KindnessEntryError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"entry": entry.to_dict()}), 201


@bp.route("/stats", methods=["GET"])
def stats():
    journal = _journal()
    payload = journal.get_stats().to_dict()
    payload["total_value"] = journal.get_total_value()
    return jsonify(payload)
