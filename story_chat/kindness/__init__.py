from flask import Blueprint

bp = Blueprint("kindness", __name__, url_prefix="/api/kindness")

from . import routes  # noqa: E402,F401
