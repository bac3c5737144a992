from flask import Blueprint

# Routes span /api/articles/<id>/comments and /api/comments
comments_bp = Blueprint('comments', __name__, url_prefix='/api')

from . import routes  # noqa: E402,F401
