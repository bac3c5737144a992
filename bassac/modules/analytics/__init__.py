from flask import Blueprint

analytics_bp = Blueprint('analytics', __name__, url_prefix='/api/analytics')

from .analytics import Analytics, init_page_views_db  # noqa: E402,F401
from . import routes  # noqa: E402,F401
