"""
Ops Module
==========

Public /health endpoint for uptime monitors and load balancers. Reports disk,
memory, uptime, database and cache checks; answers 503 when critical.
"""

from flask import Blueprint

ops_health_bp = Blueprint('ops_health', __name__, url_prefix='/health')

from . import routes  # noqa: E402,F401
