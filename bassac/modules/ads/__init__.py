"""
Ads Module
==========

Ad inventory with server-side selection (targeting, schedule, frequency
capping, weighted rotation), impression/click tracking and daily stats.
"""

from flask import Blueprint

ads_bp = Blueprint('ads', __name__, url_prefix='/api/ads')

from . import routes  # noqa: E402,F401
