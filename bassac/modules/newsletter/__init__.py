"""
Newsletter Module
=================

Double opt-in newsletter subscriptions: subscribe, confirm, unsubscribe,
preferences, and an admin list with stats and CSV export.
"""

from flask import Blueprint

newsletter_bp = Blueprint('newsletter', __name__, url_prefix='/api/newsletter')

from . import routes  # noqa: E402,F401
