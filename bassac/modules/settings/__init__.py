"""
Settings Module
===============

Site settings document (branding, menus, homepage, widgets, SEO, feature
toggles) plus the encrypted integration key/value store.
"""

from flask import Blueprint

settings_bp = Blueprint('settings', __name__, url_prefix='/api/settings')

from . import routes  # noqa: E402,F401
