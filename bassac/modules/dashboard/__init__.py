"""
Dashboard Module
================

Staff dashboard API:
- Site-wide statistics (articles, users, comments, subscribers, subscriptions, views)
- Recent application logs for admins
"""

from flask import Blueprint

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')

from . import routes  # noqa: E402,F401

__all__ = ['dashboard_bp']
