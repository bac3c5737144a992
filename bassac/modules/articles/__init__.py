"""
Articles Module
===============

Editor.js articles with an editorial review workflow, translations, premium
paywall and buffered view counting.
"""

from flask import Blueprint

articles_bp = Blueprint('articles', __name__, url_prefix='/api/articles')
translations_bp = Blueprint('translations', __name__, url_prefix='/api/translations')

from . import routes, translation_routes  # noqa: E402,F401
