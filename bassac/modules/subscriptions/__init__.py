"""
Subscriptions Module
====================

Plans, the per-user subscription ledger, the premium paywall and Stripe
Checkout.
"""

from flask import Blueprint

subscriptions_bp = Blueprint('subscriptions', __name__, url_prefix='/api/subscriptions')

from . import routes  # noqa: E402,F401
