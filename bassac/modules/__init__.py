"""
Bassac feature modules.

Each module is a Flask blueprint package with its own database helpers and
routes. The Bassac extension registers them unless disabled in ``features``.
"""

__all__ = [
    'ads',
    'analytics',
    'articles',
    'auth',
    'categories',
    'comments',
    'dashboard',
    'email',
    'newsletter',
    'notifications',
    'ops',
    'search',
    'settings',
    'subscriptions',
]
