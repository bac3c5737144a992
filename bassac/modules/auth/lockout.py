"""Login lockout: 5 failures inside 15 minutes lock the email for 15 minutes."""

import math
import time

from bassac.core.cache import cache

MAX_ATTEMPTS = 5
ATTEMPT_WINDOW = 15 * 60
LOCKOUT_DURATION = 15 * 60


def _attempts_key(email):
    return cache.key('login', 'attempts', email.lower())


def _lock_key(email):
    return cache.key('login', 'lock', email.lower())


def lock_remaining_minutes(email):
    """Minutes left on an active lock, or 0 when the email is not locked"""
    locked_until = cache.get(_lock_key(email))
    if not locked_until:
        return 0
    remaining = locked_until - time.time()
    return math.ceil(remaining / 60) if remaining > 0 else 0


def record_failure(email):
    """Register a failed attempt. Returns the attempts remaining before lockout"""
    now = time.time()
    attempts = [t for t in (cache.get(_attempts_key(email)) or []) if now - t < ATTEMPT_WINDOW]
    attempts.append(now)

    if len(attempts) >= MAX_ATTEMPTS:
        cache.set(_lock_key(email), now + LOCKOUT_DURATION, LOCKOUT_DURATION)
        cache.delete(_attempts_key(email))
        return 0

    cache.set(_attempts_key(email), attempts, ATTEMPT_WINDOW)
    return MAX_ATTEMPTS - len(attempts)


def clear_failures(email):
    cache.delete(_attempts_key(email))
    cache.delete(_lock_key(email))
