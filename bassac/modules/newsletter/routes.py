"""
Newsletter Routes
=================

Provides:
- POST /subscribe -- subscribe (double opt-in, sends a confirmation email)
- GET /confirm/<token> -- confirm a pending subscription
- POST /unsubscribe -- unsubscribe by token or email
- GET /preferences -- read preferences by unsubscribe token
- PUT /preferences -- update preferences by unsubscribe token
- GET / -- list subscribers with stats (admin)
- GET /stats -- subscriber counts (admin)
- DELETE /<id> -- remove a subscriber (admin)
- GET /export -- CSV export (admin)
"""

import logging
import time

from flask import Response, request

from bassac.core.cache import cache
from bassac.core.helpers import get_client_ip, hash_ip, paginate_params, utcnow
from bassac.core.logging_service import db_log
from bassac.core.responses import (
    BadRequestError, ForbiddenError, NotFoundError, created_response, paginated_response, success_response,
)
from bassac.modules.auth.database import EMAIL_REGEX
from bassac.modules.auth.decorators import is_admin
from bassac.modules.email import email_service
from bassac.modules.notifications.service import notify_newsletter_subscribed
from bassac.modules.settings.database import is_feature_enabled
from . import newsletter_bp
from .database import (
    STATUSES, confirm_subscriber, create_subscriber, delete_subscriber, export_csv, get_subscriber_by_confirm_token,
    get_subscriber_by_email, get_subscriber_by_unsubscribe_token, get_subscriber_stats, list_subscribers,
    public_subscriber, refresh_confirm_token, resubscribe, unsubscribe_subscriber, update_preferences,
)

logger = logging.getLogger(__name__)

SUBSCRIBED_MESSAGE = 'Thank you for subscribing! Please check your email to confirm.'


# ===================
# BOT DETECTION
# ===================

IP_RATE_LIMIT = 3           # signups per IP
IP_RATE_WINDOW = 3600       # seconds
MIN_SUBMIT_TIME = 3         # seconds between form load and submit


def is_scattered_dot_email(email):
    """Bot Gmail pattern: scattered dots like b.g.r.o.ds.ki@gmail.com"""
    local = email.split('@')[0]
    dot_count = local.count('.')
    char_count = len(local.replace('.', ''))
    if char_count == 0:
        return True
    return dot_count >= 3 and dot_count / char_count > 0.15


def check_ip_rate_limit(ip):
    """Record a signup attempt for this IP. Returns True once the hourly limit is reached"""
    now = time.time()
    key = cache.key('newsletter', 'signups', hash_ip(ip or 'unknown'))
    attempts = [t for t in (cache.get(key) or []) if now - t < IP_RATE_WINDOW]
    if len(attempts) >= IP_RATE_LIMIT:
        return True
    attempts.append(now)
    cache.set(key, attempts, IP_RATE_WINDOW)
    return False


def detect_bot(data, email, ip_address):
    """Returns (is_bot, reason)"""
    if data.get('website') or data.get('url'):
        return True, 'honeypot'

    form_ts = data.get('_ts')
    if form_ts:
        try:
            if time.time() - float(form_ts) < MIN_SUBMIT_TIME:
                return True, 'too_fast'
        except (TypeError, ValueError):
            pass

    if email.endswith('@gmail.com') and is_scattered_dot_email(email):
        return True, 'scattered_dots'

    if check_ip_rate_limit(ip_address):
        return True, 'rate_limited'

    return False, None


def _send_confirmation(subscriber):
    try:
        email_service.send_newsletter_confirmation(subscriber)
    except Exception as e:
        logger.error(f"Failed to send newsletter confirmation to {subscriber['email']}: {e}")
        db_log('error', 'newsletter', 'Confirmation email failed', {'email': subscriber['email'], 'error': str(e)})


def _subscriber_from_request(data):
    """Look up a subscriber by unsubscribe token (preferred) or email"""
    token = data.get('token')
    if token:
        subscriber = get_subscriber_by_unsubscribe_token(token)
    elif data.get('email'):
        subscriber = get_subscriber_by_email(data['email'].strip().lower())
    else:
        raise BadRequestError('Token or email is required')
    if not subscriber:
        raise NotFoundError('Subscriber not found')
    return subscriber


# ===================
# PUBLIC API ROUTES
# ===================

@newsletter_bp.route('/subscribe', methods=['POST'])
def subscribe():
    if not is_feature_enabled('enableNewsletter'):
        raise ForbiddenError('Newsletter is disabled')

    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    if not email:
        raise BadRequestError('Email address is required')
    if not EMAIL_REGEX.match(email):
        raise BadRequestError('Please enter a valid email address')

    ip_address = get_client_ip()
    bot, reason = detect_bot(data, email, ip_address)
    if bot:
        logger.info(f"Bot signup blocked: {email} (reason: {reason})")
        db_log('warning', 'newsletter', f'Bot signup blocked: {reason}', {'email': email, 'ip': ip_address})
        return created_response(None, SUBSCRIBED_MESSAGE)

    name = (data.get('name') or '').strip()[:100] or None
    source = data.get('source') or 'website'
    existing = get_subscriber_by_email(email)

    if existing and existing['status'] == 'confirmed':
        return success_response(None, 'You are already subscribed!')

    if existing and existing['status'] == 'pending':
        _send_confirmation(refresh_confirm_token(existing))
        return success_response(None, 'Confirmation email resent. Please check your inbox.')

    if existing:
        subscriber = resubscribe(existing, name=name, source=source)
        _send_confirmation(subscriber)
        logger.info(f"Resubscribed: {email}")
        return created_response(None, 'Welcome back! Please check your email to confirm your subscription.')

    subscriber = create_subscriber(email, name=name, source=source, preferences=data.get('preferences'),
                                   ip_address=ip_address)
    _send_confirmation(subscriber)
    logger.info(f"New newsletter subscriber: {email}")
    db_log('info', 'newsletter', 'New subscriber', {'email': email, 'source': subscriber['source']})
    return created_response(None, SUBSCRIBED_MESSAGE)


@newsletter_bp.route('/confirm/<token>', methods=['GET', 'POST'])
def confirm(token):
    subscriber = get_subscriber_by_confirm_token(token)
    if not subscriber or subscriber['status'] != 'pending':
        raise BadRequestError('Invalid or expired confirmation link')

    subscriber = confirm_subscriber(subscriber)
    notify_newsletter_subscribed(subscriber['email'], subscriber['source'])
    db_log('info', 'newsletter', 'Subscription confirmed', {'email': subscriber['email']})
    return success_response(public_subscriber(subscriber), 'Your subscription has been confirmed!')


@newsletter_bp.route('/unsubscribe', methods=['POST'])
def unsubscribe():
    subscriber = _subscriber_from_request(request.get_json(silent=True) or {})
    if subscriber['status'] == 'unsubscribed':
        return success_response(None, 'You are already unsubscribed.')

    unsubscribe_subscriber(subscriber)
    logger.info(f"Unsubscribed: {subscriber['email']}")
    db_log('info', 'newsletter', 'Unsubscribed', {'email': subscriber['email']})
    return success_response(None, 'You have been unsubscribed.')


@newsletter_bp.route('/preferences', methods=['GET'])
def get_preferences():
    subscriber = _subscriber_from_request({'token': request.args.get('token')})
    return success_response(public_subscriber(subscriber))


@newsletter_bp.route('/preferences', methods=['PUT'])
def put_preferences():
    data = request.get_json(silent=True) or {}
    if not data.get('token'):
        raise BadRequestError('Token is required')
    subscriber = _subscriber_from_request({'token': data['token']})
    if not isinstance(data.get('preferences'), dict):
        raise BadRequestError('Preferences are required')

    subscriber = update_preferences(subscriber, data['preferences'])
    return success_response(public_subscriber(subscriber), 'Preferences updated')


# ===================
# ADMIN ROUTES
# ===================

@newsletter_bp.route('', methods=['GET'])
@is_admin
def admin_list():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    status = request.args.get('status')
    if status and status not in STATUSES:
        raise BadRequestError('Invalid status')
    subscribers, total = list_subscribers(status, request.args.get('q'), limit, offset)
    return paginated_response(subscribers, page, limit, total, 'Subscribers retrieved successfully',
                              stats=get_subscriber_stats())


@newsletter_bp.route('/stats', methods=['GET'])
@is_admin
def stats():
    return success_response(get_subscriber_stats())


@newsletter_bp.route('/<int:subscriber_id>', methods=['DELETE'])
@is_admin
def remove(subscriber_id):
    delete_subscriber(subscriber_id)
    db_log('info', 'newsletter', 'Subscriber deleted', {'id': subscriber_id})
    return success_response(None, 'Subscriber deleted successfully')


@newsletter_bp.route('/export', methods=['GET'])
@is_admin
def export():
    status = request.args.get('status') or 'confirmed'
    if status not in STATUSES and status != 'all':
        raise BadRequestError('Invalid status')
    body, count = export_csv(None if status == 'all' else status)
    filename = f"subscribers-{utcnow().strftime('%Y%m%d')}.csv"
    db_log('info', 'newsletter', 'Subscribers exported', {'status': status, 'count': count})
    return Response(body, mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename={filename}'})
