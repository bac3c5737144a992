from flask import g, request

from bassac.core.helpers import paginate_params
from bassac.core.logging_service import logger
from bassac.core.responses import NotFoundError, paginated_response, success_response
from bassac.modules.articles.database import get_article_by_id_db
from bassac.modules.auth.database import UserDatabase
from bassac.modules.auth.decorators import is_admin, is_staff, login_required
from . import subscriptions_bp
from .database import get_or_create, get_subscription_stats, list_subscriptions
from .plans import public_plans
from .stripe_service import construct_event, create_checkout_session, handle_event


@subscriptions_bp.route('/plans', methods=['GET'])
def plans():
    return success_response(public_plans(), 'Plans retrieved successfully')


@subscriptions_bp.route('/me', methods=['GET'])
@login_required
def my_subscription():
    return success_response(get_or_create(g.user['id']).to_dict(), 'Subscription retrieved successfully')


@subscriptions_bp.route('/upgrade', methods=['POST'])
@login_required
def upgrade():
    """
    Change the caller's plan. Moving to the free plan applies at once; a
    paid plan starts a Stripe checkout and is granted by the webhook.
    """
    data = request.get_json(silent=True) or {}
    if data.get('plan') != 'free':
        session = create_checkout_session(g.user, data.get('plan'), data.get('interval') or 'monthly')
        return success_response(session, 'Checkout session created')

    subscription = get_or_create(g.user['id']).upgrade_plan('free', payment_provider='free')
    logger.log_user_action('subscriptions', 'downgrade', g.user['id'], {'plan': 'free'})
    return success_response(subscription.to_dict(), 'Subscription changed successfully')


@subscriptions_bp.route('/users/<int:user_id>', methods=['PUT'])
@is_admin
def grant(user_id):
    """Admin grant of a plan outside Stripe (comped or invoiced accounts)"""
    if not UserDatabase.get_user_by_id(user_id):
        raise NotFoundError('User not found')

    data = request.get_json(silent=True) or {}
    subscription = get_or_create(user_id).upgrade_plan(data.get('plan'), data.get('interval') or 'monthly',
                                                       payment_provider='manual')
    logger.log_user_action('subscriptions', 'grant_plan', g.user['id'],
                           {'user_id': user_id, 'plan': data.get('plan')})
    return success_response(subscription.to_dict(), 'Subscription updated successfully')


@subscriptions_bp.route('/cancel', methods=['POST'])
@login_required
def cancel():
    data = request.get_json(silent=True) or {}
    subscription = get_or_create(g.user['id']).cancel(data.get('reason'))
    logger.log_user_action('subscriptions', 'cancel', g.user['id'])
    return success_response(subscription.to_dict(), 'Subscription cancelled successfully')


@subscriptions_bp.route('/reactivate', methods=['POST'])
@login_required
def reactivate():
    subscription = get_or_create(g.user['id']).reactivate()
    return success_response(subscription.to_dict(), 'Subscription reactivated successfully')


@subscriptions_bp.route('/trial', methods=['POST'])
@login_required
def start_trial():
    subscription = get_or_create(g.user['id']).start_trial()
    logger.log_user_action('subscriptions', 'start_trial', g.user['id'])
    return success_response(subscription.to_dict(), 'Trial started successfully')


@subscriptions_bp.route('/access/<int:article_id>', methods=['GET'])
@login_required
def check_access(article_id):
    article = get_article_by_id_db(article_id)
    if not article:
        raise NotFoundError('Article not found')

    subscription = get_or_create(g.user['id'])
    has_access = is_staff(g.user) or article['author_id'] == g.user['id'] \
        or subscription.can_access_article(article)
    return success_response({
        'has_access': has_access,
        'is_premium': article['is_premium'],
        'subscription': subscription.to_dict(),
    }, 'Access checked')


@subscriptions_bp.route('/checkout', methods=['POST'])
@login_required
def checkout():
    data = request.get_json(silent=True) or {}
    session = create_checkout_session(g.user, data.get('plan'), data.get('interval') or 'monthly')
    return success_response(session, 'Checkout session created')


@subscriptions_bp.route('/webhook', methods=['POST'])
def webhook():
    event = construct_event(request.get_data(), request.headers.get('Stripe-Signature', ''))
    result = handle_event(event)
    return success_response({'received': True, 'result': result}, 'Webhook processed')


@subscriptions_bp.route('', methods=['GET'])
@is_admin
def list_all():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    items, total = list_subscriptions(request.args.get('plan'), request.args.get('status'), limit, offset)
    return paginated_response(items, page, limit, total, 'Subscriptions retrieved successfully')


@subscriptions_bp.route('/stats', methods=['GET'])
@is_admin
def stats():
    return success_response(get_subscription_stats(), 'Subscription statistics retrieved')
