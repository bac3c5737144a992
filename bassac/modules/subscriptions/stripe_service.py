"""
Stripe Checkout and webhooks for paid plans.

Keys come from the settings store (STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
so they can be rotated from the admin without a redeploy.
"""

import logging

import stripe

from bassac.core.logging_service import db_log
from bassac.core.responses import ApiError, BadRequestError
from bassac.modules.settings.helpers import (
    get_base_url, get_stripe_price_id, get_stripe_secret_key, get_stripe_webhook_secret,
)
from .database import get_by_stripe_subscription, get_or_create
from .plans import PLANS, plan_price

logger = logging.getLogger(__name__)


class PaymentsNotConfigured(ApiError):
    status_code = 503
    default_message = 'Payments are not configured'


def _api_key():
    key = get_stripe_secret_key()
    if not key:
        raise PaymentsNotConfigured()
    return key


def _line_item(plan, interval):
    price_id = get_stripe_price_id(plan, interval)
    if price_id:
        return {'price': price_id, 'quantity': 1}
    return {
        'price_data': {
            'currency': 'usd',
            'unit_amount': int(round(plan_price(plan, interval) * 100)),
            'recurring': {'interval': 'year' if interval == 'yearly' else 'month'},
            'product_data': {'name': f"{PLANS[plan]['name']} plan"},
        },
        'quantity': 1,
    }


def create_checkout_session(user, plan, interval='monthly'):
    """Create a subscription Checkout Session. Returns {session_id, url}"""
    if plan not in PLANS or plan == 'free':
        raise BadRequestError('Invalid plan')
    if interval not in ('monthly', 'yearly'):
        raise BadRequestError('Invalid billing interval')

    api_key = _api_key()
    base_url = get_base_url()
    subscription = get_or_create(user['id'])

    params = {
        'mode': 'subscription',
        'line_items': [_line_item(plan, interval)],
        'success_url': f"{base_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
        'cancel_url': f"{base_url}/pricing",
        'client_reference_id': str(user['id']),
        'metadata': {'user_id': str(user['id']), 'plan': plan, 'interval': interval},
        'api_key': api_key,
    }
    if subscription.get('stripe_customer_id'):
        params['customer'] = subscription['stripe_customer_id']
    else:
        params['customer_email'] = user['email']

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for user {user['id']}: {e}")
        db_log('error', 'subscriptions', 'Stripe checkout failed', {'user_id': user['id'], 'error': str(e)})
        raise ApiError('Could not start checkout', status_code=502)

    return {'session_id': session.id, 'url': session.url}


def construct_event(payload, signature):
    secret = get_stripe_webhook_secret()
    if not secret:
        raise PaymentsNotConfigured()
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError:
        raise BadRequestError('Invalid payload')
    except stripe.SignatureVerificationError:
        raise BadRequestError('Invalid signature')


def handle_event(event):
    """Apply a verified webhook event. Returns a short description of what happened"""
    event_type = event['type']
    obj = event['data']['object']

    if event_type == 'checkout.session.completed':
        metadata = obj.get('metadata') or {}
        user_id = metadata.get('user_id') or obj.get('client_reference_id')
        plan = metadata.get('plan')
        if not user_id or plan not in PLANS:
            logger.warning(f"Checkout session {obj.get('id')} has no usable metadata")
            return 'ignored'

        subscription = get_or_create(int(user_id))
        subscription.upgrade_plan(
            plan, metadata.get('interval') or 'monthly', payment_provider='stripe',
            stripe_customer_id=obj.get('customer'), stripe_subscription_id=obj.get('subscription'),
        )
        db_log('info', 'subscriptions', f'Subscription upgraded to {plan} via Stripe', {'user_id': user_id})
        return 'upgraded'

    if event_type == 'customer.subscription.deleted':
        subscription = get_by_stripe_subscription(obj.get('id'))
        if not subscription:
            return 'ignored'
        subscription.cancel('Cancelled in Stripe')
        db_log('info', 'subscriptions', 'Subscription cancelled via Stripe', {'user_id': subscription['user_id']})
        return 'cancelled'

    return 'ignored'
