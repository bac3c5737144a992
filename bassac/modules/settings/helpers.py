"""
Integration settings accessors.

Each value comes from the encrypted settings table first and falls back to
app config / environment variables, so keys can be set from the admin
panel without a redeploy.
"""

from .database import get_setting


# ===== Payments =====

def get_stripe_secret_key():
    return get_setting('STRIPE_SECRET_KEY')


def get_stripe_webhook_secret():
    return get_setting('STRIPE_WEBHOOK_SECRET')


def get_stripe_price_id(plan, interval):
    """Stripe price for a paid plan, e.g. STRIPE_PRICE_PREMIUM_YEARLY"""
    return get_setting(f"STRIPE_PRICE_{plan.upper()}_{interval.upper()}")


# ===== Sign-in providers =====

def _oauth_credentials(provider):
    prefix = provider.upper()
    return {
        'client_id': get_setting(f'{prefix}_CLIENT_ID'),
        'client_secret': get_setting(f'{prefix}_CLIENT_SECRET'),
    }


def get_google_oauth_credentials():
    return _oauth_credentials('google')


def get_github_oauth_credentials():
    return _oauth_credentials('github')


# ===== Media storage =====

def is_cloud_storage():
    """Uploads go to DigitalOcean Spaces when STORAGE_TYPE is 'cloud'"""
    return (get_setting('STORAGE_TYPE', 'local') or 'local').lower() == 'cloud'


def get_do_spaces_config():
    return {
        'region': get_setting('DO_SPACES_REGION'),
        'space_name': get_setting('DO_SPACES_NAME'),
        'access_key': get_setting('DO_SPACES_KEY'),
        'secret_key': get_setting('DO_SPACES_SECRET'),
    }


# ===== Links =====

def get_base_url():
    """Public site URL used in email links and checkout redirects"""
    url = get_setting('BASE_URL') or get_setting('FRONTEND_URL', 'http://localhost:5173')
    return url.rstrip('/')
