import logging

from authlib.integrations.flask_client import OAuth

from bassac.modules.settings.helpers import get_github_oauth_credentials, get_google_oauth_credentials

logger = logging.getLogger(__name__)

PROVIDERS = ('google', 'github')

oauth = OAuth()


def configure_oauth(app):
    """Register the OAuth providers that have credentials. Returns the registered names"""
    oauth.init_app(app)
    registered = []

    with app.app_context():
        google = get_google_oauth_credentials()
        github = get_github_oauth_credentials()

    if google['client_id'] and google['client_secret'] and oauth.create_client('google') is None:
        oauth.register(
            name='google',
            client_id=google['client_id'],
            client_secret=google['client_secret'],
            server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
            client_kwargs={'scope': 'openid email profile'},
        )
    if oauth.create_client('google') is not None:
        registered.append('google')

    if github['client_id'] and github['client_secret'] and oauth.create_client('github') is None:
        oauth.register(
            name='github',
            client_id=github['client_id'],
            client_secret=github['client_secret'],
            access_token_url='https://github.com/login/oauth/access_token',
            authorize_url='https://github.com/login/oauth/authorize',
            api_base_url='https://api.github.com/',
            client_kwargs={'scope': 'user:email'},
        )
    if oauth.create_client('github') is not None:
        registered.append('github')

    logger.info(f"OAuth providers: {', '.join(registered) or 'none'}")
    return registered


def fetch_profile(provider, client):
    """Exchange the callback code and return (provider_id, email, first, last, avatar)"""
    token = client.authorize_access_token()

    if provider == 'google':
        info = client.get('https://www.googleapis.com/oauth2/v3/userinfo', token=token).json()
        return (info['sub'], info.get('email', ''), info.get('given_name', ''),
                info.get('family_name', ''), info.get('picture'))

    info = client.get('user', token=token).json()
    emails = client.get('user/emails', token=token).json()
    primary_email = next((e['email'] for e in emails if e.get('primary')), None)
    full_name = (info.get('name') or info.get('login') or '').split(' ', 1)
    return (str(info['id']), primary_email or info.get('email') or '', full_name[0] if full_name else '',
            full_name[1] if len(full_name) > 1 else '', info.get('avatar_url'))
