import resend
import stripe
from flask import g, request

from bassac.core.responses import BadRequestError, NotFoundError, error_response, success_response
from bassac.modules.auth.decorators import is_admin
from . import settings_bp
from .database import (
    BRANDING_FIELDS, SECTION_KEYS, SETTINGS_SCHEMA, delete_setting, find_schema_entry, get_all_settings,
    get_public_settings, get_setting, get_site_settings, save_site_settings, set_setting, update_site_settings,
)

# Public feature names -> keys inside site settings "features"
FEATURE_KEYS = {
    'comments': 'enableComments',
    'newsletter': 'enableNewsletter',
    'subscriptions': 'enableSubscriptions',
    'ads': 'enableAds',
    'search': 'enableSearch',
    'maintenance': 'maintenanceMode',
}


@settings_bp.route('/public', methods=['GET'])
def public_settings():
    return success_response(get_public_settings(), 'Settings retrieved successfully')


@settings_bp.route('', methods=['GET'])
@is_admin
def admin_settings():
    return success_response(get_site_settings(), 'Settings retrieved successfully')


@settings_bp.route('', methods=['PUT'])
@is_admin
def update_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise BadRequestError('Settings payload is required')
    settings = update_site_settings(data, g.user['id'])
    return success_response(settings, 'Settings updated successfully')


@settings_bp.route('/<section>', methods=['PUT'])
@is_admin
def update_section(section):
    if section not in SECTION_KEYS:
        raise NotFoundError('Settings section not found')

    data = request.get_json(silent=True)
    if data is None:
        raise BadRequestError('Settings payload is required')

    settings = get_site_settings()
    if section == 'branding':
        if not isinstance(data, dict):
            raise BadRequestError('Branding must be an object')
        settings.update({key: value for key, value in data.items() if key in BRANDING_FIELDS})
    else:
        key = SECTION_KEYS[section]
        value = data.get(key, data) if isinstance(data, dict) else data
        if isinstance(settings[key], list) and not isinstance(value, list):
            raise BadRequestError(f'{key} must be an array')
        if isinstance(settings[key], dict) and isinstance(value, dict):
            value = dict(settings[key], **value)
        settings[key] = value

    save_site_settings(settings, g.user['id'])
    return success_response(settings, f'{section.title()} settings updated successfully')


@settings_bp.route('/features/<feature>', methods=['PUT'])
@is_admin
def toggle_feature(feature):
    key = FEATURE_KEYS.get(feature) or (feature if feature in FEATURE_KEYS.values() else None)
    if not key:
        raise BadRequestError('Invalid feature')

    settings = get_site_settings()
    data = request.get_json(silent=True) or {}
    enabled = bool(data['enabled']) if 'enabled' in data else not settings['features'].get(key, False)

    settings['features'][key] = enabled
    if key == 'maintenanceMode' and data.get('message'):
        settings['features']['maintenanceMessage'] = data['message']
    save_site_settings(settings, g.user['id'])

    return success_response({'feature': key, 'enabled': enabled},
                            'Feature enabled' if enabled else 'Feature disabled')


# ===== Encrypted integration settings =====

@settings_bp.route('/secrets', methods=['GET'])
@is_admin
def list_secrets():
    return success_response({
        'schema': SETTINGS_SCHEMA,
        'settings': get_all_settings(request.args.get('category'), mask_secrets=True),
    })


@settings_bp.route('/secrets', methods=['PUT'])
@is_admin
def save_secrets():
    """Save any SETTINGS_SCHEMA keys present in the body; masked values are ignored"""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise BadRequestError('Settings payload is required')

    saved = []
    for key, value in data.items():
        category, entry = find_schema_entry(key)
        if not entry:
            continue

        value = (value or '').strip() if isinstance(value, str) else value
        # Don't overwrite secrets with masked value
        if entry.get('is_secret') and isinstance(value, str) and value.startswith('*'):
            continue

        if value in ('', None):
            delete_setting(key)
        else:
            set_setting(key, value, category, entry.get('is_secret', False), entry.get('description'))
        saved.append(key)

    return success_response({'updated': saved}, f'Settings saved successfully ({len(saved)} settings updated)')


@settings_bp.route('/secrets/test/<service>', methods=['POST'])
@is_admin
def test_connection(service):
    """Verify stored credentials against Stripe or Resend"""
    if service == 'stripe':
        secret_key = get_setting('STRIPE_SECRET_KEY')
        if not secret_key:
            return error_response('Stripe secret key not configured', 400)
        try:
            stripe.Account.retrieve(api_key=secret_key)
        except stripe.StripeError as e:
            return error_response(str(e), 400)
        return success_response(None, 'Stripe connection successful')

    if service == 'resend':
        api_key = get_setting('RESEND_API_KEY')
        if not api_key:
            return error_response('Resend API key not configured', 400)
        resend.api_key = api_key
        try:
            resend.Domains.list()
        except Exception as e:
            return error_response(str(e), 400)
        return success_response(None, 'Resend connection successful')

    raise NotFoundError('Unknown service')
