FEATURE_KEYS = ('adFree', 'premiumArticles', 'earlyAccess', 'exclusiveNewsletter', 'offlineReading',
                'prioritySupport')

UNLIMITED = -1


def _features(*enabled):
    return {key: key in enabled for key in FEATURE_KEYS}


PLANS = {
    'free': {
        'name': 'Free',
        'monthly_price': 0,
        'yearly_price': 0,
        'articles_per_month': 5,
        'features': _features('exclusiveNewsletter'),
        'description': '5 premium articles per month',
    },
    'basic': {
        'name': 'Basic',
        'monthly_price': 9.99,
        'yearly_price': 99,
        'articles_per_month': UNLIMITED,
        'features': _features('adFree', 'offlineReading', 'premiumArticles'),
        'description': 'Unlimited articles, ad-free reading',
    },
    'premium': {
        'name': 'Premium',
        'monthly_price': 19.99,
        'yearly_price': 199,
        'articles_per_month': UNLIMITED,
        'features': _features(*FEATURE_KEYS),
        'description': 'Everything, including early access and priority support',
    },
    'enterprise': {
        'name': 'Enterprise',
        'monthly_price': 99.99,
        'yearly_price': 999,
        'articles_per_month': UNLIMITED,
        'features': _features(*FEATURE_KEYS),
        'description': 'Team access with all features',
    },
}

INTERVALS = ('monthly', 'yearly', 'lifetime')


def get_plan(plan):
    return PLANS.get(plan)


def plan_price(plan, interval):
    config = PLANS[plan]
    return config['yearly_price'] if interval == 'yearly' else config['monthly_price']


def public_plans():
    return [dict(config, id=key) for key, config in PLANS.items()]
