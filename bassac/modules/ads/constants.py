PAGE_TYPES = ('homepage', 'article', 'category', 'search', 'page', 'other')
TARGET_PAGES = ('all',) + PAGE_TYPES + ('custom',)

AD_TYPES = ('image', 'html', 'video')
AD_STATUSES = ('draft', 'active', 'paused', 'archived')

PLACEMENTS = (
    'header', 'sidebar', 'footer', 'in_article', 'between_articles', 'between_sections', 'after_hero',
    'after_article', 'before_comments', 'in_category', 'popup', 'custom',
)

EVENT_TYPES = ('impression', 'click', 'viewable', 'conversion')
DEVICE_TYPES = ('desktop', 'mobile', 'tablet')
FREQUENCY_TYPES = ('unlimited', 'once_per_user', 'once_per_session', 'once_per_day', 'once_per_page')

FRAUD_THRESHOLDS = {
    'clicksPerMinute': 5,
    'impressionsPerMinute': 10,
    'clickImpressionRatio': 1.0,
}

SELECTION_CACHE_TTL = 300
SESSION_COOKIE = 'bassac_sid'
SESSION_COOKIE_MAX_AGE = 30 * 60

DEFAULT_WEIGHT = 100
MAX_SELECT_LIMIT = 10

DEFAULT_TARGETING = {
    'pages': ['all'],
    'page_urls': [],
    'devices': {'desktop': True, 'mobile': True, 'tablet': True},
    'user_status': {'loggedIn': True, 'guest': True},
    'categories': [],
    'exclude_categories': [],
    'articles': [],
    'geo': {'enabled': False, 'countries': [], 'exclude_countries': []},
}

DEFAULT_SCHEDULE = {
    'start_date': None,
    'end_date': None,
    'day_of_week': [],
    'time_start': None,
    'time_end': None,
}

DEFAULT_FREQUENCY = {'type': 'unlimited', 'max_impressions': 0, 'max_clicks': 0}

# Placements served per page bundle, with how many ads each slot takes
HOMEPAGE_SLOTS = (
    ('header', 1), ('after_hero', 2), ('between_sections', 10), ('sidebar', 3), ('footer', 1), ('popup', 1),
)
ARTICLE_SLOTS = (
    ('header', 1), ('in_article', None), ('after_article', 2), ('before_comments', 1), ('sidebar', 3),
    ('popup', 1),
)
CATEGORY_SLOTS = (('header', 1), ('in_category', 3), ('sidebar', 3), ('footer', 1))
