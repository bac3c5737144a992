import re
from datetime import date as date_cls, datetime, timedelta

from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import now_iso, parse_date, utcnow
from bassac.core.responses import BadRequestError, NotFoundError, ValidationError
from bassac.core.sanitize import is_http_url, is_media_url, sanitize_html
from .constants import (
    AD_STATUSES, AD_TYPES, DEFAULT_FREQUENCY, DEFAULT_SCHEDULE, DEFAULT_TARGETING, DEFAULT_WEIGHT, DEVICE_TYPES,
    FREQUENCY_TYPES, PAGE_TYPES, PLACEMENTS, TARGET_PAGES,
)

NAME_MAX_LENGTH = 200
TIME_RE = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')

JSON_FIELDS = ('targeting', 'schedule', 'frequency')
EDITABLE_FIELDS = (
    'name', 'type', 'image_url', 'mobile_image_url', 'html_content', 'video_url', 'link_url', 'alt_text',
    'placement', 'placement_id', 'section_index', 'paragraph_index', 'priority', 'weight', 'status',
    'targeting', 'schedule', 'frequency',
)
BULK_FIELDS = ('status', 'priority', 'weight', 'placement')


def init_ads_db(db_path):
    """Initialize ads, ad_events and ad_stats_daily"""
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                type TEXT DEFAULT 'image',
                image_url TEXT,
                mobile_image_url TEXT,
                html_content TEXT,
                video_url TEXT,
                link_url TEXT,
                alt_text TEXT,
                placement TEXT NOT NULL,
                placement_id TEXT,
                section_index INTEGER,
                paragraph_index INTEGER,
                priority INTEGER DEFAULT 0,
                weight INTEGER DEFAULT 100,
                status TEXT DEFAULT 'draft',
                targeting TEXT DEFAULT '{}',
                schedule TEXT DEFAULT '{}',
                frequency TEXT DEFAULT '{}',
                impressions INTEGER DEFAULT 0,
                clicks INTEGER DEFAULT 0,
                created_by INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ad_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ad_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                session_id TEXT,
                user_id INTEGER,
                page_type TEXT DEFAULT 'other',
                page_url TEXT DEFAULT '',
                page_key TEXT,
                device TEXT DEFAULT 'desktop',
                article_id INTEGER,
                category_id INTEGER,
                placement TEXT DEFAULT '',
                country TEXT DEFAULT '',
                referrer TEXT DEFAULT '',
                ip_hash TEXT DEFAULT '',
                dedupe_key TEXT UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ad_stats_daily (
                ad_id INTEGER NOT NULL,
                date TEXT NOT NULL,
                impressions INTEGER DEFAULT 0,
                clicks INTEGER DEFAULT 0,
                ctr REAL DEFAULT 0,
                unique_sessions INTEGER DEFAULT 0,
                by_device TEXT DEFAULT '{}',
                by_page_type TEXT DEFAULT '{}',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (ad_id, date)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ads_placement ON ads(status, placement)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ad_events_ad ON ad_events(ad_id, type, created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ad_events_session ON ad_events(session_id, ad_id, type)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ad_events_user ON ad_events(user_id, ad_id, type)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ad_events_ip ON ad_events(ip_hash, type, created_at)")


def _path():
    return Database.ensure_schema('ANALYTICS_DB', init_ads_db)


# ===== Normalisation & validation =====

def _merge(defaults, value):
    merged = {key: (dict(v) if isinstance(v, dict) else list(v) if isinstance(v, list) else v)
              for key, v in defaults.items()}
    if isinstance(value, dict):
        for key, v in value.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(v, dict):
                merged[key].update(v)
            elif key in merged:
                merged[key] = v
    return merged


def normalize_targeting(value):
    targeting = _merge(DEFAULT_TARGETING, value)
    pages = targeting['pages']
    targeting['pages'] = [pages] if isinstance(pages, str) else list(pages or ['all'])
    devices = targeting['devices']
    if isinstance(devices, list):
        targeting['devices'] = {device: device in devices for device in DEVICE_TYPES}
    for key in ('page_urls', 'categories', 'exclude_categories', 'articles'):
        targeting[key] = [v for v in (targeting[key] or []) if v not in (None, '')]
    for key in ('categories', 'exclude_categories', 'articles'):
        targeting[key] = [int(v) for v in targeting[key] if str(v).isdigit()]
    geo = targeting['geo']
    geo['countries'] = [str(c).upper() for c in geo.get('countries') or []]
    geo['exclude_countries'] = [str(c).upper() for c in geo.get('exclude_countries') or []]
    return targeting


def normalize_schedule(value):
    schedule = _merge(DEFAULT_SCHEDULE, value)
    schedule['day_of_week'] = [int(d) for d in schedule['day_of_week'] or [] if str(d).isdigit()]
    return schedule


def normalize_frequency(value):
    return _merge(DEFAULT_FREQUENCY, value)


def serialize_ad(row):
    ad = row_to_dict(row, json_fields=JSON_FIELDS)
    if ad is not None:
        ad['targeting'] = normalize_targeting(ad.get('targeting'))
        ad['schedule'] = normalize_schedule(ad.get('schedule'))
        ad['frequency'] = normalize_frequency(ad.get('frequency'))
        ad['ctr'] = ctr(ad['clicks'], ad['impressions'])
    return ad


def ctr(clicks, impressions):
    return round(clicks / impressions * 100, 2) if impressions else 0


URL_FIELDS = ('image_url', 'mobile_image_url', 'video_url', 'link_url')
TEXT_FIELDS = ('name', 'type', 'html_content', 'alt_text', 'placement', 'placement_id', 'status') + URL_FIELDS


def extract_ad_fields(data):
    fields = {key: data[key] for key in EDITABLE_FIELDS if key in data}
    for key in TEXT_FIELDS:
        if fields.get(key) is not None and not isinstance(fields[key], str):
            raise BadRequestError(f'{key} must be a string')
    if 'name' in fields:
        fields['name'] = (fields['name'] or '').strip()
    for key in URL_FIELDS:
        if fields.get(key):
            fields[key] = fields[key].strip()
    if fields.get('html_content'):
        fields['html_content'] = sanitize_html(fields['html_content'])
    if 'targeting' in fields:
        fields['targeting'] = normalize_targeting(fields['targeting'])
    if 'schedule' in fields:
        fields['schedule'] = normalize_schedule(fields['schedule'])
    if 'frequency' in fields:
        fields['frequency'] = normalize_frequency(fields['frequency'])
    return fields


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_ad(fields):
    """Validate a complete (merged) ad; raises ValidationError listing every problem"""
    errors = []

    def check(field, ok, message):
        if not ok:
            errors.append({'field': field, 'message': message})

    name = fields.get('name') or ''
    check('name', bool(name), 'Ad name is required')
    check('name', len(name) <= NAME_MAX_LENGTH, f'Name cannot exceed {NAME_MAX_LENGTH} characters')
    ad_type = fields.get('type', 'image')
    check('type', ad_type in AD_TYPES, 'Invalid ad type')
    check('placement', fields.get('placement') in PLACEMENTS, 'Invalid placement')
    check('status', fields.get('status', 'draft') in AD_STATUSES, 'Invalid status')

    if ad_type == 'image':
        check('image_url', bool(fields.get('image_url')), 'Image URL is required for image ads')
    elif ad_type == 'html':
        check('html_content', bool(fields.get('html_content')), 'HTML content is required for HTML ads')
    elif ad_type == 'video':
        check('video_url', bool(fields.get('video_url')), 'Video URL is required for video ads')

    for key in ('image_url', 'mobile_image_url', 'video_url'):
        check(key, is_media_url(fields.get(key)), 'Invalid media URL')
    check('link_url', not fields.get('link_url') or is_http_url(fields.get('link_url')),
          'Link URL must be an http(s) URL')

    check('priority', _is_int(fields.get('priority', 0)), 'Priority must be an integer')
    weight = fields.get('weight', DEFAULT_WEIGHT)
    check('weight', _is_int(weight) and weight > 0, 'Weight must be a positive integer')
    for key in ('section_index', 'paragraph_index'):
        value = fields.get(key)
        check(key, value is None or (_is_int(value) and value >= 0), f'{key} must be a non-negative integer')

    targeting = fields.get('targeting') or DEFAULT_TARGETING
    check('targeting.pages', all(p in TARGET_PAGES for p in targeting['pages']), 'Invalid target page')

    schedule = fields.get('schedule') or DEFAULT_SCHEDULE
    start, end = parse_date(schedule.get('start_date')), parse_date(schedule.get('end_date'))
    check('schedule.start_date', not schedule.get('start_date') or start is not None, 'Invalid start date')
    check('schedule.end_date', not schedule.get('end_date') or end is not None, 'Invalid end date')
    check('schedule.end_date', not (start and end) or end >= start, 'End date must be after start date')
    for key in ('time_start', 'time_end'):
        check(f'schedule.{key}', not schedule.get(key) or bool(TIME_RE.match(schedule[key])),
              'Time must be in HH:MM format')
    check('schedule.day_of_week', all(0 <= d <= 6 for d in schedule['day_of_week']),
          'Days of week must be between 0 (Sunday) and 6 (Saturday)')

    frequency = fields.get('frequency') or DEFAULT_FREQUENCY
    check('frequency.type', frequency['type'] in FREQUENCY_TYPES, 'Invalid frequency type')
    for key in ('max_impressions', 'max_clicks'):
        value = frequency.get(key) or 0
        check(f'frequency.{key}', _is_int(value) and value >= 0, f'{key} must be a non-negative integer')

    if errors:
        raise ValidationError('Validation failed', errors)


def _column_values(fields):
    return {key: (dump_json(value) if key in JSON_FIELDS else value) for key, value in fields.items()}


# ===== Ads =====

def get_ad_by_id_db(ad_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM ads WHERE id = ?", (ad_id,))
        return serialize_ad(cursor.fetchone())


def list_ads_db(status=None, placement=None, ad_type=None, q=None, limit=20, offset=0):
    clauses, params = [], []
    for column, value in (('status', status), ('placement', placement), ('type', ad_type)):
        if value:
            clauses.append(f"{column} = ?")
            params.append(value)
    if q:
        clauses.append("name LIKE ?")
        params.append(f"%{q}%")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM ads {where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(f"""
            SELECT * FROM ads {where}
            ORDER BY priority DESC, created_at DESC LIMIT ? OFFSET ?
        """, (*params, limit, offset))
        return [serialize_ad(row) for row in cursor.fetchall()], total


def create_ad_db(fields, created_by=None):
    fields = dict(fields)
    fields.setdefault('targeting', normalize_targeting(None))
    fields.setdefault('schedule', normalize_schedule(None))
    fields.setdefault('frequency', normalize_frequency(None))
    fields.setdefault('status', 'draft')
    fields.setdefault('type', 'image')
    fields.setdefault('weight', DEFAULT_WEIGHT)
    fields.setdefault('priority', 0)
    validate_ad(fields)

    now = now_iso()
    values = _column_values(fields)
    values.update({'created_by': created_by, 'created_at': now, 'updated_at': now})
    columns = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"INSERT INTO ads ({columns}) VALUES ({placeholders})", tuple(values.values()))
        ad_id = cursor.lastrowid
    return get_ad_by_id_db(ad_id)


def update_ad_db(ad_id, updates):
    existing = get_ad_by_id_db(ad_id)
    if not existing:
        raise NotFoundError('Ad not found')
    validate_ad(dict(existing, **updates))

    values = _column_values(updates)
    values['updated_at'] = now_iso()
    set_clause = ', '.join(f"{column} = ?" for column in values)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"UPDATE ads SET {set_clause} WHERE id = ?", (*values.values(), ad_id))
    return get_ad_by_id_db(ad_id)


def delete_ads_db(ids):
    """Delete ads with their events and daily stats. Returns the number of ads removed"""
    ids = [int(i) for i in ids]
    if not ids:
        return 0
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"DELETE FROM ad_events WHERE ad_id IN ({placeholders})", ids)
        cursor.execute(f"DELETE FROM ad_stats_daily WHERE ad_id IN ({placeholders})", ids)
        cursor.execute(f"DELETE FROM ads WHERE id IN ({placeholders})", ids)
        return cursor.rowcount


def duplicate_ad_db(ad_id, created_by=None):
    ad = get_ad_by_id_db(ad_id)
    if not ad:
        raise NotFoundError('Ad not found')
    fields = {key: ad[key] for key in EDITABLE_FIELDS}
    fields['name'] = f"{ad['name']} (Copy)"[:NAME_MAX_LENGTH]
    fields['status'] = 'draft'
    return create_ad_db(fields, created_by)


def bulk_update_ads_db(ids, updates):
    """Apply the same status/priority/weight/placement change to many ads. Returns rows modified"""
    ids = [int(i) for i in ids]
    updates = {key: value for key, value in updates.items() if key in BULK_FIELDS}
    errors = []
    if 'status' in updates and updates['status'] not in AD_STATUSES:
        errors.append({'field': 'status', 'message': 'Invalid status'})
    if 'placement' in updates and updates['placement'] not in PLACEMENTS:
        errors.append({'field': 'placement', 'message': 'Invalid placement'})
    if 'priority' in updates and not _is_int(updates['priority']):
        errors.append({'field': 'priority', 'message': 'Priority must be an integer'})
    if 'weight' in updates and not (_is_int(updates['weight']) and updates['weight'] > 0):
        errors.append({'field': 'weight', 'message': 'Weight must be a positive integer'})
    if errors:
        raise ValidationError('Validation failed', errors)
    if not ids or not updates:
        return 0

    updates['updated_at'] = now_iso()
    set_clause = ', '.join(f"{column} = ?" for column in updates)
    placeholders = ','.join('?' for _ in ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"UPDATE ads SET {set_clause} WHERE id IN ({placeholders})", (*updates.values(), *ids))
        return cursor.rowcount


def get_candidate_ads_db(placement, section_index=None, paragraph_index=None, placement_id=None, ad_id=None,
                         exclude_ids=()):
    """Active ads for a placement, before targeting/frequency filters"""
    clauses, params = ["status = 'active'"], []
    if ad_id:
        clauses.append("id = ?")
        params.append(ad_id)
    else:
        clauses.append("placement = ?")
        params.append(placement)
    if section_index is not None and placement == 'between_sections':
        clauses.append("section_index = ?")
        params.append(section_index)
    if paragraph_index is not None and placement == 'in_article':
        clauses.append("paragraph_index = ?")
        params.append(paragraph_index)
    if placement_id:
        clauses.append("placement_id = ?")
        params.append(placement_id)
    if exclude_ids:
        clauses.append(f"id NOT IN ({','.join('?' for _ in exclude_ids)})")
        params.extend(exclude_ids)

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT * FROM ads WHERE {' AND '.join(clauses)}
            ORDER BY priority DESC, weight DESC, created_at DESC
        """, params)
        return [serialize_ad(row) for row in cursor.fetchall()]


# ===== Events =====

def insert_event_db(event):
    """
    Store an ad event and bump the ad's counters. Returns False when the
    dedupe key was already used.
    """
    event = dict(event, created_at=event.get('created_at') or now_iso())
    columns = ', '.join(event)
    placeholders = ', '.join('?' for _ in event)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"INSERT OR IGNORE INTO ad_events ({columns}) VALUES ({placeholders})",
                       tuple(event.values()))
        if cursor.rowcount == 0:
            return False
        if event['type'] == 'impression':
            cursor.execute("UPDATE ads SET impressions = impressions + 1 WHERE id = ?", (event['ad_id'],))
        elif event['type'] == 'click':
            cursor.execute("UPDATE ads SET clicks = clicks + 1 WHERE id = ?", (event['ad_id'],))
    return True


def count_recent_events_db(type, since, session_id=None, ip_hash=None):
    """Events of a type since a timestamp from the same session or IP hash"""
    sources, params = [], [type, since]
    if session_id:
        sources.append("session_id = ?")
        params.append(session_id)
    if ip_hash:
        sources.append("ip_hash = ?")
        params.append(ip_hash)
    if not sources:
        return 0
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT COUNT(*) FROM ad_events
            WHERE type = ? AND created_at >= ? AND ({' OR '.join(sources)})
        """, params)
        return cursor.fetchone()[0]


def get_event_totals_db(ad_ids):
    """{ad_id: {'impressions': n, 'clicks': n}} across all time"""
    ad_ids = list(ad_ids)
    totals = {ad_id: {'impressions': 0, 'clicks': 0} for ad_id in ad_ids}
    if not ad_ids:
        return totals
    placeholders = ','.join('?' for _ in ad_ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT ad_id, type, COUNT(*) AS count FROM ad_events
            WHERE ad_id IN ({placeholders}) AND type IN ('impression', 'click')
            GROUP BY ad_id, type
        """, ad_ids)
        for row in cursor.fetchall():
            totals[row['ad_id']][f"{row['type']}s"] = row['count']
    return totals


def get_identity_impressions_db(ad_ids, user_id=None, session_id=None):
    """Impression events (ad_id, page_key, created_at) for a user or a session"""
    ad_ids = list(ad_ids)
    if not ad_ids or not (user_id or session_id):
        return []
    column, value = ('user_id', user_id) if user_id else ('session_id', session_id)
    placeholders = ','.join('?' for _ in ad_ids)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT ad_id, page_key, created_at FROM ad_events
            WHERE type = 'impression' AND {column} = ? AND ad_id IN ({placeholders})
        """, (value, *ad_ids))
        return [dict(row) for row in cursor.fetchall()]


# ===== Stats =====

def _day_bounds(day):
    start = datetime.combine(day, datetime.min.time())
    return start.isoformat(), (start + timedelta(days=1)).isoformat()


def get_ad_stats(ad_id, start=None, end=None):
    clauses, params = ["ad_id = ?"], [ad_id]
    if start:
        clauses.append("created_at >= ?")
        params.append(start.isoformat() if hasattr(start, 'isoformat') else start)
    if end:
        clauses.append("created_at <= ?")
        params.append(end.isoformat() if hasattr(end, 'isoformat') else end)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT type, COUNT(*) AS count FROM ad_events
            WHERE {' AND '.join(clauses)} GROUP BY type
        """, params)
        counts = {row['type']: row['count'] for row in cursor.fetchall()}
    impressions, clicks = counts.get('impression', 0), counts.get('click', 0)
    return {'impressions': impressions, 'clicks': clicks, 'ctr': ctr(clicks, impressions)}


def get_daily_stats_db(ad_id, start=None, end=None):
    clauses, params = ["ad_id = ?"], [ad_id]
    if start:
        clauses.append("date >= ?")
        params.append(start.date().isoformat() if hasattr(start, 'date') else start)
    if end:
        clauses.append("date <= ?")
        params.append(end.date().isoformat() if hasattr(end, 'date') else end)
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT * FROM ad_stats_daily WHERE {' AND '.join(clauses)} ORDER BY date ASC", params)
        return [row_to_dict(row, json_fields=('by_device', 'by_page_type')) for row in cursor.fetchall()]


def aggregate_daily_stats(day=None):
    """
    Roll one day of ad_events up into ad_stats_daily (one row per ad).
    Defaults to yesterday; re-running for the same day overwrites its rows.
    Returns the number of ads aggregated.
    """
    if day is None:
        day = (utcnow() - timedelta(days=1)).date()
    elif isinstance(day, str):
        day = date_cls.fromisoformat(day[:10])
    elif isinstance(day, datetime):
        day = day.date()
    start, end = _day_bounds(day)
    now = now_iso()

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT ad_id, type, device, page_type, session_id FROM ad_events
            WHERE created_at >= ? AND created_at < ?
        """, (start, end))
        rows = cursor.fetchall()

        per_ad = {}
        for row in rows:
            stats = per_ad.setdefault(row['ad_id'], {
                'impressions': 0, 'clicks': 0, 'sessions': set(),
                'by_device': {device: {'impressions': 0, 'clicks': 0} for device in DEVICE_TYPES},
                'by_page_type': {page: {'impressions': 0, 'clicks': 0} for page in PAGE_TYPES},
            })
            if row['type'] not in ('impression', 'click'):
                continue
            bucket = f"{row['type']}s"
            stats[bucket] += 1
            stats['by_device'].setdefault(row['device'] or 'desktop', {'impressions': 0, 'clicks': 0})[bucket] += 1
            stats['by_page_type'].setdefault(row['page_type'] or 'other', {'impressions': 0, 'clicks': 0})[bucket] += 1
            if row['type'] == 'impression' and row['session_id']:
                stats['sessions'].add(row['session_id'])

        for ad_id, stats in per_ad.items():
            cursor.execute("""
                INSERT INTO ad_stats_daily (ad_id, date, impressions, clicks, ctr, unique_sessions, by_device,
                                            by_page_type, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(ad_id, date) DO UPDATE SET
                    impressions = excluded.impressions, clicks = excluded.clicks, ctr = excluded.ctr,
                    unique_sessions = excluded.unique_sessions, by_device = excluded.by_device,
                    by_page_type = excluded.by_page_type, updated_at = excluded.updated_at
            """, (ad_id, day.isoformat(), stats['impressions'], stats['clicks'],
                  ctr(stats['clicks'], stats['impressions']), len(stats['sessions']),
                  dump_json(stats['by_device']), dump_json(stats['by_page_type']), now))

    return len(per_ad)
