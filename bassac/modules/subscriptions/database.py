"""
Subscription ledger (USER_DB).

One row per user. ``Subscription`` wraps a row and carries the plan rules;
the module-level functions are the repository.
"""

import calendar
from datetime import timedelta

from bassac.core.database import Database, dump_json, row_to_dict
from bassac.core.helpers import now_iso, parse_date, to_iso, utcnow
from bassac.core.responses import BadRequestError
from .plans import INTERVALS, PLANS, UNLIMITED, get_plan, plan_price

STATUSES = ('active', 'cancelled', 'expired', 'trial', 'paused')
PAYMENT_PROVIDERS = ('stripe', 'paypal', 'manual', 'free')
TRIAL_DAYS = 14

COLUMNS = (
    'plan', 'status', 'billing_interval', 'amount', 'currency', 'next_billing_date', 'last_billing_date',
    'payment_provider', 'stripe_customer_id', 'stripe_subscription_id', 'trial_started_at', 'trial_ends_at',
    'articles_per_month', 'current_articles_read', 'last_reset_date', 'features', 'cancelled_at',
    'cancel_reason', 'auto_renew', 'read_article_ids',
)


def init_subscriptions_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS subscriptions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER UNIQUE NOT NULL,
                plan TEXT DEFAULT 'free',
                status TEXT DEFAULT 'active',
                billing_interval TEXT DEFAULT 'monthly',
                amount REAL DEFAULT 0,
                currency TEXT DEFAULT 'USD',
                next_billing_date TEXT,
                last_billing_date TEXT,
                payment_provider TEXT DEFAULT 'free',
                stripe_customer_id TEXT,
                stripe_subscription_id TEXT,
                trial_started_at TEXT,
                trial_ends_at TEXT,
                articles_per_month INTEGER DEFAULT 5,
                current_articles_read INTEGER DEFAULT 0,
                last_reset_date TEXT,
                features TEXT DEFAULT '{}',
                cancelled_at TEXT,
                cancel_reason TEXT,
                auto_renew BOOLEAN DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        Database.add_missing_columns(cursor, 'subscriptions', [
            ('read_article_ids', "TEXT DEFAULT '[]'"),
        ])

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_status ON subscriptions(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_plan ON subscriptions(plan)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_stripe ON subscriptions(stripe_subscription_id)")


def _path():
    return Database.ensure_schema('USER_DB', init_subscriptions_db)


def add_months(value, months):
    month = value.month - 1 + months
    year = value.year + month // 12
    month = month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class Subscription:
    """A user's subscription row plus the rules that apply to it"""

    def __init__(self, data):
        self.data = data

    def __getitem__(self, key):
        return self.data[key]

    def get(self, key, default=None):
        return self.data.get(key, default)

    @property
    def is_active(self):
        return self.data['status'] in ('active', 'trial')

    @property
    def has_reached_limit(self):
        if self.data['plan'] != 'free':
            return False
        limit = self.data['articles_per_month']
        if limit == UNLIMITED:
            return False
        return self.data['current_articles_read'] >= limit

    def has_feature(self, feature):
        return bool((self.data.get('features') or {}).get(feature))

    def can_access_article(self, article):
        if not article.get('is_premium'):
            return True
        if not self.is_active:
            return False
        if self.data['plan'] == 'free':
            return self.has_read(article.get('id')) or not self.has_reached_limit
        return self.has_feature('premiumArticles')

    def has_read(self, article_id):
        """Whether this premium article already counted towards this month's quota"""
        if article_id is None or self._period_has_rolled():
            return False
        return article_id in (self.data.get('read_article_ids') or [])

    def to_dict(self):
        data = dict(self.data)
        data['is_active'] = self.is_active
        data['has_reached_limit'] = self.has_reached_limit
        limit = data['articles_per_month']
        data['articles_remaining'] = None if limit == UNLIMITED else max(0, limit - data['current_articles_read'])
        return data

    # ===== Mutations =====

    def save(self, **changes):
        self.data.update(changes)
        values = {key: self.data.get(key) for key in COLUMNS}
        values['features'] = dump_json(values['features'] or {})
        values['read_article_ids'] = dump_json(values['read_article_ids'] or [])
        values['auto_renew'] = bool(values['auto_renew'])
        values['updated_at'] = self.data['updated_at'] = now_iso()

        set_clause = ', '.join(f"{key} = ?" for key in values)
        with Database.connect(_path()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"UPDATE subscriptions SET {set_clause} WHERE id = ?",
                           (*values.values(), self.data['id']))
        return self

    def _period_has_rolled(self):
        now = utcnow()
        last_reset = parse_date(self.data.get('last_reset_date')) or now
        return (last_reset.year, last_reset.month) != (now.year, now.month)

    def increment_article_read(self, article_id=None):
        """Count a premium read; a repeat read of the same article this month is free"""
        if self._period_has_rolled():
            self.data['current_articles_read'] = 0
            self.data['read_article_ids'] = []
            self.data['last_reset_date'] = now_iso()
        read_ids = list(self.data.get('read_article_ids') or [])
        if article_id is not None:
            if article_id in read_ids:
                return self
            read_ids.append(article_id)
        return self.save(current_articles_read=(self.data['current_articles_read'] or 0) + 1,
                         read_article_ids=read_ids)

    def upgrade_plan(self, plan, interval='monthly', payment_provider=None, **extra):
        config = get_plan(plan)
        if not config:
            raise BadRequestError('Invalid plan')
        if interval not in INTERVALS:
            raise BadRequestError('Invalid billing interval')

        now = utcnow()
        if interval == 'lifetime':
            next_billing = None
        elif interval == 'yearly':
            next_billing = to_iso(add_months(now, 12))
        else:
            next_billing = to_iso(add_months(now, 1))

        return self.save(
            plan=plan, status='active', billing_interval=interval, amount=plan_price(plan, interval),
            features=dict(config['features']), articles_per_month=config['articles_per_month'],
            last_billing_date=to_iso(now), next_billing_date=next_billing, cancelled_at=None, cancel_reason=None,
            auto_renew=interval != 'lifetime',
            payment_provider=payment_provider or ('free' if plan == 'free' else 'manual'),
            **{key: value for key, value in extra.items() if key in COLUMNS},
        )

    def cancel(self, reason=None):
        return self.save(status='cancelled', cancelled_at=now_iso(), cancel_reason=reason, auto_renew=False)

    def reactivate(self):
        if self.data['status'] != 'cancelled':
            raise BadRequestError('Can only reactivate cancelled subscriptions')
        return self.save(status='active', cancelled_at=None, cancel_reason=None, auto_renew=True)

    def start_trial(self, days=TRIAL_DAYS):
        if self.data.get('trial_started_at'):
            raise BadRequestError('Trial has already been used')
        if self.data['plan'] != 'free':
            raise BadRequestError('Trials are only available on the free plan')
        now = utcnow()
        return self.save(status='trial', trial_started_at=to_iso(now), trial_ends_at=to_iso(now + timedelta(days=days)),
                         features=dict(PLANS['premium']['features']))


def _from_row(row):
    data = row_to_dict(row, json_fields=('features', 'read_article_ids'), bool_fields=('auto_renew',))
    return Subscription(data) if data else None


def get_subscription(user_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,))
        return _from_row(cursor.fetchone())


def get_by_stripe_subscription(stripe_subscription_id):
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM subscriptions WHERE stripe_subscription_id = ?", (stripe_subscription_id,))
        return _from_row(cursor.fetchone())


def get_or_create(user_id):
    """The user's subscription, creating a free one on first use"""
    subscription = get_subscription(user_id)
    if subscription:
        return subscription

    now = now_iso()
    free = PLANS['free']
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT OR IGNORE INTO subscriptions (user_id, plan, status, payment_provider, articles_per_month,
                                                 current_articles_read, last_reset_date, features,
                                                 created_at, updated_at)
            VALUES (?, 'free', 'active', 'free', ?, 0, ?, ?, ?, ?)
        """, (user_id, free['articles_per_month'], now, dump_json(free['features']), now, now))

    return get_subscription(user_id)


def list_subscriptions(plan=None, status=None, limit=20, offset=0):
    clauses, params = [], []
    if plan:
        clauses.append("plan = ?")
        params.append(plan)
    if status:
        clauses.append("status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM subscriptions {where}", params)
        total = cursor.fetchone()[0]
        cursor.execute(f"SELECT * FROM subscriptions {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                       (*params, limit, offset))
        return [_from_row(row).to_dict() for row in cursor.fetchall()], total


def get_subscription_stats():
    """Counts per plan and status plus monthly recurring revenue of active paid plans"""
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT plan, COUNT(*) AS count FROM subscriptions GROUP BY plan")
        by_plan = {row['plan']: row['count'] for row in cursor.fetchall()}
        cursor.execute("SELECT status, COUNT(*) AS count FROM subscriptions GROUP BY status")
        by_status = {row['status']: row['count'] for row in cursor.fetchall()}
        cursor.execute("""
            SELECT plan, COUNT(*) AS count FROM subscriptions
            WHERE status IN ('active', 'trial') GROUP BY plan
        """)
        active_by_plan = {row['plan']: row['count'] for row in cursor.fetchall()}
        cursor.execute("""
            SELECT COALESCE(SUM(CASE WHEN billing_interval = 'yearly' THEN amount / 12.0 ELSE amount END), 0)
            FROM subscriptions
            WHERE status = 'active' AND plan != 'free' AND billing_interval != 'lifetime'
        """)
        mrr = round(cursor.fetchone()[0], 2)

    return {
        'total': sum(by_plan.values()),
        'by_plan': by_plan,
        'by_status': by_status,
        'active_by_plan': active_by_plan,
        'monthly_recurring_revenue': mrr,
    }


def get_expiring_soon(days=7):
    now = utcnow()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM subscriptions
            WHERE status = 'active' AND next_billing_date >= ? AND next_billing_date <= ?
            ORDER BY next_billing_date ASC
        """, (to_iso(now), to_iso(now + timedelta(days=days))))
        return [_from_row(row) for row in cursor.fetchall()]


def expire_overdue():
    """Expire subscriptions past their billing date with auto-renew off, and ended trials"""
    now = now_iso()
    with Database.connect(_path()) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE subscriptions SET status = 'expired', updated_at = ?
            WHERE status IN ('active', 'cancelled') AND auto_renew = 0
              AND next_billing_date IS NOT NULL AND next_billing_date < ?
        """, (now, now))
        expired = cursor.rowcount
        # Ended trials fall back to the features of the plan they started from
        for plan, config in PLANS.items():
            cursor.execute("""
                UPDATE subscriptions SET status = 'active', features = ?, updated_at = ?
                WHERE status = 'trial' AND trial_ends_at IS NOT NULL AND trial_ends_at < ? AND plan = ?
            """, (dump_json(config['features']), now, now, plan))
            expired += cursor.rowcount
        return expired
