"""
Cache Service
=============

Key/value cache with TTLs. Uses Redis when REDIS_URL is configured and
reachable, otherwise an in-process dictionary capped at MAX_MEMORY_ENTRIES.

Keys look like ``bassac:{prefix}:{part}:{part}``.
"""

import fnmatch
import json
import logging
import threading
import time
from collections import OrderedDict

import redis

logger = logging.getLogger(__name__)

KEY_NAMESPACE = 'bassac'
DEFAULT_TTL = 300
MAX_MEMORY_ENTRIES = 10000
VIEW_BUFFER_TTL = 600

TTL = {
    'article': 600,
    'list': 180,
    'featured': 300,
    'categories': 1800,
    'settings': 600,
    'homepage': 120,
    'adSelection': 300,
}


class CacheService:
    """Redis or in-memory cache with JSON values"""

    def __init__(self, app=None):
        self.client = None
        self.is_redis = False
        self._memory = OrderedDict()
        self._lock = threading.Lock()

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Connect to Redis when REDIS_URL is set; fall back to memory on failure"""
        redis_url = app.config.get('REDIS_URL')
        self.client = None
        self.is_redis = False

        if not redis_url:
            logger.info("Using in-memory cache (set REDIS_URL for production)")
            return

        try:
            client = redis.Redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=5)
            client.ping()
            self.client = client
            self.is_redis = True
            logger.info("Redis cache connected")
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable, using in-memory cache: {e}")

    @staticmethod
    def key(prefix, *parts):
        joined = ':'.join(str(p) for p in parts)
        return f"{KEY_NAMESPACE}:{prefix}:{joined}" if parts else f"{KEY_NAMESPACE}:{prefix}"

    # ===== Primitive operations =====

    def get(self, key):
        try:
            if self.is_redis:
                data = self.client.get(key)
                return json.loads(data) if data is not None else None

            with self._lock:
                entry = self._memory.get(key)
                if entry is None:
                    return None
                value, expires = entry
                if expires > time.time():
                    return value
                del self._memory[key]
                return None
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def set(self, key, value, ttl=DEFAULT_TTL):
        try:
            if self.is_redis:
                self.client.setex(key, int(ttl), json.dumps(value, default=str))
                return True

            with self._lock:
                self._memory.pop(key, None)
                self._memory[key] = (value, time.time() + ttl)
                while len(self._memory) > MAX_MEMORY_ENTRIES:
                    self._memory.popitem(last=False)
            return True
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def delete(self, key):
        try:
            if self.is_redis:
                self.client.delete(key)
            else:
                with self._lock:
                    self._memory.pop(key, None)
            return True
        except Exception as e:
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    def delete_pattern(self, pattern):
        """Delete every key matching a glob pattern such as bassac:articles:*"""
        try:
            if self.is_redis:
                keys = list(self.client.scan_iter(match=pattern))
                if keys:
                    self.client.delete(*keys)
                return len(keys)

            with self._lock:
                keys = [k for k in self._memory if fnmatch.fnmatchcase(k, pattern)]
                for k in keys:
                    del self._memory[k]
            return len(keys)
        except Exception as e:
            logger.error(f"Cache delete_pattern error for {pattern}: {e}")
            return 0

    def get_or_set(self, key, fetch_fn, ttl=DEFAULT_TTL):
        cached = self.get(key)
        if cached is not None:
            return cached

        data = fetch_fn()
        if data is not None:
            self.set(key, data, ttl)
        return data

    def clear(self):
        if self.is_redis:
            return self.delete_pattern(f"{KEY_NAMESPACE}:*")
        with self._lock:
            count = len(self._memory)
            self._memory.clear()
        return count

    def stats(self):
        if self.is_redis:
            try:
                info = self.client.info('memory')
                return {'type': 'redis', 'connected': True, 'memory': info.get('used_memory_human')}
            except redis.RedisError as e:
                return {'type': 'redis', 'connected': False, 'error': str(e)}
        return {'type': 'memory', 'connected': True, 'size': len(self._memory), 'maxSize': MAX_MEMORY_ENTRIES}

    # ===== Article helpers =====

    def invalidate_article(self, *identifiers):
        """Drop cached article documents by id and/or slug"""
        for identifier in identifiers:
            if identifier:
                self.delete(self.key('article', identifier))

    def invalidate_article_lists(self):
        self.delete_pattern(f"{KEY_NAMESPACE}:articles:*")
        self.delete(self.key('featured'))
        self.delete(self.key('homepage'))

    def invalidate_categories(self):
        self.delete_pattern(f"{KEY_NAMESPACE}:categories*")

    # ===== View buffer =====

    def increment_view(self, article_id):
        """Buffer one view; returns the buffered count for this article"""
        key = self.key('views', article_id)
        try:
            if self.is_redis:
                count = self.client.incr(key)
                self.client.expire(key, VIEW_BUFFER_TTL)
                return count

            with self._lock:
                entry = self._memory.get(key)
                count = entry[0] if entry and entry[1] > time.time() else 0
                count += 1
                self._memory[key] = (count, time.time() + VIEW_BUFFER_TTL)
            return count
        except Exception as e:
            logger.error(f"View buffer error for article {article_id}: {e}")
            return 0

    def get_buffered_views(self):
        """Read and reset every buffered view count. Returns {article_id: count}"""
        prefix = f"{KEY_NAMESPACE}:views:"
        views = {}
        try:
            if self.is_redis:
                for key in self.client.scan_iter(match=f"{prefix}*"):
                    pipe = self.client.pipeline()
                    pipe.get(key)
                    pipe.delete(key)
                    value, _ = pipe.execute()
                    if value:
                        views[key[len(prefix):]] = int(value)
                return views

            now = time.time()
            with self._lock:
                for key in [k for k in self._memory if k.startswith(prefix)]:
                    count, expires = self._memory.pop(key)
                    if expires > now and count:
                        views[key[len(prefix):]] = count
            return views
        except Exception as e:
            logger.error(f"Failed to read buffered views: {e}")
            return views


cache = CacheService()
