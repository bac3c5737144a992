"""
Search Service
==============

Article search backed by Elasticsearch when ELASTICSEARCH_URL is set and the
cluster answers a ping. Every query has a SQL fallback so search keeps
working (with LIKE matching) when the cluster is down.
"""

import logging
from datetime import timedelta

from elasticsearch import ApiError, Elasticsearch, NotFoundError, TransportError

from bassac.core.helpers import utcnow
from bassac.core.responses import BadRequestError
from bassac.modules.articles.content import get_plain_text
from bassac.modules.articles.database import (
    get_article_by_id_db, get_articles_by_ids_db, get_related_articles_db, get_trending_articles_db,
    list_articles_db, populate_article, populate_articles,
)
from .mappings import INDEX_MAPPINGS, INDEX_SETTINGS

logger = logging.getLogger(__name__)

ES_ERRORS = (ApiError, TransportError)

SORT_OPTIONS = {
    'relevance': ['_score', {'publishedAt': {'order': 'desc'}}],
    'date_desc': [{'publishedAt': {'order': 'desc'}}],
    'date_asc': [{'publishedAt': {'order': 'asc'}}],
    'popular': [{'viewCount': {'order': 'desc'}}, '_score'],
}

FALLBACK_SORT = {
    'relevance': ('published_at', 'desc'),
    'date_desc': ('published_at', 'desc'),
    'date_asc': ('published_at', 'asc'),
    'popular': ('view_count', 'desc'),
}

SEARCH_FIELDS = ['title^3', 'title.autocomplete^2', 'excerpt^2', 'content', 'author.fullName', 'tags']


def build_document(article):
    """Index document for a populated article"""
    author = article.get('author') or {}
    category = article.get('category') or {}
    return {
        'title': article['title'],
        'slug': article['slug'],
        'excerpt': article.get('excerpt') or '',
        'content': get_plain_text(article.get('content')),
        'author': {'id': str(author.get('id', '')), 'fullName': author.get('full_name', '')},
        'category': {'id': str(category.get('id', '')), 'name': category.get('name'), 'slug': category.get('slug')},
        'tags': article.get('tags') or [],
        'status': article['status'],
        'language': article.get('language') or 'en',
        'postType': article.get('post_type') or 'news',
        'isFeatured': bool(article.get('is_featured')),
        'isBreaking': bool(article.get('is_breaking')),
        'publishedAt': article.get('published_at'),
        'createdAt': article.get('created_at'),
        'viewCount': article.get('view_count') or 0,
        'readTime': article.get('read_time') or 1,
    }


class SearchService:
    def __init__(self, app=None):
        self.client = None
        self.index = 'articles'
        self.connected = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        url = app.config.get('ELASTICSEARCH_URL')
        self.index = app.config.get('ELASTICSEARCH_INDEX') or 'articles'
        self.client = None
        self.connected = False

        if not url:
            logger.info("Elasticsearch not configured; search uses the database")
            return

        try:
            client = Elasticsearch(url, request_timeout=5)
            if client.ping():
                self.client = client
                self.connected = True
                self.ensure_index()
                logger.info(f"Elasticsearch connected ({self.index})")
            else:
                logger.warning("Elasticsearch did not answer ping; search uses the database")
        except ES_ERRORS as e:
            logger.warning(f"Elasticsearch unavailable, search uses the database: {e}")

    @property
    def available(self):
        return self.connected and self.client is not None

    def ensure_index(self):
        if not self.client.indices.exists(index=self.index):
            self.client.indices.create(index=self.index, settings=INDEX_SETTINGS, mappings=INDEX_MAPPINGS)
            logger.info(f"Created Elasticsearch index {self.index}")

    def status(self):
        if not self.available:
            return {'engine': 'database', 'connected': False, 'index': self.index}
        try:
            health = self.client.cluster.health()
            count = self.client.count(index=self.index)['count']
            return {'engine': 'elasticsearch', 'connected': True, 'index': self.index,
                    'cluster_status': health['status'], 'documents': count}
        except ES_ERRORS as e:
            return {'engine': 'elasticsearch', 'connected': False, 'index': self.index, 'error': str(e)}

    # ===== Indexing =====

    def index_article(self, article):
        self.client.index(index=self.index, id=str(article['id']), document=build_document(article))

    def delete_article(self, article_id):
        try:
            self.client.delete(index=self.index, id=str(article_id))
        except NotFoundError:
            pass

    def reindex_all(self, batch_size=100):
        """Rebuild the index from every published article. Returns the number indexed"""
        if not self.available:
            raise BadRequestError('Elasticsearch is not available')

        self.client.indices.delete(index=self.index, ignore_unavailable=True)
        self.ensure_index()

        indexed, offset = 0, 0
        while True:
            articles, _ = list_articles_db({'status': 'published'}, limit=batch_size, offset=offset,
                                           include_content=True)
            if not articles:
                break
            for article in populate_articles(articles):
                self.index_article(article)
                indexed += 1
            offset += batch_size

        self.client.indices.refresh(index=self.index)
        return indexed

    # ===== Queries =====

    def _filters(self, filters):
        clauses = [{'term': {'status': 'published'}}]
        if filters.get('language'):
            clauses.append({'term': {'language': filters['language']}})
        if filters.get('category_id'):
            clauses.append({'term': {'category.id': str(filters['category_id'])}})
        if filters.get('author_id'):
            clauses.append({'term': {'author.id': str(filters['author_id'])}})
        if filters.get('tags'):
            clauses.append({'terms': {'tags': filters['tags']}})
        if filters.get('is_featured') is not None:
            clauses.append({'term': {'isFeatured': bool(filters['is_featured'])}})
        if filters.get('is_breaking') is not None:
            clauses.append({'term': {'isBreaking': bool(filters['is_breaking'])}})
        date_range = {}
        if filters.get('start_date'):
            date_range['gte'] = filters['start_date']
        if filters.get('end_date'):
            date_range['lte'] = filters['end_date']
        if date_range:
            clauses.append({'range': {'publishedAt': date_range}})
        return clauses

    def search(self, q, filters=None, sort_by='relevance', page=1, limit=10):
        q = (q or '').strip()
        if len(q) < 2:
            raise BadRequestError('Search query must be at least 2 characters')
        filters = filters or {}
        if sort_by not in SORT_OPTIONS:
            sort_by = 'relevance'

        if self.available:
            try:
                return self._es_search(q, filters, sort_by, page, limit)
            except ES_ERRORS as e:
                logger.error(f"Elasticsearch search failed, using database: {e}")
        return self._db_search(q, filters, sort_by, page, limit)

    def _es_search(self, q, filters, sort_by, page, limit):
        response = self.client.search(
            index=self.index,
            query={'bool': {
                'must': [{'multi_match': {'query': q, 'fields': SEARCH_FIELDS, 'fuzziness': 'AUTO'}}],
                'filter': self._filters(filters),
            }},
            sort=SORT_OPTIONS[sort_by],
            from_=(page - 1) * limit,
            size=limit,
            highlight={'fields': {'title': {}, 'excerpt': {}, 'content': {'fragment_size': 150}},
                       'pre_tags': ['<mark>'], 'post_tags': ['</mark>']},
            aggs={
                'categories': {'terms': {'field': 'category.slug', 'size': 10}},
                'authors': {'terms': {'field': 'author.fullName.raw', 'size': 10}},
                'tags': {'terms': {'field': 'tags', 'size': 20}},
                'monthly': {'date_histogram': {'field': 'publishedAt', 'calendar_interval': 'month'}},
            },
            suggest={'text': q, 'title_suggest': {'term': {'field': 'title'}}},
        )

        hits = response['hits']['hits']
        stored = get_articles_by_ids_db(int(hit['_id']) for hit in hits)
        articles = []
        for hit in hits:
            article = stored.get(int(hit['_id']))
            if article:
                article['score'] = hit.get('_score')
                article['highlight'] = hit.get('highlight', {})
                articles.append(article)
        populate_articles(articles)

        aggregations = response.get('aggregations', {})
        return {
            'articles': articles,
            'total': response['hits']['total']['value'],
            'aggregations': {
                'categories': [{'key': b['key'], 'count': b['doc_count']}
                               for b in aggregations.get('categories', {}).get('buckets', [])],
                'authors': [{'key': b['key'], 'count': b['doc_count']}
                            for b in aggregations.get('authors', {}).get('buckets', [])],
                'tags': [{'key': b['key'], 'count': b['doc_count']}
                         for b in aggregations.get('tags', {}).get('buckets', [])],
                'monthly': [{'key': b['key_as_string'], 'count': b['doc_count']}
                            for b in aggregations.get('monthly', {}).get('buckets', [])],
            },
            'suggestion': self._suggestion(q, response.get('suggest', {}).get('title_suggest', [])),
            'engine': 'elasticsearch',
        }

    @staticmethod
    def _suggestion(q, entries):
        """Rebuild the query with each misspelt word replaced by its best option"""
        changed = False
        words = []
        for entry in entries:
            if entry.get('options'):
                words.append(entry['options'][0]['text'])
                changed = True
            else:
                words.append(entry['text'])
        return ' '.join(words) if changed and words else None

    def _db_search(self, q, filters, sort_by, page, limit):
        db_filters = {'status': 'published', 'q': q}
        for key in ('language', 'category_id', 'author_id', 'is_featured', 'is_breaking'):
            if filters.get(key) is not None:
                db_filters[key] = filters[key]
        if filters.get('tags'):
            db_filters['tag'] = filters['tags'][0]
        if filters.get('start_date'):
            db_filters['published_after'] = filters['start_date']

        column, order = FALLBACK_SORT[sort_by]
        articles, total = list_articles_db(db_filters, sort_by=column, sort_order=order, limit=limit,
                                           offset=(page - 1) * limit)
        return {
            'articles': populate_articles(articles),
            'total': total,
            'aggregations': {},
            'suggestion': None,
            'engine': 'database',
        }

    def autocomplete(self, q, limit=5):
        q = (q or '').strip()
        if len(q) < 2:
            raise BadRequestError('Query must be at least 2 characters')

        if self.available:
            try:
                response = self.client.search(
                    index=self.index,
                    query={'bool': {'must': [{'match': {'title.autocomplete': q}}],
                                    'filter': [{'term': {'status': 'published'}}]}},
                    source=['title', 'slug'], size=limit,
                )
                return [{'id': int(hit['_id']), 'title': hit['_source']['title'], 'slug': hit['_source']['slug']}
                        for hit in response['hits']['hits']]
            except ES_ERRORS as e:
                logger.error(f"Elasticsearch autocomplete failed, using database: {e}")

        articles, _ = list_articles_db({'status': 'published', 'q': q}, limit=limit)
        return [{'id': a['id'], 'title': a['title'], 'slug': a['slug']} for a in articles]

    def similar(self, article_id, limit=5):
        article = get_article_by_id_db(article_id)
        if not article:
            return None

        if self.available:
            try:
                response = self.client.search(
                    index=self.index,
                    query={'bool': {
                        'must': [{'more_like_this': {
                            'fields': ['title', 'excerpt', 'content', 'tags'],
                            'like': [{'_index': self.index, '_id': str(article_id)}],
                            'min_term_freq': 1, 'min_doc_freq': 1,
                        }}],
                        'filter': [{'term': {'status': 'published'}}],
                    }},
                    size=limit,
                )
                stored = get_articles_by_ids_db(int(hit['_id']) for hit in response['hits']['hits'])
                ordered = [stored[int(hit['_id'])] for hit in response['hits']['hits'] if int(hit['_id']) in stored]
                return populate_articles(ordered)
            except ES_ERRORS as e:
                logger.error(f"Elasticsearch similar failed, using related articles: {e}")

        return populate_articles(get_related_articles_db(article, limit))

    def trending(self, days=7, limit=10):
        since = (utcnow() - timedelta(days=days)).isoformat()
        return populate_articles(get_trending_articles_db(since, limit))


search_service = SearchService()


def index_populated(article):
    """Index an article after attaching author/category"""
    search_service.index_article(populate_article(dict(article)))
