INDEX_SETTINGS = {
    "number_of_shards": 1,
    "number_of_replicas": 0,
    "analysis": {
        "analyzer": {
            "autocomplete": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding", "autocomplete_filter"]
            },
            "autocomplete_search": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding"]
            }
        },
        "filter": {
            "autocomplete_filter": {"type": "edge_ngram", "min_gram": 2, "max_gram": 20}
        }
    }
}

INDEX_MAPPINGS = {
    "dynamic": False,
    "properties": {
        "title": {
            "type": "text",
            "fields": {
                "raw": {"type": "keyword"},
                "autocomplete": {
                    "type": "text",
                    "analyzer": "autocomplete",
                    "search_analyzer": "autocomplete_search"
                }
            }
        },
        "slug": {"type": "keyword"},
        "excerpt": {"type": "text"},
        "content": {"type": "text"},
        "author": {
            "type": "object",
            "properties": {
                "id": {"type": "keyword"},
                "fullName": {"type": "text", "fields": {"raw": {"type": "keyword"}}}
            }
        },
        "category": {
            "type": "object",
            "properties": {
                "id": {"type": "keyword"},
                "name": {"type": "keyword"},
                "slug": {"type": "keyword"}
            }
        },
        "tags": {"type": "keyword"},
        "status": {"type": "keyword"},
        "language": {"type": "keyword"},
        "postType": {"type": "keyword"},
        "isFeatured": {"type": "boolean"},
        "isBreaking": {"type": "boolean"},
        "publishedAt": {"type": "date"},
        "createdAt": {"type": "date"},
        "viewCount": {"type": "integer"},
        "readTime": {"type": "integer"}
    }
}
