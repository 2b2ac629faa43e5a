"""JSON schemas of the server responses asserted on by the API suite."""

import jsonschema

HEALTH = {
    "type": "object",
    "properties": {"ok": {"type": "boolean"}},
    "required": ["ok"],
}

FIELD = {
    "type": "object",
    "properties": {
        "facet": {"type": "boolean"},
        "index": {"type": "boolean"},
        "infix": {"type": "boolean"},
        "locale": {"type": "string"},
        "name": {"type": "string"},
        "optional": {"type": "boolean"},
        "sort": {"type": "boolean"},
        "stem": {"type": "boolean"},
        "store": {"type": "boolean"},
        "type": {"type": "string"},
    },
    "required": ["facet", "index", "name", "optional", "type"],
}

COLLECTION = {
    "type": "object",
    "properties": {
        "created_at": {"type": "number"},
        "default_sorting_field": {"type": "string"},
        "enable_nested_fields": {"type": "boolean"},
        "fields": {"type": "array", "items": FIELD},
        "name": {"type": "string"},
        "num_documents": {"type": "number"},
        "symbols_to_index": {"type": "array", "items": {"type": "string"}},
        "token_separators": {"type": "array", "items": {"type": "string"}},
        "curation_sets": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["created_at", "fields", "name", "num_documents"],
}

COLLECTION_LIST = {"type": "array", "items": COLLECTION}

COMPANY = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "company_name": {"type": "string"},
        "num_employees": {"type": "number"},
        "country": {"type": "string"},
    },
    "required": ["id", "company_name", "num_employees", "country"],
}

SEARCH_RESPONSE = {
    "type": "object",
    "properties": {
        "found": {"type": "number"},
        "out_of": {"type": "number"},
        "search_time_ms": {"type": "number"},
        "page": {"type": "number"},
        "hits": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"document": {"type": "object"}},
                "required": ["document"],
            },
        },
        "facet_counts": {"type": "array"},
    },
    "required": ["found", "facet_counts"],
}

SYNONYM = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "root": {"type": "string"},
        "synonyms": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["id", "synonyms"],
}

SYNONYM_SET = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "items": {"type": "array", "items": SYNONYM},
    },
    "required": ["items"],
}

SNAPSHOT = {
    "type": "object",
    "properties": {"success": {"type": "boolean"}},
    "required": ["success"],
}

CONVERSATION_MODEL = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "history_collection": {"type": "string"},
        "max_bytes": {"type": "number"},
        "model_name": {"type": "string"},
        "ttl": {"type": "number"},
    },
    "required": ["id", "history_collection", "model_name"],
}


CURATION = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "rule": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "match": {"type": "string"},
                "filter_by": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
        },
        "includes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"id": {"type": "string"}, "position": {"type": "number"}},
                "required": ["id", "position"],
            },
        },
        "excludes": {
            "type": "array",
            "items": {"type": "object", "properties": {"id": {"type": "string"}}, "required": ["id"]},
        },
    },
    "required": ["id"],
}

CURATION_SET = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "items": {"type": "array", "items": CURATION},
    },
    "required": ["items"],
}

CURATION_SET_LIST = {
    "type": "array",
    "items": {**CURATION_SET, "required": ["name", "items"]},
}

CURATION_ITEMS = {"type": "array", "items": CURATION}

DELETED_SET = {
    "type": "object",
    "properties": {"name": {"type": "string"}},
    "required": ["name"],
}

CURATION_SETS_PATCH = {
    "type": "object",
    "properties": {"curation_sets": {"type": "array", "items": {"type": "string"}}},
    "required": ["curation_sets"],
}

ANALYTICS_RULE = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "type": {"type": "string"},
        "collection": {"type": "string"},
        "event_type": {"type": "string"},
        "rule_tag": {"type": "string"},
        "params": {
            "type": "object",
            "properties": {
                "capture_search_requests": {"type": "boolean"},
                "meta_fields": {"type": "array", "items": {"type": "string"}},
                "expand_query": {"type": "boolean"},
                "destination_collection": {"type": "string"},
                "limit": {"type": "number"},
                "counter_field": {"type": "string"},
                "weight": {"type": "number"},
            },
        },
    },
    "required": ["name", "type", "collection", "event_type"],
}

ANALYTICS_RULE_LIST = {"type": "array", "items": ANALYTICS_RULE}

ANALYTICS_EVENTS = {
    "type": "object",
    "properties": {
        "events": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "event_type": {"type": "string"},
                    "collection": {"type": "string"},
                    "timestamp": {"type": "number"},
                    "doc_id": {"type": "string"},
                    "doc_ids": {"type": "array", "items": {"type": "string"}},
                    "query": {"type": "string"},
                    "user_id": {"type": "string"},
                },
                "required": ["name", "event_type", "collection", "timestamp", "user_id"],
            },
        },
    },
    "required": ["events"],
}

OK = HEALTH

SUCCESS = SNAPSHOT

EMBEDDING_FIELD = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "type": {"type": "string"},
        "num_dim": {"type": "number"},
        "embed": {
            "type": "object",
            "properties": {
                "from": {"type": "array", "items": {"type": "string"}},
                "model_config": {
                    "type": "object",
                    "properties": {"model_name": {"type": "string"}, "api_key": {"type": "string"}},
                    "required": ["model_name"],
                },
            },
            "required": ["from", "model_config"],
        },
    },
    "required": ["name", "type"],
}

ERROR = {
    "type": "object",
    "properties": {"message": {"type": "string"}},
    "required": ["message"],
}


def validated(response, schema):
    """Assert the response is ok and its body matches ``schema``; return the body"""
    assert response.ok, f"{response.status_code}: {response.text}"
    body = response.json()
    jsonschema.validate(body, schema)
    return body


def rejected(response, schema=ERROR):
    """Assert the request failed with an error body matching ``schema``; return the body"""
    assert not response.ok, f"expected an error, got {response.status_code}: {response.text}"
    body = response.json()
    jsonschema.validate(body, schema)
    return body
