import jsonschema
import pytest

from schemas import COLLECTION, EMBEDDING_FIELD, rejected, validated

MODEL = "openai/text-embedding-3-small"
ALREADY_IN_SCHEMA = (
    "Field `embedding` is already part of the schema: To change this field, "
    "drop it first before adding it back to the schema."
)


def embedding_field(api_key, model_name=MODEL, sources=("product_name",)):
    return {
        "name": "embedding",
        "type": "float[]",
        "num_dim": 1536,
        "embed": {"from": list(sources), "model_config": {"model_name": model_name, "api_key": api_key}},
    }


def check_embedding_collection(body):
    assert body["name"] == "openai_collection"
    assert body["num_documents"] == 0
    assert len(body["fields"]) == 2
    field = body["fields"][1]
    jsonschema.validate(field, EMBEDDING_FIELD)
    assert field["num_dim"] == 1536
    assert field["embed"]["from"] == ["product_name"]
    assert field["embed"]["model_config"]["model_name"] == MODEL
    return field


@pytest.mark.secrets
@pytest.mark.single_fresh
def test_create_collection_with_remote_embedding(single, embedding_api_key):
    schema = {
        "name": "openai_collection",
        "fields": [
            {"name": "product_name", "type": "string", "facet": False},
            embedding_field(embedding_api_key),
        ],
    }
    check_embedding_collection(validated(single("/collections", method="POST", json=schema), COLLECTION))


@pytest.mark.secrets
@pytest.mark.single_fresh
@pytest.mark.parametrize("change", [
    {},
    {"sources": ("product_name", "description")},
    {"model_name": "openai/text-embedding-3-large"},
], ids=["unchanged", "sources", "model"])
def test_embedding_field_changes_rejected(single, embedding_api_key, change):
    patch = {"fields": [embedding_field(embedding_api_key, **change)]}
    body = rejected(single("/collections/openai_collection", method="PATCH", json=patch))
    assert body["message"] == ALREADY_IN_SCHEMA


@pytest.mark.secrets
@pytest.mark.single_fresh
def test_embedding_api_key_can_be_rotated(single, embedding_api_key):
    patch = {"fields": [embedding_field("new-api-key")]}
    assert single("/collections/openai_collection", method="PATCH", json=patch).ok

    field = check_embedding_collection(validated(single("/collections/openai_collection"), COLLECTION))
    assert field["embed"]["model_config"]["api_key"].startswith("new-a")


@pytest.mark.secrets
@pytest.mark.single_restarted
@pytest.mark.single_snapshot
def test_embedding_collection_survives_restart(single, embedding_api_key):
    check_embedding_collection(validated(single("/collections/openai_collection"), COLLECTION))
