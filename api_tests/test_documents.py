import json

import pytest

from schemas import COLLECTION, COMPANY, SEARCH_RESPONSE, validated

DOCUMENTS = [
    {"id": "1", "company_name": "Stark Industries", "num_employees": 10000, "country": "US"},
    {"id": "2", "company_name": "Acme Corp", "num_employees": 50, "country": "DE"},
    {"id": "3", "company_name": "Wayne Enterprises", "num_employees": 5000, "country": "US"},
]


def schema_for(name):
    return {
        "name": name,
        "fields": [
            {"name": "company_name", "type": "string"},
            {"name": "num_employees", "type": "int32"},
            {"name": "country", "type": "string", "facet": True},
        ],
    }


def jsonl(documents):
    return "\n".join(json.dumps(doc) for doc in documents)


@pytest.mark.single_fresh
class TestSingleDocuments:
    collection = "companies_docs_single"

    def test_create_documents(self, single):
        validated(single("/collections", method="POST", json=schema_for(self.collection)), COLLECTION)
        for doc in DOCUMENTS[:2]:
            body = validated(single(f"/collections/{self.collection}/documents", method="POST", json=doc), COMPANY)
            assert body["id"] == doc["id"]

    def test_import_documents(self, single):
        response = single(f"/collections/{self.collection}/documents/import?action=upsert",
                          method="POST", data=jsonl(DOCUMENTS))
        assert response.ok
        results = [json.loads(line) for line in response.text.splitlines()]
        assert results == [{"success": True}] * len(DOCUMENTS)

    def test_get_document(self, single):
        body = validated(single(f"/collections/{self.collection}/documents/1"), COMPANY)
        assert body["company_name"] == "Stark Industries"

    def test_search_documents(self, single):
        response = single(f"/collections/{self.collection}/documents/search",
                          params={"q": "stark", "query_by": "company_name"})
        body = validated(response, SEARCH_RESPONSE)
        assert body["found"] == 1
        assert body["hits"][0]["document"]["id"] == "1"

    def test_facet_documents(self, single):
        response = single(f"/collections/{self.collection}/documents/search",
                          params={"q": "*", "query_by": "company_name", "facet_by": "country"})
        body = validated(response, SEARCH_RESPONSE)
        counts = {c["value"]: c["count"] for c in body["facet_counts"][0]["counts"]}
        assert counts == {"US": 2, "DE": 1}

    def test_export_documents(self, single):
        response = single(f"/collections/{self.collection}/documents/export")
        assert response.ok
        exported = [json.loads(line)["id"] for line in response.text.splitlines()]
        assert sorted(exported) == ["1", "2", "3"]


@pytest.mark.single_restarted
@pytest.mark.single_snapshot
def test_single_documents_survive_restart(single):
    body = validated(single("/collections/companies_docs_single/documents/2"), COMPANY)
    assert body["company_name"] == "Acme Corp"
    collection = validated(single("/collections/companies_docs_single"), COLLECTION)
    assert collection["num_documents"] == len(DOCUMENTS)


@pytest.mark.multi_fresh
class TestMultiDocuments:
    collection = "companies_docs_multi"

    def test_create_documents(self, multi):
        validated(multi(1, "/collections", method="POST", json=schema_for(self.collection)), COLLECTION)
        response = multi(1, f"/collections/{self.collection}/documents/import", method="POST", data=jsonl(DOCUMENTS))
        assert response.ok

    @pytest.mark.parametrize("node", [2, 3])
    def test_documents_replicated(self, multi, node):
        body = validated(multi(node, f"/collections/{self.collection}/documents/3"), COMPANY)
        assert body["company_name"] == "Wayne Enterprises"

    def test_multi_search(self, multi):
        searches = {"searches": [
            {"collection": self.collection, "q": "acme", "query_by": "company_name"},
            {"collection": self.collection, "q": "wayne", "query_by": "company_name"},
        ]}
        response = multi(2, "/multi_search", method="POST", json=searches)
        assert response.ok
        results = response.json()["results"]
        assert [r["found"] for r in results] == [1, 1]


@pytest.mark.multi_restarted
@pytest.mark.multi_snapshot
@pytest.mark.parametrize("node", [1, 2, 3])
def test_cluster_documents_survive_restart(multi, node):
    collection = validated(multi(node, "/collections/companies_docs_multi"), COLLECTION)
    assert collection["num_documents"] == len(DOCUMENTS)
