"""HTTP client tests, with the server mocked by ``responses``."""

import json

import pytest
import requests
import responses

from typesense_harness import client
from typesense_harness.client import API_KEY_HEADER, NodeClient, fetch_node
from typesense_harness.errors import HealthCheckError, RequestError


def test_convergence_delays():
    assert client.convergence_delays() == [0.01, 0.1, 1.0, 10.0]


# fetch_node

@responses.activate
def test_fetch_node_returns_json(sleeps):
    responses.add(responses.GET, "http://localhost:8108/health", json={"ok": True}, status=200)

    assert fetch_node(8108, "health", api_key="abc") == {"ok": True}
    assert responses.calls[0].request.headers[API_KEY_HEADER] == "abc"
    assert sleeps == []


@responses.activate
def test_fetch_node_sends_json_body(sleeps):
    responses.add(responses.POST, "http://localhost:8108/collections", json={"name": "songs"}, status=201)

    fetch_node(8108, "/collections", method="POST", body={"name": "songs"})
    assert json.loads(responses.calls[0].request.body) == {"name": "songs"}


@responses.activate
def test_fetch_node_retries_until_ok(sleeps):
    responses.add(responses.GET, "http://localhost:8108/status", body="starting", status=503)
    responses.add(responses.GET, "http://localhost:8108/status", json={"state": 1}, status=200)

    assert fetch_node(8108, "status", retry_delay=2.0) == {"state": 1}
    assert len(responses.calls) == 2
    assert sleeps == [2.0]


@responses.activate
def test_fetch_node_gives_up_on_http_error(sleeps):
    responses.add(responses.GET, "http://localhost:8108/status", body="boom", status=500)

    with pytest.raises(RequestError) as excinfo:
        fetch_node(8108, "status", num_retries=2)

    assert str(excinfo.value) == "HTTP error! status: 500, message: boom (no retries left)"
    assert excinfo.value.status_code == 500
    assert not excinfo.value.is_network_error
    assert len(responses.calls) == 3
    assert sleeps == [client.FETCH_RETRY_DELAY] * 2


@responses.activate
def test_fetch_node_gives_up_on_network_error(sleeps):
    responses.add(responses.GET, "http://localhost:8108/status",
                  body=requests.exceptions.ConnectionError("connection refused"))

    with pytest.raises(RequestError) as excinfo:
        fetch_node(8108, "status", num_retries=1, retry_delay=0.5)

    message = str(excinfo.value)
    assert message.startswith("Request failed: ")
    assert message.endswith("(no retries left)")
    assert excinfo.value.is_network_error
    assert sleeps == [0.5]


@responses.activate
def test_fetch_node_text_body(sleeps):
    responses.add(responses.GET, "http://localhost:8108/debug", body="not json", status=200)
    assert fetch_node(8108, "debug") == "not json"


# Convergence

def test_wait_for_convergence_is_bounded(monkeypatch, sleeps):
    checks = []
    monkeypatch.setattr(client, "check_committed_index", lambda *args: checks.append(1) or False)

    assert client.wait_for_convergence() is False
    assert len(checks) == client.CONVERGENCE_ATTEMPTS
    assert sleeps == [0.01, 0.1, 1.0, 10.0]


def test_wait_for_convergence_returns_early(monkeypatch, sleeps):
    results = iter([False, True])
    monkeypatch.setattr(client, "check_committed_index", lambda *args: next(results))

    assert client.wait_for_convergence() is True
    assert sleeps == [0.01]


def add_status(port, index):
    responses.add(responses.GET, f"http://localhost:{port}/status", json={"committed_index": index})


@responses.activate
def test_check_committed_index_agrees():
    for port in (5108, 6108, 7108):
        add_status(port, 42)
    assert client.check_committed_index() is True


@responses.activate
def test_check_committed_index_disagrees():
    add_status(5108, 42)
    add_status(6108, 42)
    add_status(7108, 41)
    assert client.check_committed_index() is False


@responses.activate
def test_check_committed_index_unreachable_node():
    add_status(5108, 42)
    add_status(6108, 42)
    responses.add(responses.GET, "http://localhost:7108/status",
                  body=requests.exceptions.ConnectionError("down"))
    assert client.check_committed_index() is False


@responses.activate
def test_fetch_multi_node_waits_then_requests(monkeypatch):
    waited = []
    monkeypatch.setattr(client, "wait_for_convergence", lambda *args: waited.append(args) or True)
    responses.add(responses.GET, "http://localhost:6108/collections/companies", json={"name": "companies"})

    response = client.fetch_multi_node(2, "/collections/companies", api_key="k")
    assert response.json() == {"name": "companies"}
    assert len(waited) == 1
    assert responses.calls[0].request.headers[API_KEY_HEADER] == "k"


def test_cluster_port_range():
    assert client.cluster_port(1) == 5108
    assert client.cluster_port(3) == 7108
    with pytest.raises(ValueError):
        client.cluster_port(4)


@responses.activate
def test_fetch_single_node_merges_headers():
    responses.add(responses.GET, "http://localhost:8108/health", json={"ok": True})

    client.fetch_single_node("/health", headers={"X-Extra": "1"}, api_key="k")
    headers = responses.calls[0].request.headers
    assert headers["X-Extra"] == "1"
    assert headers[API_KEY_HEADER] == "k"


# NodeClient

@responses.activate
def test_health_ok():
    responses.add(responses.GET, "http://localhost:8108/health", json={"ok": True})
    assert NodeClient(8108).health() == {"ok": True}


@responses.activate
def test_health_not_ok_is_health_error():
    responses.add(responses.GET, "http://localhost:5108/health", json={"ok": False}, status=503)
    with pytest.raises(HealthCheckError) as excinfo:
        NodeClient(5108).health()
    assert excinfo.value.port == 5108


@responses.activate
def test_health_unreachable_is_request_error():
    responses.add(responses.GET, "http://localhost:8108/health",
                  body=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(RequestError) as excinfo:
        NodeClient(8108).health()
    assert excinfo.value.is_network_error


@responses.activate
def test_request_non_ok_raises_with_status():
    responses.add(responses.GET, "http://localhost:8108/collections/missing",
                  json={"message": "Not Found"}, status=404)
    with pytest.raises(RequestError) as excinfo:
        NodeClient(8108).retrieve_collection("missing")
    assert excinfo.value.status_code == 404
    assert "Not Found" in excinfo.value.body


@responses.activate
def test_snapshot_passes_path():
    responses.add(responses.POST, "http://localhost:8108/operations/snapshot", json={"success": True})

    assert NodeClient(8108).snapshot("/tmp/snap") == {"success": True}
    assert "snapshot_path=%2Ftmp%2Fsnap" in responses.calls[0].request.url


@responses.activate
def test_import_documents_parses_lines():
    responses.add(responses.POST, "http://localhost:8108/collections/songs/documents/import",
                  body='{"success": true}\n{"success": false, "error": "bad"}\n')

    results = NodeClient(8108).import_documents("songs", [{"id": "1"}, {"id": "2"}], batch_size=2)

    assert results == [{"success": True}, {"success": False, "error": "bad"}]
    request = responses.calls[0].request
    assert "batch_size=2" in request.url
    assert "action=create" in request.url
    assert request.body.decode().splitlines() == ['{"id": "1"}', '{"id": "2"}']


@pytest.mark.parametrize("method, path, call, body", [
    (responses.POST, "/operations/vote", lambda c: c.vote(), {"success": True}),
    (responses.POST, "/operations/cache/clear", lambda c: c.cache_clear(), {"success": True}),
    (responses.GET, "/metrics.json", lambda c: c.metrics(), {"system_memory_used_bytes": "1024"}),
    (responses.GET, "/analytics/status", lambda c: c.analytics_status(), {"queued_events": 0}),
    (responses.GET, "/collections", lambda c: c.list_collections(), [{"name": "companies"}]),
    (responses.DELETE, "/collections/companies", lambda c: c.delete_collection("companies"),
     {"name": "companies"}),
    (responses.GET, "/collections/companies/documents/124", lambda c: c.retrieve_document("companies", "124"),
     {"id": "124"}),
    (responses.GET, "/conversations/models/conv-model-1",
     lambda c: c.retrieve_conversation_model("conv-model-1"), {"id": "conv-model-1"}),
])
@responses.activate
def test_endpoint_methods(method, path, call, body):
    responses.add(method, f"http://localhost:8108{path}", json=body)

    assert call(NodeClient(8108, "key")) == body
    request = responses.calls[0].request
    assert request.method == method
    assert request.headers[API_KEY_HEADER] == "key"


@responses.activate
def test_multi_search_sends_searches_and_common_params():
    responses.add(responses.POST, "http://localhost:5108/multi_search", json={"results": [{"found": 1}]})

    searches = [{"collection": "companies", "q": "stark"}]
    result = NodeClient(5108).multi_search(searches, common_params={"query_by": "company_name"})

    assert result == {"results": [{"found": 1}]}
    request = responses.calls[0].request
    assert json.loads(request.body) == {"searches": searches}
    assert "query_by=company_name" in request.url
