import json
import re

import pytest
import responses

from typesense_harness.benchmark.load import LoadGenerator, SearchStats
from typesense_harness.benchmark.scenarios import SearchScenario
from typesense_harness.errors import LoadTestError

IMPORT_URL = "http://localhost:8108/collections/songs/documents/import"
SEARCH_URL = re.compile(r"http://localhost:8108/collections/songs/documents/search.*")


def generator(**kwargs):
    kwargs.setdefault("scenarios", [SearchScenario("wildcard", {"query_by": "title"}, wildcard=True)])
    kwargs.setdefault("concurrency_levels", (2,))
    return LoadGenerator(port=8108, api_key="key", batch_size=2, duration="1s", gap=0, **kwargs)


@pytest.fixture
def dataset(tmp_path):
    path = tmp_path / "songs.jsonl"
    path.write_text("\n".join(json.dumps({"title": f"song {i}"}) for i in range(3)) + "\n")
    return str(path)


def test_search_stats():
    stats = SearchStats("wildcard", 50, search_times=[float(i) for i in range(1, 101)], requests=100, failures=1)
    assert stats.variable == "wildcard (50vu)"
    assert stats.p95 == pytest.approx(95.05)
    assert stats.check_pass_rate == pytest.approx(99.0)
    assert SearchStats("wildcard", 50).p95 == 0.0


@responses.activate
def test_run_indexing(dataset):
    responses.add(responses.POST, IMPORT_URL, body='{"success": true}\n' * 3)

    stats = generator().run_indexing(dataset)

    assert stats.documents == 3
    assert stats.failures == 0
    assert stats.duration_ms >= 0
    assert "batch_size=2" in responses.calls[0].request.url


@responses.activate
def test_run_indexing_failure(dataset):
    responses.add(responses.POST, IMPORT_URL,
                  body='{"success": true}\n{"success": false, "error": "bad"}\n{"success": true}\n')
    with pytest.raises(LoadTestError, match="1 failures"):
        generator().run_indexing(dataset)


@responses.activate
def test_run_search_collects_server_timings():
    responses.add(responses.GET, SEARCH_URL, json={"found": 1, "search_time_ms": 4})

    results = generator().run_search()

    stats = results["wildcard (2vu)"]
    assert stats.requests > 0
    assert stats.failures == 0
    assert stats.p95 == pytest.approx(4.0)
    assert responses.calls[0].request.headers["X-TYPESENSE-API-KEY"] == "key"


@responses.activate
def test_run_search_fails_on_errors():
    responses.add(responses.GET, SEARCH_URL, json={"message": "boom"}, status=500)
    with pytest.raises(LoadTestError, match="wildcard \\(2vu\\)"):
        generator().run_search()


@responses.activate
def test_non_json_search_response_counts_as_failure():
    responses.add(responses.GET, SEARCH_URL, body="<html>proxy error</html>", status=200)
    load = generator()

    stats = load.run_scenario(load.scenarios[0], 2)

    assert stats.requests > 0
    assert stats.failures == stats.requests
    assert stats.search_times == []
