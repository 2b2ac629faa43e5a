"""
In-process load generator for the indexing and search benchmarks.

Search load is produced by a pool of worker threads per concurrency level,
each looping over its scenario until the configured duration has elapsed.
Latency is the server-reported ``search_time_ms``.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import requests

from ..client import API_KEY_HEADER, NodeClient
from ..config import DEFAULT_HOST, parse_duration
from ..errors import LoadTestError
from .scenarios import (
    COLLECTION_NAME,
    COLLECTION_SCHEMA,
    CONCURRENCY_LEVELS,
    SEARCH_SCENARIOS,
    SearchScenario,
    generate_phrases,
    phrase_for,
    variable_name,
)

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT = 10.0
IMPORT_TIMEOUT = 60 * 60.0


@dataclass
class IndexStats:
    duration_ms: float
    documents: int
    failures: int = 0


@dataclass
class SearchStats:
    scenario: str
    vus: int
    search_times: List[float] = field(default_factory=list)
    requests: int = 0
    failures: int = 0
    timeouts: int = 0

    @property
    def variable(self) -> str:
        return variable_name(self.scenario, self.vus)

    @property
    def p95(self) -> float:
        if not self.search_times:
            return 0.0
        return float(np.percentile(self.search_times, 95))

    @property
    def check_pass_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return (self.requests - self.failures) / self.requests * 100

    def merge(self, other: "SearchStats"):
        self.search_times.extend(other.search_times)
        self.requests += other.requests
        self.failures += other.failures
        self.timeouts += other.timeouts


class LoadGenerator:
    """Runs the indexing and search benchmarks against one node"""

    def __init__(self, port: int, api_key: str, batch_size: int, duration: str,
                 host: str = DEFAULT_HOST, collection: str = COLLECTION_NAME,
                 scenarios: Sequence[SearchScenario] = SEARCH_SCENARIOS,
                 concurrency_levels: Tuple[int, ...] = CONCURRENCY_LEVELS,
                 gap: float = 5.0):
        self.port = port
        self.api_key = api_key
        self.batch_size = batch_size
        self.duration_seconds = parse_duration(duration)
        self.host = host
        self.collection = collection
        self.scenarios = list(scenarios)
        self.concurrency_levels = tuple(concurrency_levels)
        self.gap = gap
        self.client = NodeClient(port, api_key, host=host)

    @property
    def search_url(self) -> str:
        return f"http://{self.host}:{self.port}/collections/{self.collection}/documents/search"

    def create_collection(self):
        schema = dict(COLLECTION_SCHEMA, name=self.collection)
        return self.client.create_collection(schema)

    def run_indexing(self, dataset_path: str) -> IndexStats:
        """Bulk import a JSONL file and time the request"""
        with open(dataset_path, encoding="utf-8") as f:
            payload = f.read()
        expected = sum(1 for line in payload.splitlines() if line.strip())

        logger.info(f"Importing {expected} documents with batch size {self.batch_size}")
        start = time.perf_counter()
        results = self.client.import_documents(
            self.collection, payload, batch_size=self.batch_size, timeout=IMPORT_TIMEOUT,
        )
        duration_ms = (time.perf_counter() - start) * 1000

        failures = sum(1 for result in results if not result.get("success"))
        if failures or len(results) != expected:
            raise LoadTestError(
                f"Import reported {failures} failures for {len(results)} results, expected {expected} documents"
            )
        logger.info(f"Imported {expected} documents in {duration_ms / 1000:.3f}s")
        return IndexStats(duration_ms=duration_ms, documents=expected, failures=failures)

    def run_search(self) -> Dict[str, SearchStats]:
        """Run every scenario at every concurrency level; keyed by variable name"""
        results = {}
        runs = [(scenario, vus) for scenario in self.scenarios for vus in self.concurrency_levels]
        for index, (scenario, vus) in enumerate(runs):
            stats = self.run_scenario(scenario, vus)
            results[stats.variable] = stats
            logger.info(
                f"{stats.variable}: {stats.requests} requests, p95 {stats.p95:.2f}ms, "
                f"{stats.timeouts} timeouts, checks {stats.check_pass_rate:.2f}%"
            )
            if index < len(runs) - 1 and self.gap:
                time.sleep(self.gap)

        failing = [s for s in results.values() if s.check_pass_rate < 100]
        if failing:
            summary = ", ".join(f"{s.variable} {s.check_pass_rate:.2f}%" for s in failing)
            raise LoadTestError(f"Search checks did not all pass: {summary}")
        return results

    def run_scenario(self, scenario: SearchScenario, vus: int) -> SearchStats:
        total = SearchStats(scenario.name, vus)
        lock = threading.Lock()
        phrases = generate_phrases()
        deadline = time.monotonic() + self.duration_seconds

        def worker(index: int):
            local = SearchStats(scenario.name, vus)
            session = requests.Session()
            session.headers.update({API_KEY_HEADER: self.api_key, "Accept": "application/json"})
            iteration = 0
            try:
                while time.monotonic() < deadline:
                    phrase = phrase_for(index, iteration, vus, phrases)
                    for params in scenario.queries(phrase):
                        self._search(session, params, local)
                    iteration += 1
            finally:
                session.close()
            with lock:
                total.merge(local)

        threads = [threading.Thread(target=worker, args=(i,), daemon=True) for i in range(vus)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return total

    def _search(self, session: requests.Session, params, stats: SearchStats):
        stats.requests += 1
        try:
            response = session.get(self.search_url, params=params, timeout=SEARCH_TIMEOUT)
        except requests.Timeout:
            stats.timeouts += 1
            stats.failures += 1
            return
        except requests.RequestException as e:
            logger.debug(f"Search request failed: {e}")
            stats.failures += 1
            return

        if response.status_code != 200:
            stats.failures += 1
            return
        try:
            search_time: Optional[float] = response.json().get("search_time_ms")
        except ValueError as e:
            logger.debug(f"Search response is not JSON: {e}")
            stats.failures += 1
            return
        if search_time is not None:
            stats.search_times.append(float(search_time))
