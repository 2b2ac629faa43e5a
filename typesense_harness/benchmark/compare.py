"""
Compare indexing and search performance of two server binaries.

Each binary is started as a single node in its own data directory, loaded
with the songs dataset and searched under every scenario. The p95 latencies
are diffed and any regression above the failure threshold fails the run.
"""

import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from colorama import Fore, Style
from tabulate import tabulate

from ..config import DEFAULT_API_KEY
from ..errors import BenchmarkThresholdError, FilesystemError, LoadTestError
from ..nodes import SINGLE_NODE_PORT, Topology, standalone_node
from ..process import ProcessManager
from .load import LoadGenerator
from .results import CommitResults, ResultsStore
from .scenarios import variable_name

logger = logging.getLogger(__name__)

IMPORT_METRIC = "Time to bulk import"
SEARCH_METRIC = "p95 search_time_ms when searching with"
PAUSE_BETWEEN_RUNS = 10.0


def calculate_percentage_change(old_value: float, new_value: float) -> float:
    if old_value == 0:
        return 0.0 if new_value == 0 else math.inf
    return (new_value - old_value) / old_value * 100


def format_percentage_change(change: float, color: bool = True) -> str:
    if not math.isfinite(change):
        text = "+∞%"
        return f"{Fore.RED}{text}{Style.RESET_ALL}" if color else text

    formatted = f"{change:.2f}"
    if formatted in ("0.00", "-0.00"):
        return "0.00%"

    sign = "+" if change >= 0 else ""
    text = f"{sign}{formatted}%"
    if not color:
        return text
    return f"{Fore.GREEN if change < 0 else Fore.RED}{text}{Style.RESET_ALL}"


@dataclass
class BenchmarkRow:
    metric: str
    variable: str
    old_value: str
    new_value: str
    percentage_change: float
    scenario: Optional[str] = None
    vus: Optional[int] = None

    def formatted_change(self, color: bool = True) -> str:
        return format_percentage_change(self.percentage_change, color=color)

    def exceeds(self, threshold: float) -> bool:
        return self.percentage_change > threshold


def build_rows(old: CommitResults, new: CommitResults,
               scenarios: Optional[Sequence[tuple]] = None) -> List[BenchmarkRow]:
    """
    One import row followed by one row per (scenario, concurrency) pair of
    the old commit. ``scenarios`` maps each variable back to its scenario
    name and concurrency for the reproduction guide.
    """
    change = calculate_percentage_change(old.index_duration_ms, new.index_duration_ms)
    rows = [BenchmarkRow(
        metric=IMPORT_METRIC,
        variable=f"{old.documents:,} records",
        old_value=f"{old.index_duration_ms / 1000:.5f}s",
        new_value=f"{new.index_duration_ms / 1000:.5f}s",
        percentage_change=change,
    )]

    lookup = {variable: (name, vus) for variable, name, vus in (scenarios or [])}
    for variable, old_p95 in old.search_p95.items():
        if variable not in new.search_p95:
            raise LoadTestError(f"{variable} doesn't have a value for the search benchmark")
        new_p95 = new.search_p95[variable]
        scenario, vus = lookup.get(variable, (None, None))
        rows.append(BenchmarkRow(
            metric=SEARCH_METRIC,
            variable=variable,
            old_value=f"{old_p95:.2f}ms",
            new_value=f"{new_p95:.2f}ms",
            percentage_change=calculate_percentage_change(old_p95, new_p95),
            scenario=scenario,
            vus=vus,
        ))
    return rows


def render_table(rows: List[BenchmarkRow], old_commit: str, new_commit: str, color: bool = True) -> str:
    headers = [
        "Metric",
        "Variable",
        f"Value for commit {old_commit[:7]}",
        f"Value for commit {new_commit[:7]}",
        "Percentage Change",
    ]
    table = [
        [row.metric, row.variable, row.old_value, row.new_value, row.formatted_change(color=color)]
        for row in rows
    ]
    return tabulate(table, headers=headers, tablefmt="grid",
                    colalign=("left", "left", "right", "right", "right"))


def failing_rows(rows: List[BenchmarkRow], threshold: Optional[float]) -> List[BenchmarkRow]:
    if threshold is None:
        return []
    return [row for row in rows if row.exceeds(threshold)]


def check_threshold(rows: List[BenchmarkRow], threshold: Optional[float]):
    """Raise with every regression above ``threshold``, not just the first"""
    failures = failing_rows(rows, threshold)
    if failures:
        raise BenchmarkThresholdError(threshold, failures)


class BenchmarkComparator:
    """Benchmarks an old and a new binary and reports the difference"""

    def __init__(self, binaries: Sequence[str], commit_hashes: Sequence[str], working_directory: str,
                 dataset_path: str, api_key: str = DEFAULT_API_KEY, batch_size: int = 100,
                 duration: str = "1s", fail_at: Optional[float] = None,
                 results_store: Optional[ResultsStore] = None, port: int = SINGLE_NODE_PORT,
                 pause: float = PAUSE_BETWEEN_RUNS, proxy_env: Optional[Dict[str, str]] = None,
                 generator_factory: Callable[..., LoadGenerator] = LoadGenerator):
        if len(binaries) != 2 or len(commit_hashes) != 2:
            raise ValueError("Exactly two binaries and two commit hashes are required")
        self.binaries = list(binaries)
        self.commit_hashes = list(commit_hashes)
        self.working_directory = os.path.abspath(working_directory)
        self.dataset_path = dataset_path
        self.api_key = api_key
        self.batch_size = batch_size
        self.duration = duration
        self.fail_at = fail_at
        self.results_store = results_store
        self.port = port
        self.pause = pause
        self.proxy_env = proxy_env or {}
        self.generator_factory = generator_factory
        self.rows: List[BenchmarkRow] = []
        self.managers: List[ProcessManager] = []

    def _generator(self) -> LoadGenerator:
        return self.generator_factory(
            port=self.port, api_key=self.api_key, batch_size=self.batch_size, duration=self.duration,
        )

    def _variables(self) -> List[tuple]:
        generator = self._generator()
        return [
            (variable_name(scenario.name, vus), scenario.name, vus)
            for scenario in generator.scenarios
            for vus in generator.concurrency_levels
        ]

    def run(self) -> List[BenchmarkRow]:
        results = self.collect_results()
        old_commit, new_commit = self.commit_hashes
        self.rows = build_rows(results[old_commit], results[new_commit], self._variables())
        logger.info("\n" + render_table(self.rows, old_commit, new_commit))
        return self.rows

    def check(self):
        check_threshold(self.rows, self.fail_at)

    def collect_results(self) -> Dict[str, CommitResults]:
        expected = [variable for variable, _, _ in self._variables()]
        results = {}
        pending = []
        for binary, commit in zip(self.binaries, self.commit_hashes):
            cached = self.results_store.load(commit) if self.results_store else None
            if cached and cached.is_complete(expected):
                logger.info(f"Reusing stored results for {commit[:7]}")
                results[commit] = cached
            else:
                pending.append((binary, commit))

        for index, (binary, commit) in enumerate(pending):
            results[commit] = self.benchmark_commit(binary, commit)
            if self.results_store:
                self.results_store.save(results[commit])
            if index < len(pending) - 1 and self.pause:
                logger.info(f"Waiting {self.pause:.0f} seconds before next benchmark...")
                time.sleep(self.pause)
        return results

    def benchmark_commit(self, binary: str, commit: str) -> CommitResults:
        data_dir = os.path.join(self.working_directory, commit)
        try:
            os.makedirs(data_dir, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not create data directory {data_dir}: {e}") from e

        node = standalone_node(data_dir, http=self.port)
        manager = ProcessManager(
            binary_path=os.path.abspath(binary),
            api_key=self.api_key,
            working_directory=self.working_directory,
            topology=Topology.SINGLE,
            proxy_env=self.proxy_env,
            nodes=[node],
        )

        logger.info(f"Running benchmarks for {commit[:7]} with {binary}")
        self.managers.append(manager)
        try:
            manager.start_topology()
            generator = self._generator()
            generator.create_collection()
            index_stats = generator.run_indexing(self.dataset_path)
            search_stats = generator.run_search()
        finally:
            manager.shutdown()
            self.managers.remove(manager)

        logger.info(f"Benchmarks complete for {commit[:7]}")
        return CommitResults(
            commit=commit,
            index_duration_ms=index_stats.duration_ms,
            documents=index_stats.documents,
            search_p95={variable: stats.p95 for variable, stats in search_stats.items()},
        )
