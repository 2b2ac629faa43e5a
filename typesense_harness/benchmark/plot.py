import logging
from typing import List

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from .compare import SEARCH_METRIC, BenchmarkRow  # noqa: E402

logger = logging.getLogger(__name__)


def _milliseconds(value: str) -> float:
    return float(value[:-2]) if value.endswith("ms") else float(value)


def plot_search_latencies(rows: List[BenchmarkRow], old_commit: str, new_commit: str, chart_file: str) -> str:
    """Grouped bar chart of old vs new p95 search latency per scenario"""
    search_rows = [row for row in rows if row.metric == SEARCH_METRIC]
    if not search_rows:
        raise ValueError("No search results to plot")

    labels = [row.variable for row in search_rows]
    old_values = [_milliseconds(row.old_value) for row in search_rows]
    new_values = [_milliseconds(row.new_value) for row in search_rows]
    x = np.arange(len(labels))
    width = 0.4

    plt.figure(figsize=(12, 6))
    plt.bar(x - width / 2, old_values, width, label=old_commit[:7])
    plt.bar(x + width / 2, new_values, width, label=new_commit[:7])
    plt.xlabel('Scenario')
    plt.ylabel('p95 search_time_ms')
    plt.title('Search Latency Comparison')
    plt.xticks(x, labels, rotation=45, ha='right')
    plt.legend()
    plt.tight_layout()
    plt.savefig(chart_file)
    plt.close()

    logger.info(f"Chart saved to {chart_file}")
    return chart_file
