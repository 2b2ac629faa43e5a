from .compare import (
    BenchmarkComparator,
    BenchmarkRow,
    calculate_percentage_change,
    check_threshold,
    format_percentage_change,
)
from .load import LoadGenerator
from .results import CommitResults, ResultsStore

__all__ = [
    "BenchmarkComparator",
    "BenchmarkRow",
    "CommitResults",
    "LoadGenerator",
    "ResultsStore",
    "calculate_percentage_change",
    "check_threshold",
    "format_percentage_change",
]
