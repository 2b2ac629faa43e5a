"""
JSON-lines store of benchmark measurements per commit.

A commit that already has a complete record is not benchmarked again, so
comparing a new build against a known baseline only runs the new build.
"""

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Optional

from ..errors import FilesystemError

logger = logging.getLogger(__name__)


@dataclass
class CommitResults:
    commit: str
    index_duration_ms: float
    documents: int
    search_p95: Dict[str, float] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def is_complete(self, expected_variables: Iterable[str]) -> bool:
        return all(variable in self.search_p95 for variable in expected_variables)


class ResultsStore:

    def __init__(self, path: str):
        self.path = path

    def load(self, commit: str) -> Optional[CommitResults]:
        """Latest record for ``commit``, or None"""
        if not os.path.exists(self.path):
            return None
        latest = None
        with open(self.path, encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    logger.warning(f"Skipping malformed line {number} in {self.path}")
                    continue
                if record.get("commit") == commit:
                    latest = CommitResults(**record)
        return latest

    def save(self, results: CommitResults):
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(results)) + "\n")
        except OSError as e:
            raise FilesystemError(f"Could not write benchmark results to {self.path}: {e}") from e
        logger.debug(f"Saved results for {results.commit} to {self.path}")
