"""Lifecycle phases and the pytest marker expressions that select their tests."""

from enum import Enum
from typing import Iterable, List

SECRETS_MARKER = "secrets"


class Phase(Enum):
    SINGLE_FRESH = "single-fresh"
    SINGLE_RESTARTED = "single-restarted"
    SINGLE_SNAPSHOT = "single-snapshot"
    MULTI_FRESH = "multi-fresh"
    MULTI_RESTARTED = "multi-restarted"
    MULTI_SNAPSHOT = "multi-snapshot"
    NO_PHASE = "no-phase"

    @property
    def marker(self) -> str:
        return self.value.replace("-", "_")

    @property
    def is_multi(self) -> bool:
        return self.value.startswith("multi-")


SINGLE_PHASES = [Phase.SINGLE_FRESH, Phase.SINGLE_RESTARTED, Phase.SINGLE_SNAPSHOT]
MULTI_PHASES = [Phase.MULTI_FRESH, Phase.MULTI_RESTARTED, Phase.MULTI_SNAPSHOT]

# Markers registered by the API suite, with their help text
MARKERS = {phase.marker: f"tests run during the {phase.value} phase" for phase in Phase}
MARKERS[SECRETS_MARKER] = "tests that need a live third-party credential"


def filter_expression(phase: Phase, exclude: Iterable[str] = ()) -> str:
    """
    Build the ``pytest -m`` expression for a phase.

    >>> filter_expression(Phase.SINGLE_FRESH, ["secrets"])
    'single_fresh and not secrets'
    """
    parts: List[str] = [phase.marker]
    parts += [f"not {tag}" for tag in exclude if tag]
    return " and ".join(parts)
