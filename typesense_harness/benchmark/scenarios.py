"""
Benchmark collection, dataset and search scenarios.

Non-wildcard scenarios simulate a user typing: a three letter phrase is
expanded into its prefixes (``r``, ``ro``, ``roc``) and each prefix is sent
as its own search.
"""

import itertools
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List

COLLECTION_NAME = "songs"

DATASET_URL = "https://dl.typesense.org/datasets/musicbrainz-1M-songs.jsonl.bz2"

COLLECTION_SCHEMA = {
    "name": COLLECTION_NAME,
    "fields": [
        {"name": "album_name", "type": "string"},
        {"name": "country", "type": "string", "facet": True},
        {"name": "genres", "type": "string[]", "facet": True},
        {"name": "primary_artist_name", "type": "string", "facet": True},
        {"name": "release_date", "type": "int64"},
        {"name": "release_decade", "type": "string", "facet": True},
        {"name": "release_group_types", "type": "string[]", "facet": True},
        {"name": "title", "type": "string"},
        {"name": "track_id", "type": "string"},
        {"name": "urls", "type": "object[]", "optional": True},
    ],
    "enable_nested_fields": True,
}

CONCURRENCY_LEVELS = (50, 100)

STOP_WORDS = frozenset([
    "a", "am", "an", "and", "as", "at", "by", "c's", "co", "do", "eg", "et",
    "for", "he", "hi", "i", "i'd", "i'm", "ie", "if", "in", "inc", "is", "it",
    "its", "me", "my", "nd", "no", "non", "nor", "not", "of", "off", "oh",
    "ok", "on", "or", "per", "que", "qv", "rd", "re", "so", "sub", "t's",
    "th", "the", "to", "too", "two", "un", "up", "us", "vs", "we",
])

PHRASE_LENGTH = 3


@dataclass(frozen=True)
class SearchScenario:
    name: str
    params: Dict[str, Any] = field(default_factory=dict)
    wildcard: bool = False

    def queries(self, phrase: str) -> List[Dict[str, Any]]:
        """Search parameter sets sent for one iteration of this scenario"""
        if self.wildcard:
            return [dict(self.params, q="*")]
        return [dict(self.params, q=query) for query in instant_search_queries(phrase)]


SEARCH_SCENARIOS = [
    SearchScenario("wildcard", {"query_by": "title"}, wildcard=True),
    SearchScenario(
        "wildcard with facets",
        {"query_by": "title", "facet_by": "country,genres,release_decade"},
        wildcard=True,
    ),
    SearchScenario("instant search on title", {"query_by": "title", "prefix": "true"}),
    SearchScenario(
        "instant search with filters and facets",
        {
            "query_by": "title,primary_artist_name,album_name",
            "filter_by": "release_date:>946684800",
            "facet_by": "genres,release_group_types",
        },
    ),
    SearchScenario(
        "sorted by release date",
        {"query_by": "title", "sort_by": "release_date:desc"},
        wildcard=True,
    ),
]


def get_scenario(name: str) -> SearchScenario:
    for scenario in SEARCH_SCENARIOS:
        if scenario.name == name:
            return scenario
    raise KeyError(f"Scenario {name} not found")


def instant_search_queries(phrase: str) -> List[str]:
    return [phrase[:i] for i in range(1, min(len(phrase), PHRASE_LENGTH) + 1)]


def is_valid_phrase(phrase: str) -> bool:
    return (
        len(phrase) == PHRASE_LENGTH
        and phrase not in STOP_WORDS
        and all(char in string.ascii_lowercase for char in phrase)
    )


def generate_phrases(length: int = PHRASE_LENGTH) -> List[str]:
    """Every lowercase permutation of ``length`` letters that is not a stop word"""
    phrases = ("".join(chars) for chars in itertools.product(string.ascii_lowercase, repeat=length))
    return [phrase for phrase in phrases if is_valid_phrase(phrase)]


def phrase_for(worker: int, iteration: int, workers: int, phrases: List[str]) -> str:
    """Spread workers evenly over the phrase list, advancing one phrase per iteration"""
    offset = -(-len(phrases) // workers) * worker
    return phrases[(offset + iteration) % len(phrases)]


def variable_name(scenario: str, vus: int) -> str:
    return f"{scenario} ({vus}vu)"
