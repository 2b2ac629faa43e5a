"""Markdown guide with the curl commands needed to reproduce a benchmark run by hand."""

import json
import logging
import os
from collections import OrderedDict
from typing import List, Optional
from urllib.parse import urlencode

from ..errors import FilesystemError
from .scenarios import COLLECTION_NAME, COLLECTION_SCHEMA, DATASET_URL, get_scenario

logger = logging.getLogger(__name__)

DEFAULT_GUIDE = "reproduction-guide.md"


def _query_string(params) -> str:
    flat = {k: ",".join(v) if isinstance(v, (list, tuple)) else v for k, v in params.items()}
    return urlencode(flat)


def _scenarios_markdown(rows, api_key: str, port: int) -> str:
    groups = OrderedDict()
    for row in rows:
        if row.scenario is None:
            continue
        groups.setdefault(row.scenario, []).append(row)

    sections = []
    for name, results in groups.items():
        params = dict(get_scenario(name).params)
        params.setdefault("q", "*")
        timings = "\n# ".join(
            f"{r.vus} VUs: {r.new_value} vs {r.old_value} ({r.formatted_change(color=False)})"
            for r in results
        )
        sections.append(f"""
### {name}
### Search Parameters
```json
{json.dumps(params, indent=2)}
```
### Curl Request
```bash
# {timings}
curl "http://localhost:{port}/collections/{COLLECTION_NAME}/documents/search?{_query_string(params)}" \\
    -X GET \\
    -H "Content-Type: application/json" \\
    -H "X-TYPESENSE-API-KEY: {api_key}"
```""")
    return "".join(sections)


def render_guide(passing: List, failing: List, api_key: str, commit_hash: Optional[str] = None,
                 port: int = 8108) -> str:
    return f"""
# Reproduction Guide
## Failing commit
`{commit_hash or "All tests passed"}`
## Steps to reproduce
1. Create the collection
```bash
curl "http://localhost:{port}/collections" \\
    -X POST \\
    -H "Content-Type: application/json" \\
    -H "X-TYPESENSE-API-KEY: {api_key}" \\
    -d '{json.dumps(COLLECTION_SCHEMA)}'
```
2. Download the dataset from [here]({DATASET_URL})
3. Index the dataset
```bash
curl "http://localhost:{port}/collections/{COLLECTION_NAME}/documents/import" \\
    -X POST \\
    -H "Content-Type: application/json" \\
    -H "X-TYPESENSE-API-KEY: {api_key}" \\
    --data-binary @musicbrainz-1M-songs.jsonl
```
4. Run the passing test benchmark scenarios
## Passing Scenarios
{_scenarios_markdown(passing, api_key, port)}
5. Run the failing test benchmark scenarios
## Failing Scenarios
{_scenarios_markdown(failing, api_key, port)}
"""


def write_guide(path: str, rows: List, failing: List, api_key: str, commit_hash: Optional[str] = None,
                port: int = 8108) -> str:
    passing = [row for row in rows if row not in failing]
    path = os.path.abspath(path)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_guide(passing, failing, api_key, commit_hash, port))
    except OSError as e:
        raise FilesystemError(f"Could not write reproduction guide to {path}: {e}") from e
    logger.info(f"Reproduction guide written to {path}")
    return path
