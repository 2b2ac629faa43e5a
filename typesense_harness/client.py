"""
HTTP access to running server nodes.

``NodeClient`` wraps one node's REST API with a method per endpoint the
harness uses. The module-level helpers are what the API test suite calls:
plain requests against the single node, requests against a cluster node
after a bounded wait for replication to converge, and a retrying fetch used
by the benchmark.
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import requests

from .config import DEFAULT_API_KEY, DEFAULT_HOST
from .errors import HealthCheckError, RequestError
from .nodes import CLUSTER_PORTS, SINGLE_NODE_PORT

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"
REQUEST_TIMEOUT = 30.0

# Best-effort convergence wait: at most this many committed-index checks.
# The delay after a failed check starts at the base and is multiplied by the
# base each round, so the waits are 10ms, 100ms, 1s and 10s.
CONVERGENCE_ATTEMPTS = 4
CONVERGENCE_BASE_DELAY_MS = 10

FETCH_RETRIES = 3
FETCH_RETRY_DELAY = 5.0


def convergence_delays(attempts: int = CONVERGENCE_ATTEMPTS,
                       base_ms: int = CONVERGENCE_BASE_DELAY_MS) -> List[float]:
    """Delays in seconds slept after each failed convergence check"""
    delays = []
    delay = base_ms
    for _ in range(attempts):
        delays.append(delay / 1000.0)
        delay *= base_ms
    return delays


def _decode(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class NodeClient:
    """REST client bound to one node's HTTP port"""

    def __init__(self, port: int, api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST,
                 timeout: float = REQUEST_TIMEOUT):
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            API_KEY_HEADER: api_key,
            "Content-Type": "application/json",
        })

    def __repr__(self):
        return f"NodeClient({self.base_url})"

    def close(self):
        self.session.close()

    def request(self, method: str, path: str, params: Optional[Mapping[str, Any]] = None,
                json_body: Any = None, data: Union[str, bytes, None] = None,
                timeout: Optional[float] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, params=params, json=json_body, data=data,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            raise RequestError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            raise RequestError(
                f"{method} {path} on port {self.port} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    # Administrative endpoints

    def health(self) -> Dict[str, Any]:
        """
        Return the health body.

        The server answers 503 with ``{"ok": false}`` while it is starting,
        which is reported as HealthCheckError rather than a request failure.
        """
        url = f"{self.base_url}/health"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise RequestError(f"GET {url} failed: {e}") from e

        body = _decode(response)
        if not isinstance(body, dict) or body.get("ok") is not True:
            raise HealthCheckError(self.port, f"status {response.status_code}, body {body!r}")
        return body

    def status(self) -> Dict[str, Any]:
        return self.request("GET", "/status").json()

    def snapshot(self, snapshot_path: str) -> Dict[str, Any]:
        return self.request("POST", "/operations/snapshot", params={"snapshot_path": snapshot_path}).json()

    def vote(self) -> Dict[str, Any]:
        return self.request("POST", "/operations/vote").json()

    def cache_clear(self) -> Dict[str, Any]:
        return self.request("POST", "/operations/cache/clear").json()

    def metrics(self) -> Dict[str, Any]:
        return self.request("GET", "/metrics.json").json()

    def analytics_flush(self) -> Dict[str, Any]:
        return self.request("POST", "/analytics/flush").json()

    def analytics_status(self) -> Dict[str, Any]:
        return self.request("GET", "/analytics/status").json()

    # Collections and documents

    def create_collection(self, schema: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/collections", json_body=schema).json()

    def retrieve_collection(self, name: str) -> Dict[str, Any]:
        return self.request("GET", f"/collections/{name}").json()

    def list_collections(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/collections").json()

    def delete_collection(self, name: str) -> Dict[str, Any]:
        return self.request("DELETE", f"/collections/{name}").json()

    def import_documents(self, collection: str, documents: Union[str, Iterable[Mapping[str, Any]]],
                         batch_size: Optional[int] = None, action: str = "create",
                         timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Bulk import JSONL; returns one result object per line"""
        if isinstance(documents, str):
            payload = documents
        else:
            payload = "\n".join(json.dumps(doc) for doc in documents)
        params = {"action": action}
        if batch_size:
            params["batch_size"] = batch_size
        response = self.request("POST", f"/collections/{collection}/documents/import",
                                params=params, data=payload.encode("utf-8"), timeout=timeout)
        return [json.loads(line) for line in response.text.splitlines() if line.strip()]

    def retrieve_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/collections/{collection}/documents/{document_id}").json()

    def search(self, collection: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("GET", f"/collections/{collection}/documents/search", params=params).json()

    def multi_search(self, searches: List[Mapping[str, Any]],
                     common_params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self.request("POST", "/multi_search", params=common_params,
                            json_body={"searches": searches}).json()

    # Conversation models

    def create_conversation_model(self, model: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/conversations/models", json_body=model).json()

    def retrieve_conversation_model(self, model_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/conversations/models/{model_id}").json()


def _with_api_key(headers: Optional[Mapping[str, str]], api_key: str) -> Dict[str, str]:
    merged = dict(headers or {})
    merged[API_KEY_HEADER] = api_key
    return merged


def fetch_single_node(path: str, method: str = "GET", port: int = SINGLE_NODE_PORT,
                      headers: Optional[Mapping[str, str]] = None, api_key: str = DEFAULT_API_KEY,
                      host: str = DEFAULT_HOST, **kwargs) -> requests.Response:
    """Issue a request to the single node with the API key header added"""
    return requests.request(
        method, f"http://{host}:{port}{path}",
        headers=_with_api_key(headers, api_key),
        timeout=REQUEST_TIMEOUT,
        **kwargs,
    )


def cluster_port(node: int) -> int:
    if not 1 <= node <= len(CLUSTER_PORTS):
        raise ValueError(f"Cluster node must be between 1 and {len(CLUSTER_PORTS)}, got {node}")
    return CLUSTER_PORTS[node - 1]


def fetch_multi_node_request(node: int, path: str, method: str = "GET",
                             headers: Optional[Mapping[str, str]] = None,
                             api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST,
                             **kwargs) -> requests.Response:
    """Issue a request to cluster node 1, 2 or 3 without waiting for convergence"""
    return requests.request(
        method, f"http://{host}:{cluster_port(node)}{path}",
        headers=_with_api_key(headers, api_key),
        timeout=REQUEST_TIMEOUT,
        **kwargs,
    )


def _committed_index(node: int, api_key: str, host: str) -> Optional[int]:
    try:
        response = fetch_multi_node_request(node, "/status", api_key=api_key, host=host)
        return response.json().get("committed_index")
    except (requests.RequestException, ValueError, AttributeError) as e:
        logger.debug(f"Could not read committed index of node {node}: {e}")
        return None


def check_committed_index(api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST) -> bool:
    """True when every cluster node reports the same committed index"""
    nodes = range(1, len(CLUSTER_PORTS) + 1)
    with ThreadPoolExecutor(max_workers=len(CLUSTER_PORTS)) as pool:
        indexes = list(pool.map(lambda n: _committed_index(n, api_key, host), nodes))
    if any(index is None for index in indexes):
        return False
    return len(set(indexes)) == 1


def wait_for_convergence(api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST) -> bool:
    """
    Poll the cluster until committed indexes agree or the attempt budget runs
    out. Returns whether convergence was observed; callers proceed either way.
    """
    for attempt, delay in enumerate(convergence_delays(), start=1):
        if check_committed_index(api_key, host):
            return True
        logger.debug(f"Cluster not converged (attempt {attempt}/{CONVERGENCE_ATTEMPTS}), sleeping {delay}s")
        time.sleep(delay)
    logger.warning("Cluster did not converge within the retry budget, proceeding anyway")
    return False


def fetch_multi_node(node: int, path: str, method: str = "GET",
                     headers: Optional[Mapping[str, str]] = None,
                     api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST,
                     **kwargs) -> requests.Response:
    """Wait (bounded) for the cluster to converge, then issue the request"""
    wait_for_convergence(api_key, host)
    return fetch_multi_node_request(node, path, method=method, headers=headers,
                                    api_key=api_key, host=host, **kwargs)


def _analytics_drained(statuses: Iterable[Any]) -> bool:
    for status in statuses:
        if not isinstance(status, dict):
            return False
        if any(value != 0 for value in status.values()):
            return False
    return True


def wait_for_single_analytics_flush(api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST,
                                    port: int = SINGLE_NODE_PORT) -> bool:
    fetch_single_node("/analytics/flush", method="POST", port=port, api_key=api_key, host=host)
    for delay in convergence_delays():
        response = fetch_single_node("/analytics/status", port=port, api_key=api_key, host=host)
        if _analytics_drained([_decode(response)]):
            return True
        time.sleep(delay)
    return False


def wait_for_multi_analytics_flush(api_key: str = DEFAULT_API_KEY, host: str = DEFAULT_HOST) -> bool:
    nodes = list(range(1, len(CLUSTER_PORTS) + 1))
    with ThreadPoolExecutor(max_workers=len(nodes)) as pool:
        list(pool.map(
            lambda n: fetch_multi_node_request(n, "/analytics/flush", method="POST", api_key=api_key, host=host),
            nodes,
        ))
        for delay in convergence_delays():
            responses = pool.map(
                lambda n: fetch_multi_node_request(n, "/analytics/status", api_key=api_key, host=host),
                nodes,
            )
            if _analytics_drained(_decode(r) for r in responses):
                return True
            time.sleep(delay)
    return False


def fetch_node(port: int, endpoint: str, method: str = "GET", body: Any = None,
               params: Optional[Mapping[str, Any]] = None, num_retries: int = FETCH_RETRIES,
               retry_delay: float = FETCH_RETRY_DELAY, api_key: str = DEFAULT_API_KEY,
               host: str = DEFAULT_HOST) -> Any:
    """
    Call a node endpoint, retrying non-ok responses and network failures
    ``num_retries`` times with a fixed delay. Returns the decoded body.
    """
    url = f"http://{host}:{port}/{endpoint.lstrip('/')}"
    headers = {"Content-Type": "application/json", API_KEY_HEADER: api_key}
    retries_left = num_retries

    while True:
        try:
            response = requests.request(
                method, url, headers=headers, params=params,
                data=json.dumps(body) if body is not None else None,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            if retries_left <= 0:
                raise RequestError(f"Request failed: {e} (no retries left)") from e
            logger.debug(f"{method} {url} failed ({e}), {retries_left} retries left")
        else:
            if response.ok:
                return _decode(response)
            if retries_left <= 0:
                raise RequestError(
                    f"HTTP error! status: {response.status_code}, message: {response.text} (no retries left)",
                    status_code=response.status_code,
                    body=response.text,
                )
            logger.debug(f"{method} {url} returned {response.status_code}, {retries_left} retries left")

        retries_left -= 1
        time.sleep(retry_delay)
