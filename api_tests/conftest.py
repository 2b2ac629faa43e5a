"""
Fixtures for the API suite.

This suite runs against live server processes started by
``typesense-harness test``; each phase invokes pytest with a marker
expression such as ``single_restarted and not secrets``.
"""

import functools
import os

import pytest

from typesense_harness.client import fetch_multi_node, fetch_single_node
from typesense_harness.config import DEFAULT_API_KEY
from typesense_harness.phases import MARKERS


def pytest_configure(config):
    for name, description in MARKERS.items():
        config.addinivalue_line("markers", f"{name}: {description}")


@pytest.fixture(scope="session")
def api_key():
    return os.environ.get("TYPESENSE_API_KEY", DEFAULT_API_KEY)


@pytest.fixture(scope="session")
def single(api_key):
    """``single(path, method="GET", **kwargs)`` against the single node"""
    return functools.partial(fetch_single_node, api_key=api_key)


@pytest.fixture(scope="session")
def multi(api_key):
    """``multi(node, path, method="GET", **kwargs)`` after the cluster converged"""
    return functools.partial(fetch_multi_node, api_key=api_key)


@pytest.fixture(scope="session")
def snapshot_path():
    path = os.environ.get("TYPESENSE_SNAPSHOT_PATH")
    if not path:
        pytest.skip("TYPESENSE_SNAPSHOT_PATH is not set")
    return path


@pytest.fixture(scope="session")
def openai_api_key():
    key = os.environ.get("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY is not set")
    return key


@pytest.fixture(scope="session")
def embedding_api_key():
    """A real key, or a placeholder when requests go through TYPESENSE_PROXY_URL"""
    key = os.environ.get("OPENAI_API_KEY")
    if key:
        return key
    if os.environ.get("TYPESENSE_PROXY_URL"):
        return "sk-random"
    pytest.skip("neither OPENAI_API_KEY nor TYPESENSE_PROXY_URL is set")
