"""Shared fixtures for the harness unit tests."""

import os
import stat
import threading

import pytest

from typesense_harness.nodes import Topology
from typesense_harness.process import ProcessManager


def write_script(path, body):
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def sleeper(tmp_path):
    """Executable that ignores its arguments and sleeps until terminated"""
    return write_script(tmp_path / "sleeper", "exec sleep 30")


@pytest.fixture
def stubborn(tmp_path):
    """Executable that ignores SIGTERM and has to be killed"""
    return write_script(tmp_path / "stubborn", "trap '' TERM\nwhile true; do sleep 0.1; done")


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def make_manager(workdir, sleeper):
    managers = []

    def factory(topology=Topology.SINGLE, binary_path=None, **kwargs):
        kwargs.setdefault("ip_address", "127.0.0.1")
        kwargs.setdefault("extra_args", [])
        manager = ProcessManager(binary_path or sleeper, working_directory=workdir,
                                 topology=topology, **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown(timeout=5)


class FakePopen:
    """Stand-in for subprocess.Popen whose exit is triggered by the test"""

    instances = []

    def __init__(self, args, **kwargs):
        self.args = args
        self.kwargs = kwargs
        # Above any real pid_max, so stray signals hit nothing
        self.pid = 2 ** 30 + len(FakePopen.instances)
        self.returncode = None
        self._done = threading.Event()
        FakePopen.instances.append(self)

    def finish(self, code=0):
        self.returncode = code
        self._done.set()

    def wait(self, timeout=None):
        self._done.wait(timeout)
        return self.returncode


@pytest.fixture
def fake_popen(monkeypatch):
    from typesense_harness import process

    FakePopen.instances = []
    monkeypatch.setattr(process.subprocess, "Popen", FakePopen)
    yield FakePopen
    for instance in FakePopen.instances:
        if not instance._done.is_set():
            instance.finish(0)


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping"""
    from typesense_harness import client

    recorded = []
    monkeypatch.setattr(client.time, "sleep", recorded.append)
    return recorded


@pytest.fixture
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("TYPESENSE_") or key in ("CI", "OPENAI_API_KEY"):
            monkeypatch.delenv(key, raising=False)
