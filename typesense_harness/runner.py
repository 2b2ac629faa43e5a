"""
Phase runner for the API test suite.

Runs the suite once per lifecycle phase against a live topology:

    clean data dirs
    single-fresh -> single-restarted -> single-snapshot
    multi-fresh  -> multi-restarted  -> multi-snapshot
    no-phase
    shutdown (always)

A failing phase is reported and the run continues with the next one. A
topology that cannot be brought up aborts the rest of its stage. A missing
working directory or binary aborts the whole run before any phase starts.
"""

import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from colorama import Fore, Style
from tabulate import tabulate

from . import log
from .config import DEFAULT_API_KEY, PHASE_TIMEOUT
from .errors import HarnessError
from .nodes import CLUSTER_PORTS, SINGLE_NODE_PORT
from .phases import Phase, filter_expression
from .process import ProcessManager

logger = logging.getLogger(__name__)

# pytest exit code when the marker expression selects nothing
NO_TESTS_COLLECTED = 5

STAGES = ("all", "single", "multi")


@dataclass
class PhaseResult:
    phase: Phase
    status: str
    duration: float = 0.0
    details: str = ""

    @property
    def passed(self) -> bool:
        return self.status == "PASSED"


class PhaseRunner:
    """Runs every phase in order and turns the outcome into an exit code"""

    def __init__(self, single_manager: ProcessManager, multi_manager: ProcessManager, suite_dir: str,
                 exclude: Iterable[str] = (), phase_timeout: float = PHASE_TIMEOUT,
                 pytest_args: Sequence[str] = (), api_key: str = DEFAULT_API_KEY,
                 run_command: Callable = subprocess.run):
        self.single_manager = single_manager
        self.multi_manager = multi_manager
        self.suite_dir = suite_dir
        self.exclude = list(exclude)
        self.phase_timeout = phase_timeout
        self.pytest_args = list(pytest_args)
        self.api_key = api_key
        self.run_command = run_command
        self.results: List[PhaseResult] = []
        self._shut_down = False

    @property
    def managers(self) -> List[ProcessManager]:
        return [self.single_manager, self.multi_manager]

    def run(self, stage: str = "all") -> int:
        if stage not in STAGES:
            raise ValueError(f"Unknown stage {stage!r}, expected one of {', '.join(STAGES)}")

        # Setup errors abort the run before any test subprocess is launched
        for manager in self.managers:
            manager.preflight()

        try:
            self.single_manager.clean_data_dirs([self.multi_manager.snapshot_path])
            if stage in ("all", "single"):
                self.run_single_stage()
            if stage in ("all", "multi"):
                self.run_multi_stage()
            if stage == "all":
                self.run_phase(Phase.NO_PHASE)
        finally:
            self.shutdown()

        self.print_summary()
        return self.exit_code

    @property
    def exit_code(self) -> int:
        if self.results and all(result.passed for result in self.results):
            return 0
        return 1

    def shutdown(self):
        if self._shut_down:
            return
        self._shut_down = True
        for manager in self.managers:
            manager.shutdown()

    # Stages

    def run_single_stage(self):
        manager = self.single_manager
        steps = [
            (Phase.SINGLE_FRESH, manager.start_topology),
            (Phase.SINGLE_RESTARTED, manager.restart_all),
            (Phase.SINGLE_SNAPSHOT, lambda: self._snapshot_and_restart(manager, SINGLE_NODE_PORT)),
        ]
        try:
            self._run_stage(steps)
        finally:
            # The cluster must never run next to the single node
            manager.shutdown()

    def run_multi_stage(self):
        manager = self.multi_manager
        steps = [
            (Phase.MULTI_FRESH, manager.start_topology),
            (Phase.MULTI_RESTARTED, manager.restart_all),
            (Phase.MULTI_SNAPSHOT, lambda: self._snapshot_and_restart(manager, CLUSTER_PORTS[0])),
        ]
        try:
            self._run_stage(steps)
        finally:
            manager.shutdown()

    def _snapshot_and_restart(self, manager: ProcessManager, port: int):
        manager.snapshot(port)
        manager.restart_all()

    def _run_stage(self, steps: List[Tuple[Phase, Callable]]):
        for index, (phase, prepare) in enumerate(steps):
            try:
                prepare()
            except HarnessError as e:
                logger.error(f"Could not prepare phase {phase.value}: {e}")
                log.banner(f"❌ Phase {phase.value} failed", Fore.RED)
                self.results.append(PhaseResult(phase, "FAILED", details=f"setup: {e}"))
                for skipped, _ in steps[index + 1:]:
                    self.results.append(PhaseResult(skipped, "SKIPPED", details=f"{phase.value} setup failed"))
                return
            self.run_phase(phase)

    # Phases

    def phase_command(self, phase: Phase) -> List[str]:
        return [
            sys.executable, "-m", "pytest", self.suite_dir,
            "-m", filter_expression(phase, self.exclude),
        ] + self.pytest_args

    def phase_env(self, phase: Phase) -> dict:
        manager = self.multi_manager if phase.is_multi else self.single_manager
        env = os.environ.copy()
        env.update({
            "TYPESENSE_API_KEY": self.api_key,
            "TYPESENSE_PHASE": phase.value,
            "TYPESENSE_SINGLE_PORT": str(SINGLE_NODE_PORT),
            "TYPESENSE_MULTI_PORTS": ",".join(str(port) for port in CLUSTER_PORTS),
            "TYPESENSE_SNAPSHOT_PATH": manager.snapshot_path,
            "TYPESENSE_WORKING_DIRECTORY": manager.working_directory,
        })
        return env

    def run_phase(self, phase: Phase) -> bool:
        log.banner(f"⭐ Running phase: {phase.value}")
        command = self.phase_command(phase)
        logger.debug(f"Running {' '.join(command)}")

        start = time.time()
        returncode: Optional[int] = None
        try:
            completed = self.run_command(command, env=self.phase_env(phase), timeout=self.phase_timeout)
            returncode = completed.returncode
            details = f"exit code {returncode}"
        except subprocess.TimeoutExpired:
            details = f"timed out after {self.phase_timeout:.0f}s"
        duration = time.time() - start

        passed = returncode in (0, NO_TESTS_COLLECTED)
        if returncode == NO_TESTS_COLLECTED:
            details = "no tests selected"
        if not passed:
            log.banner(f"❌ Phase {phase.value} failed", Fore.RED)

        self.results.append(PhaseResult(phase, "PASSED" if passed else "FAILED", duration, details))
        return passed

    def print_summary(self):
        colors = {"PASSED": Fore.GREEN, "FAILED": Fore.RED, "SKIPPED": Fore.YELLOW}
        rows = [
            {
                'Phase': result.phase.value,
                'Status': f"{colors[result.status]}{result.status}{Style.RESET_ALL}",
                'Duration': f"{result.duration:.1f}s",
                'Details': result.details,
            }
            for result in self.results
        ]
        print(f"\n{Fore.CYAN}Phase Results Summary{Style.RESET_ALL}")
        print(tabulate(rows, headers='keys', tablefmt='grid'))

        failed = sum(1 for r in self.results if r.status == "FAILED")
        skipped = sum(1 for r in self.results if r.status == "SKIPPED")
        passed = len(self.results) - failed - skipped
        print(f"\nPassed: {passed}, Failed: {failed}, Skipped: {skipped}")
