"""
Command line entry point.

    typesense-harness install   [-c COMMIT] [-d DIR] ...
    typesense-harness test      [--no-secrets] [--stage all|single|multi] ...
    typesense-harness benchmark -b OLD NEW -c OLD_HASH NEW_HASH [--fail PCT] ...

Exit code is 0 on full success and 1 on any failure.
"""

import argparse
import logging
import os
import sys

from . import __version__, log
from .benchmark import BenchmarkComparator, ResultsStore
from .benchmark.report import DEFAULT_GUIDE, write_guide
from .benchmark.compare import failing_rows
from .benchmark.plot import plot_search_latencies
from .config import HarnessConfig
from .errors import BenchmarkThresholdError, HarnessError
from .install import DEFAULT_CONTAINER, DEFAULT_GIT_URL, DEFAULT_IMAGE, Installer
from .lifecycle import ShutdownHandler
from .nodes import SNAPSHOT_DIRS, Topology
from .phases import SECRETS_MARKER
from .process import ProcessManager
from .runner import STAGES, PhaseRunner

logger = logging.getLogger(__name__)

DEFAULT_SUITE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "api_tests")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="typesense-harness",
                                     description="Test and benchmark harness for the Typesense server")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    common.add_argument('-d', '--working-directory', help='Working directory (default: TYPESENSE_WORKING_DIRECTORY or cwd)')
    common.add_argument('--api-key', help='API key for the server processes')

    install = subparsers.add_parser('install', parents=[common], help='Build a server binary for a commit')
    install.add_argument('-c', '--commit', help='Commit to build (default: latest)')
    install.add_argument('-g', '--git-url', default=DEFAULT_GIT_URL, help='Typesense git repository')
    install.add_argument('-n', '--container-name', default=DEFAULT_CONTAINER, help='Build container name')
    install.add_argument('-i', '--image-name', default=DEFAULT_IMAGE, help='Build image name')
    install.add_argument('--build-context', help='Directory holding the build image Dockerfile')
    install.add_argument('-y', '--yes', action='store_true', help='Answer yes to all prompts')

    test = subparsers.add_parser('test', parents=[common], help='Run the phased API test suite')
    test.add_argument('-b', '--binary', help='Path of the server binary (default: TYPESENSE_BINARY)')
    test.add_argument('--no-secrets', action='store_true',
                      help='Skip tests that need a live third-party credential')
    test.add_argument('--stage', choices=STAGES, default='all', help='Run only one topology stage')
    test.add_argument('--suite', default=DEFAULT_SUITE, help='Directory of the API test suite')
    test.add_argument('--ip', dest='ip_address', help='Peering address override')
    test.add_argument('-s', '--snapshot-path', help='Base directory for snapshots')
    test.add_argument('--timeout', type=float, dest='phase_timeout', help='Per-phase timeout in seconds')
    test.add_argument('pytest_args', nargs=argparse.REMAINDER, help='Extra arguments passed to pytest')

    bench = subparsers.add_parser('benchmark', parents=[common], help='Compare two server binaries')
    bench.add_argument('-b', '--binaries', nargs=2, required=True, metavar=('OLD', 'NEW'))
    bench.add_argument('-c', '--commit-hashes', nargs=2, required=True, metavar=('OLD', 'NEW'))
    bench.add_argument('-f', '--fail', type=float, default=50.0, help='Regression percentage that fails the run')
    bench.add_argument('--batch-size', type=int, help='Batch size for indexing')
    bench.add_argument('--duration', help='Duration of each search scenario, e.g. 30s')
    bench.add_argument('--dataset', required=True, help='JSONL file of songs to import')
    bench.add_argument('--results-file', help='JSON lines file to store and reuse results')
    bench.add_argument('--plot', help='Write a latency chart to this PNG file')
    bench.add_argument('--reproduction-guide', default=DEFAULT_GUIDE, help='Markdown guide output path')
    return parser


def load_config(args) -> HarnessConfig:
    return HarnessConfig.from_env().with_overrides(
        working_directory=args.working_directory,
        api_key=args.api_key,
        binary_path=getattr(args, 'binary', None),
        ip_address=getattr(args, 'ip_address', None),
        snapshot_path=getattr(args, 'snapshot_path', None),
        phase_timeout=getattr(args, 'phase_timeout', None),
        batch_size=getattr(args, 'batch_size', None),
        duration=getattr(args, 'duration', None),
    )


def run_install(args, config: HarnessConfig) -> int:
    installer = Installer(
        config.working_directory,
        git_url=args.git_url,
        container_name=args.container_name,
        image_name=args.image_name,
        build_context=args.build_context,
        assume_yes=args.yes,
    )
    binary = installer.install(args.commit)
    log.success(f"Typesense installed to {binary}")
    return 0


def _manager(config: HarnessConfig, topology: Topology) -> ProcessManager:
    manager = ProcessManager.from_config(config, topology)
    if config.snapshot_path:
        manager.snapshot_path = os.path.join(os.path.abspath(config.snapshot_path),
                                             os.path.basename(SNAPSHOT_DIRS[topology]))
    return manager


def run_tests(args, config: HarnessConfig) -> int:
    single = _manager(config, Topology.SINGLE)
    multi = _manager(config, Topology.CLUSTER)
    exclude = [SECRETS_MARKER] if args.no_secrets else []
    pytest_args = [a for a in args.pytest_args if a != '--']

    runner = PhaseRunner(single, multi, args.suite, exclude=exclude, phase_timeout=config.phase_timeout,
                         pytest_args=pytest_args, api_key=config.api_key)
    with ShutdownHandler(runner.managers):
        code = runner.run(args.stage)
    if code == 0:
        log.success("All phases passed")
    else:
        log.failure("One or more phases failed")
    return code


def run_benchmark(args, config: HarnessConfig) -> int:
    comparator = BenchmarkComparator(
        binaries=args.binaries,
        commit_hashes=args.commit_hashes,
        working_directory=config.working_directory,
        dataset_path=args.dataset,
        api_key=config.api_key,
        batch_size=config.batch_size,
        duration=config.duration,
        fail_at=args.fail,
        results_store=ResultsStore(args.results_file) if args.results_file else None,
        proxy_env=config.proxy_env,
    )
    with ShutdownHandler(comparator.managers):
        rows = comparator.run()

    failures = failing_rows(rows, args.fail)
    if args.reproduction_guide:
        write_guide(args.reproduction_guide, rows, failures, config.api_key,
                    commit_hash=args.commit_hashes[1] if failures else None)
    if args.plot:
        plot_search_latencies(rows, args.commit_hashes[0], args.commit_hashes[1], args.plot)

    try:
        comparator.check()
    except BenchmarkThresholdError as e:
        log.failure(str(e))
        return 1
    log.success("Benchmarks passed")
    return 0


COMMANDS = {
    'install': run_install,
    'test': run_tests,
    'benchmark': run_benchmark,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    log.configure_logging(args.verbose)

    try:
        config = load_config(args)
        return COMMANDS[args.command](args, config)
    except HarnessError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
