"""
Error types raised by the harness.

Every expected failure mode has its own type so callers can tell a node that
never came up from a node that came up unhealthy, or a network failure from a
non-2xx response.
"""

from typing import List, Optional


class HarnessError(Exception):
    """Base class for all expected harness failures"""


class ConfigError(HarnessError):
    """Invalid or missing configuration value"""


class AddressResolutionError(HarnessError):
    """No usable IPv4 address for peering could be found"""


class FilesystemError(HarnessError):
    """A directory or file the harness needs is missing or could not be created"""


class ProcessSpawnError(HarnessError):
    """The server binary could not be launched"""


class ProcessRuntimeError(HarnessError):
    """A spawned server process misbehaved after launch"""


class HealthCheckError(HarnessError):
    """A node answered its health endpoint but reported itself unhealthy"""

    def __init__(self, port: int, message: str):
        super().__init__(f"Node on port {port} is not healthy: {message}")
        self.port = port


class RequestError(HarnessError):
    """
    An HTTP call failed.

    ``status_code`` is None for network-level failures (connection refused,
    timeout) and set for responses with a non-ok status.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


class CommandError(HarnessError):
    """An external command (git, docker) exited with a non-zero code"""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        detail = stderr.strip() or "no output"
        super().__init__(f"Command '{' '.join(command)}' failed with exit code {returncode}: {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class LoadTestError(HarnessError):
    """A benchmark run produced failed requests or no usable measurements"""


class BenchmarkThresholdError(HarnessError):
    """One or more benchmark metrics regressed beyond the configured threshold"""

    def __init__(self, threshold: float, failures):
        lines = [
            f"{row.metric} for {row.variable} changed by {row.formatted_change(color=False)}"
            for row in failures
        ]
        super().__init__(
            f"Performance degradation exceeded threshold of {threshold}%:\n" + "\n".join(lines)
        )
        self.threshold = threshold
        self.failures = list(failures)
