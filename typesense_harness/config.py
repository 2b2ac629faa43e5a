"""
Harness configuration: fixed topology constants plus values read from the
environment and overridden from the command line.
"""

import os
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional

from .errors import ConfigError

DEFAULT_API_KEY = "xyz"
DEFAULT_IP_ADDRESS = "192.168.2.25"
CI_SUBNET_PREFIX = "10.1.0."
DEFAULT_HOST = "localhost"

# Static flags passed to every server process
ADDITIONAL_ARGS = [
    "--enable-cors",
    "--enable-search-analytics",
    "--analytics-flush-interval=2",
    "--analytics-minute-rate-limit=1000",
]

PHASE_TIMEOUT = 100.0
HEALTH_TIMEOUT = 20.0
HEALTH_INTERVAL = 0.25
DISPOSE_TIMEOUT = 30.0
SHUTDOWN_TIMEOUT = 5.0

DURATION_PATTERN = re.compile(r"^(\d+)([smhd])$")
DURATION_UNITS = {"s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}


def parse_duration(value: str) -> int:
    """Convert a duration such as ``30s`` or ``2m`` to seconds"""
    match = DURATION_PATTERN.match(value or "")
    if not match:
        raise ConfigError(f"Invalid duration format: {value!r} (expected a number followed by s/m/h/d)")
    return int(match.group(1)) * DURATION_UNITS[match.group(2)]


def _int_from_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _truthy(value: Optional[str]) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HarnessConfig:
    """Settings shared by the test and benchmark commands"""
    binary_path: Optional[str] = None
    working_directory: str = field(default_factory=os.getcwd)
    snapshot_path: Optional[str] = None
    ip_address: Optional[str] = None
    api_key: str = DEFAULT_API_KEY
    openai_api_key: Optional[str] = None
    num_dim: int = 1536
    batch_size: int = 100
    duration: str = "1s"
    proxy_url: Optional[str] = None
    in_ci: bool = False
    phase_timeout: float = PHASE_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HarnessConfig":
        environ = os.environ if environ is None else environ
        config = cls(
            binary_path=environ.get("TYPESENSE_BINARY") or None,
            working_directory=environ.get("TYPESENSE_WORKING_DIRECTORY") or os.getcwd(),
            snapshot_path=environ.get("TYPESENSE_SNAPSHOT_PATH") or None,
            ip_address=environ.get("TYPESENSE_IP_ADDRESS") or None,
            api_key=environ.get("TYPESENSE_API_KEY") or DEFAULT_API_KEY,
            openai_api_key=environ.get("OPENAI_API_KEY") or None,
            num_dim=_int_from_env(environ, "TYPESENSE_NUM_DIM", 1536),
            batch_size=_int_from_env(environ, "TYPESENSE_BATCH_SIZE", 100),
            duration=environ.get("TYPESENSE_DURATION") or "1s",
            proxy_url=environ.get("TYPESENSE_PROXY_URL") or None,
            in_ci=_truthy(environ.get("CI")),
        )
        config.validate()
        return config

    def with_overrides(self, **values) -> "HarnessConfig":
        """Return a copy with every non-None value applied"""
        updated = replace(self, **{k: v for k, v in values.items() if v is not None})
        updated.validate()
        return updated

    def validate(self):
        parse_duration(self.duration)
        if self.batch_size <= 0:
            raise ConfigError(f"Batch size must be positive, got {self.batch_size}")
        if self.phase_timeout <= 0:
            raise ConfigError(f"Phase timeout must be positive, got {self.phase_timeout}")

    def require_binary(self) -> str:
        if not self.binary_path:
            raise ConfigError("No server binary given; pass --binary or set TYPESENSE_BINARY")
        return os.path.abspath(self.binary_path)

    @property
    def proxy_env(self) -> Dict[str, str]:
        """Environment overrides routing outbound calls of the server through a proxy"""
        if not self.proxy_url:
            return {}
        return {
            "HTTP_PROXY": self.proxy_url,
            "HTTPS_PROXY": self.proxy_url,
            "http_proxy": self.proxy_url,
            "https_proxy": self.proxy_url,
        }
