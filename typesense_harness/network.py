import ipaddress
import logging
import socket
from typing import List, Optional

import psutil

from .config import CI_SUBNET_PREFIX, DEFAULT_IP_ADDRESS
from .errors import AddressResolutionError

logger = logging.getLogger(__name__)


def external_ipv4_addresses() -> List[str]:
    """Non-loopback IPv4 addresses of every local interface, in interface order"""
    found = []
    for interface, addresses in psutil.net_if_addrs().items():
        for addr in addresses:
            if addr.family != socket.AF_INET:
                continue
            if ipaddress.ip_address(addr.address).is_loopback:
                continue
            found.append(addr.address)
    return found


def resolve_address(override: Optional[str] = None, in_ci: bool = False) -> str:
    """
    Pick the address the nodes advertise to their peers.

    An explicit override always wins. Outside CI the fixed developer default
    is used. In CI the runner subnet is preferred, then any external IPv4
    address.
    """
    if override:
        return override
    if not in_ci:
        return DEFAULT_IP_ADDRESS

    candidates = external_ipv4_addresses()
    for address in candidates:
        if address.startswith(CI_SUBNET_PREFIX):
            logger.debug(f"Using CI subnet address {address}")
            return address
    if candidates:
        logger.debug(f"No {CI_SUBNET_PREFIX}* address found, falling back to {candidates[0]}")
        return candidates[0]
    raise AddressResolutionError("Could not find a non-internal IPv4 address for peering")
