"""Rate limiting for the gigescrow API.

Requests are keyed by client address. X-Forwarded-For is only believed when
the direct peer sits in a trusted proxy range (TRUSTED_PROXY_CIDRS, comma
separated, defaults to private and loopback networks).
"""

import ipaddress
import logging
import os
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_TRUSTED_PROXIES = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"

# Per-client limits applied by the routers
READ_LIMIT = "120/minute"
WRITE_LIMIT = "30/minute"
OPERATOR_LIMIT = "6/minute"


@lru_cache
def trusted_proxy_networks() -> tuple:
    networks = []
    for cidr in os.environ.get("TRUSTED_PROXY_CIDRS", DEFAULT_TRUSTED_PROXIES).split(","):
        cidr = cidr.strip()
        if not cidr:
            continue
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr}")
    return tuple(networks)


def is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in trusted_proxy_networks())


def get_client_ip(request) -> str:
    """Client address used as the rate limit key."""
    direct_ip = get_remote_address(request)
    if not is_trusted_proxy(direct_ip):
        return direct_ip
    forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    return forwarded or direct_ip


limiter = Limiter(key_func=get_client_ip)
