"""URL safety checks for outbound fetches.

Sitemap, feed and document URLs come from seed files, users and model
suggestions, so every fetch is checked against private networks, local
schemes and internal service ports before a request is made.
"""

import ipaddress
import logging
import socket
from typing import Optional, Set, Tuple
from urllib.parse import urlparse

from services.shared.errors import SDGDiscoveryError

logger = logging.getLogger(__name__)

# Private IP ranges as defined by RFC 1918, RFC 4193, and others
PRIVATE_IP_RANGES = [
    ipaddress.ip_network('10.0.0.0/8'),        # RFC 1918
    ipaddress.ip_network('172.16.0.0/12'),     # RFC 1918
    ipaddress.ip_network('192.168.0.0/16'),    # RFC 1918
    ipaddress.ip_network('127.0.0.0/8'),       # Loopback
    ipaddress.ip_network('169.254.0.0/16'),    # Link-local
    ipaddress.ip_network('::1/128'),           # IPv6 loopback
    ipaddress.ip_network('fc00::/7'),          # IPv6 unique local
    ipaddress.ip_network('fe80::/10'),         # IPv6 link-local
    ipaddress.ip_network('0.0.0.0/8'),         # "This" network
    ipaddress.ip_network('224.0.0.0/4'),       # Multicast
    ipaddress.ip_network('240.0.0.0/4'),       # Reserved
]

# Common internal service ports
BLOCKED_PORTS = {
    22, 23, 25, 53, 110, 143, 993, 995,
    1433, 1521, 3306, 3389, 5432, 5984, 6379, 8086, 9200, 27017,
}

ALLOWED_SCHEMES = {'http', 'https'}

LOCALHOST_NAMES = {'localhost', '0.0.0.0', '0', 'local'}

METADATA_HOSTS = {
    'metadata.google.internal',
    '169.254.169.254',
    'metadata.azure.com',
    'metadata.packet.net',
}


class SSRFError(SDGDiscoveryError):
    """Raised when a URL is refused by the outbound fetch guard."""
    pass


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is in a private or reserved range.

    Unparseable addresses count as private.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return True
    return any(ip in network for network in PRIVATE_IP_RANGES)


def resolve_hostname(hostname: str) -> Set[str]:
    """Resolve a hostname and refuse it if any address is private.

    Raises:
        SSRFError: If resolution fails or yields a private address
    """
    try:
        addr_info = socket.getaddrinfo(hostname, None)
    except socket.gaierror as e:
        raise SSRFError(f"Failed to resolve hostname {hostname}: {e}")

    ips = {info[4][0] for info in addr_info}
    private_ips = sorted(ip for ip in ips if is_private_ip(ip))
    if private_ips:
        raise SSRFError(f"Hostname {hostname} resolves to private IP(s): {private_ips}")
    return ips


def validate_url_security(url: str) -> Tuple[bool, Optional[str]]:
    """Validate a URL for outbound fetching.

    Returns:
        Tuple of (is_safe, error_message)
    """
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as e:
        return False, f"URL validation error: {e}"

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return False, f"Scheme '{parsed.scheme}' not allowed. Only http and https are permitted."

    hostname = parsed.hostname
    if not hostname:
        return False, "URL must have a valid hostname."
    hostname = hostname.lower()

    if hostname in LOCALHOST_NAMES:
        return False, f"Localhost hostname '{hostname}' is blocked."

    if hostname in METADATA_HOSTS:
        return False, f"Metadata hostname '{hostname}' is blocked."

    if port and port in BLOCKED_PORTS:
        return False, f"Port {port} is blocked (internal service port)."

    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        try:
            resolve_hostname(hostname)
        except SSRFError as e:
            return False, str(e)
    else:
        if is_private_ip(hostname):
            return False, f"Private IP address '{hostname}' is blocked."

    return True, None


def check_url_ssrf(url: str) -> None:
    """Raise if a URL must not be fetched.

    Raises:
        SSRFError: If the URL is deemed unsafe
    """
    is_safe, error_msg = validate_url_security(url)
    if not is_safe:
        logger.warning(f"Outbound fetch blocked for {url}: {error_msg}")
        raise SSRFError(f"URL blocked: {error_msg}")
