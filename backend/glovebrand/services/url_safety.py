from __future__ import annotations

import ipaddress
import socket
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from glovebrand.errors import UrlValidationError

Resolver = Callable[[str, Optional[int]], Iterable[str]]

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_HOSTNAMES = frozenset(
    {
        "localhost",
        "metadata",
        "metadata.google.internal",
        "169.254.169.254",
    }
)
BLOCKED_HOST_SUFFIXES = (".localhost", ".internal", ".local", ".localdomain")

BLOCKED_PORTS = frozenset({0, 22, 23, 25, 110, 143, 445, 3306, 5432, 6379, 9200, 11211, 27017})

# Cloud metadata endpoints outside the usual private/link-local ranges.
METADATA_NETWORKS = (
    ipaddress.ip_network("169.254.169.254/32"),
    ipaddress.ip_network("100.100.100.200/32"),
    ipaddress.ip_network("fd00:ec2::254/128"),
)

SHARED_ADDRESS_SPACE = ipaddress.ip_network("100.64.0.0/10")


def normalize_url(raw_url: str) -> str:
    value = (raw_url or "").strip()
    if not value:
        raise UrlValidationError("URL is required.")
    if "://" not in value:
        value = f"https://{value.lstrip('/')}"
    return value


def is_blocked_ip(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if any(ip in network for network in METADATA_NETWORKS if network.version == ip.version):
        return True
    if ip.version == 4 and ip in SHARED_ADDRESS_SPACE:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
        or not ip.is_global
    )


def _system_resolver(hostname: str, port: Optional[int]) -> list[str]:
    infos = socket.getaddrinfo(hostname, port or 443, proto=socket.IPPROTO_TCP)
    return [info[4][0] for info in infos]


def _literal_ip(hostname: str) -> Optional[str]:
    candidate = hostname.strip("[]")
    try:
        ipaddress.ip_address(candidate.split("%", 1)[0])
    except ValueError:
        return None
    return candidate


def validate_url(
    raw_url: str,
    *,
    resolve_dns: bool = True,
    resolver: Optional[Resolver] = None,
) -> str:
    """
    Normalize ``raw_url`` and reject anything that could reach a non-public host.

    IP literals are checked without DNS. With ``resolve_dns`` every resolved address
    must be public as well; an unresolvable host is rejected. Returns the normalized
    URL with path and query preserved.
    """
    url = normalize_url(raw_url)
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as exc:
        raise UrlValidationError(f"Invalid URL: {exc}") from exc

    scheme = (parts.scheme or "").lower()
    if scheme not in ALLOWED_SCHEMES:
        raise UrlValidationError("Only http/https URLs are allowed.")
    if parts.username or parts.password:
        raise UrlValidationError("Credentials in URL are not allowed.")

    hostname = (parts.hostname or "").strip().rstrip(".").lower()
    if not hostname or any(ch.isspace() for ch in hostname) or ".." in hostname:
        raise UrlValidationError("Invalid URL: missing or malformed hostname.")
    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_HOST_SUFFIXES):
        raise UrlValidationError(f"Host '{hostname}' is not allowed.")
    if port is not None and port in BLOCKED_PORTS:
        raise UrlValidationError(f"Port {port} is not allowed.")

    literal = _literal_ip(hostname)
    if literal is not None:
        if is_blocked_ip(literal):
            raise UrlValidationError("Private, loopback or reserved IP addresses are not allowed.")
    else:
        if "." not in hostname:
            raise UrlValidationError(f"Host '{hostname}' is not a public domain name.")
        if resolve_dns:
            resolve = resolver or _system_resolver
            try:
                addresses = list(resolve(hostname, port))
            except (OSError, UnicodeError) as exc:
                raise UrlValidationError(f"Host '{hostname}' could not be resolved.") from exc
            if not addresses:
                raise UrlValidationError(f"Host '{hostname}' could not be resolved.")
            for address in addresses:
                if is_blocked_ip(address):
                    raise UrlValidationError(f"Host '{hostname}' resolves to a non-public address.")

    netloc = parts.netloc.rsplit("@", 1)[-1]
    path = parts.path or "/"
    return urlunsplit((scheme, netloc.lower(), path, parts.query, ""))
