"""Helpers for simulator base urls and network-derived identifiers."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit


def format_simulator_url(url: str) -> str:
    """Normalize a simulator base url: trim it, add a scheme, drop trailing slashes."""

    value = url.strip()
    if not value:
        raise ValueError("simulator url must not be empty")
    if "://" not in value:
        value = f"http://{value}"
    return value.rstrip("/")


def provisional_simulator_id(url: str) -> str:
    """Placeholder id for a simulator known only by its url (``host[:port]``)."""

    netloc = urlsplit(format_simulator_url(url)).netloc
    if "@" in netloc:
        netloc = netloc.rsplit("@", 1)[1]
    if not netloc:
        raise ValueError(f"cannot derive a simulator id from {url!r}")
    return netloc.lower()


def looks_like_network_address(identifier: str | None) -> bool:
    """True for ids shaped like ``10.0.0.5``, ``10.0.0.5:8080``, ``[::1]:80`` or ``localhost``."""

    if not identifier:
        return False
    host = identifier.strip().lower()
    if host.startswith("["):
        host = host[1:].split("]", 1)[0]
    elif host.count(":") == 1:
        host, _, port = host.partition(":")
        if not port.isdigit():
            return False
    if host == "localhost":
        return True
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True
