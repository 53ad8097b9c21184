"""Local identity resolution."""

from __future__ import annotations

import socket

from loguru import logger

from peerwatch.core.model import IdentityResolutionError
from peerwatch.datastructures.type_aliases import Address, HostAddress, PortNumber

DEFAULT_PROBE_HOST = "8.8.8.8"
DEFAULT_PROBE_PORT = 80


def discover_outbound_host(
    probe_host: HostAddress = DEFAULT_PROBE_HOST,
    probe_port: PortNumber = DEFAULT_PROBE_PORT,
) -> HostAddress:
    """Return the source address the OS would route toward the probe endpoint.

    Connecting a UDP socket sends no packets; it only asks the kernel to pick
    a route and a local address.
    """
    try:
        infos = socket.getaddrinfo(probe_host, probe_port, type=socket.SOCK_DGRAM)
    except OSError as e:
        raise IdentityResolutionError(
            f"cannot resolve probe endpoint {probe_host}:{probe_port}: {e}"
        ) from e

    family, sock_type, proto, _, sockaddr = infos[0]
    try:
        with socket.socket(family, sock_type, proto) as sock:
            sock.connect(sockaddr)
            host = sock.getsockname()[0]
    except OSError as e:
        raise IdentityResolutionError(
            f"no outbound route toward {probe_host}:{probe_port}: {e}"
        ) from e

    logger.debug("Discovered outbound address {} via {}", host, probe_host)
    return host


def format_node_address(host: HostAddress, port: PortNumber) -> Address:
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def resolve_local_address(
    explicit: HostAddress | None,
    port: PortNumber,
    *,
    probe_host: HostAddress = DEFAULT_PROBE_HOST,
    probe_port: PortNumber = DEFAULT_PROBE_PORT,
) -> Address:
    """Return ``host:port`` for this process.

    An explicit host is used unchanged; otherwise the outbound host is
    discovered once. No retries: the caller decides what a failure means.
    """
    host = explicit or discover_outbound_host(probe_host, probe_port)
    return format_node_address(host, port)
