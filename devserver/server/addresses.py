"""Addresses the server is reachable on."""

import socket
from typing import List

import psutil


def interface_addresses() -> List[str]:
    """IPv4 addresses of every non-loopback interface."""
    addresses = []
    for iface, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                addresses.append(addr.address)
    return addresses


def format_urls(scheme: str, port: int, addresses: List[str]) -> List[str]:
    """One URL per interface address, followed by the loopback names."""
    hosts = list(addresses) + ["localhost", "127.0.0.1"]
    return [f"{scheme}://{host}:{port}" for host in hosts]
