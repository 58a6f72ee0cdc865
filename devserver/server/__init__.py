"""Content server components."""

from devserver.server.addresses import format_urls, interface_addresses
from devserver.server.app import create_content_app
from devserver.server.ports import NoPortAvailable, find_available, probe_port
from devserver.server.proxy import ProxyForwarder, apply_proxy_headers
from devserver.server.static import StaticResolver
from devserver.server.tls import CertificatePair, generate_self_signed, provision

__all__ = [
    "format_urls",
    "interface_addresses",
    "create_content_app",
    "NoPortAvailable",
    "find_available",
    "probe_port",
    "ProxyForwarder",
    "apply_proxy_headers",
    "StaticResolver",
    "CertificatePair",
    "generate_self_signed",
    "provision",
]
