"""
DNS provider registry.

Backends are selected by name from configuration.
"""

from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.providers.base import DnsProvider
from acme_xc_certificates.providers.cloudflare import CloudflareDnsProvider
from acme_xc_certificates.providers.exec import ExecDnsProvider
from acme_xc_certificates.providers.rfc2136 import Rfc2136DnsProvider
from acme_xc_certificates.providers.xc import XcDnsProvider

PROVIDERS: dict[str, type[DnsProvider]] = {
    XcDnsProvider.name: XcDnsProvider,
    CloudflareDnsProvider.name: CloudflareDnsProvider,
    Rfc2136DnsProvider.name: Rfc2136DnsProvider,
    ExecDnsProvider.name: ExecDnsProvider,
}


def get_provider(name: str) -> type[DnsProvider]:
    """
    Look up a DNS provider class by name.

    Raises:
        ConfigurationError: If no provider is registered under that name.
    """
    try:
        return PROVIDERS[name]
    except KeyError:
        raise ConfigurationError(
            "dns_provider", f"unknown DNS provider '{name}' (available: {', '.join(sorted(PROVIDERS))})"
        ) from None


def create_provider(name: str, config: dict[str, str], zones: list[str]) -> DnsProvider:
    """Instantiate a registered provider from its configuration map."""
    return get_provider(name).from_config(config, zones)


__all__ = [
    "PROVIDERS",
    "CloudflareDnsProvider",
    "DnsProvider",
    "ExecDnsProvider",
    "Rfc2136DnsProvider",
    "XcDnsProvider",
    "create_provider",
    "get_provider",
]
