"""
Builds the set of certificates a run is responsible for.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.discovery import DiscoveredTarget
from acme_xc_certificates.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

STATIC_KEY = "certificate"


@dataclass(frozen=True)
class Destination:
    """Where a finished certificate is pushed: an XC certificate object."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class CertificateRequest:
    """
    One logical certificate.

    ``key`` identifies the certificate across runs and correlates it with the
    recorded expiry. The first domain is the common name.
    """

    key: str
    domains: list[str]
    zones: list[str] = field(default_factory=list)
    destination: Destination | None = None
    csr_path: Path | None = None

    @property
    def common_name(self) -> str:
        return self.domains[0]


def normalize_domains(domains: Iterable[str]) -> list[str]:
    """Normalize names and drop duplicates, keeping the first occurrence first."""
    result: list[str] = []
    for domain in domains:
        name = zone_utils.normalize_name(domain)
        if name and name not in result:
            result.append(name)
    return result


def check_coverage(key: str, domains: list[str], zones: list[str]) -> None:
    """
    Reject domains that no configured zone covers.

    Raises:
        ConfigurationError: Naming the request key and the uncovered domains.
    """
    uncovered = [d for d in domains if not zone_utils.domain_in_zones(d, zones)]
    if uncovered:
        raise ConfigurationError(
            key,
            f"domain(s) {', '.join(uncovered)} not covered by any configured zone "
            f"({', '.join(zones) or 'none configured'})",
        )


def build_request_set(
    static_domains: list[str] | None,
    discovered: Iterable[DiscoveredTarget],
    zones: list[str],
    zone_constrained: bool,
    static_key: str = STATIC_KEY,
    csr_path: Path | None = None,
) -> dict[str, CertificateRequest]:
    """
    Merge the static certificate and discovered targets into one request set.

    Args:
        static_domains: Domains of the static certificate, or None if there is none.
        discovered: Load balancers found by discovery; entries without domains are dropped.
        zones: Configured zones.
        zone_constrained: Reject any domain outside the configured zones.
        static_key: Identity key of the static certificate.
        csr_path: CSR for the static certificate (CSR mode).

    Returns:
        dict[str, CertificateRequest]: Requests ordered by identity key.

    Raises:
        ConfigurationError: If a domain is not covered by the zones, the static
            certificate has no domains, or two requests share a key.
    """
    zones = zone_utils.validate_zones(zones)
    requests: dict[str, CertificateRequest] = {}

    if static_domains is not None:
        domains = normalize_domains(static_domains)
        if not domains:
            raise ConfigurationError("certificate.domains", "at least one domain is required")
        requests[static_key] = CertificateRequest(key=static_key, domains=domains, zones=zones, csr_path=csr_path)

    for target in discovered:
        domains = normalize_domains(target.domains)
        if not domains:
            logger.debug(f"Ignoring {target.key}: no domains")
            continue
        if target.key in requests:
            raise ConfigurationError(target.key, "identity key is used by more than one certificate")

        requests[target.key] = CertificateRequest(
            key=target.key,
            domains=domains,
            zones=zones,
            destination=Destination(target.namespace, target.name),
        )

    if zone_constrained:
        for request in requests.values():
            check_coverage(request.key, request.domains, zones)

    logger.info(f"Planned {len(requests)} certificate request(s)")
    return dict(sorted(requests.items()))
