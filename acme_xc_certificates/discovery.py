"""
Discovery of F5 XC HTTP load balancers that need a certificate.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from acme_xc_certificates import xc
from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)

DISCOVERY_KEY = "xc_certificates"


@dataclass(frozen=True)
class DiscoveredTarget:
    """A load balancer serving HTTPS with a manually managed certificate."""

    namespace: str
    name: str
    domains: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {"namespace": self.namespace, "name": self.name, "domains": list(self.domains)}


def is_eligible(load_balancer: dict[str, Any]) -> bool:
    """
    Check whether a load balancer should get an ACME certificate.

    It must terminate HTTPS with its own certificate (not ``https_auto_cert``,
    which XC already manages) and be advertised on the public network.
    """
    spec = load_balancer.get("get_spec") or {}

    if spec.get("https") is None or spec.get("https_auto_cert") is not None:
        return False

    return spec.get("advertise_on_public") is not None or spec.get("advertise_on_public_default_vip") is not None


def matches_filter(domains: list[str], domain_filter: list[str] | None) -> bool:
    """Every domain must equal or sit below one of the filter suffixes."""
    if not domain_filter:
        return True
    return all(zone_utils.domain_in_zones(domain, domain_filter) for domain in domains)


def discover_load_balancers(
    client: xc.XcClient,
    namespaces: list[str],
    domain_filter: list[str] | None = None,
) -> dict[str, DiscoveredTarget]:
    """
    List eligible HTTP load balancers across namespaces.

    Args:
        client: XC API client.
        namespaces: Namespaces to query.
        domain_filter: Optional domain suffixes every LB domain must fall under.

    Returns:
        dict[str, DiscoveredTarget]: Targets keyed "namespace/name".

    Raises:
        TransientNetworkError: If every namespace query failed.
    """
    namespaces = [ns.strip() for ns in namespaces if ns and ns.strip()]
    targets: dict[str, DiscoveredTarget] = {}
    succeeded = 0

    for namespace in namespaces:
        logger.info(f"Querying namespace: {namespace}")
        try:
            load_balancers = client.list_http_loadbalancers(namespace)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to list load balancers in {namespace}, skipping: {e}")
            continue
        succeeded += 1

        found = 0
        for lb in load_balancers:
            if not is_eligible(lb):
                continue

            domains = list((lb.get("get_spec") or {}).get("domains") or [])
            if not domains or not matches_filter(domains, domain_filter):
                continue

            target = DiscoveredTarget(namespace=namespace, name=lb.get("name", ""), domains=domains)
            targets[target.key] = target
            found += 1

        logger.info(f"Found {found} matching load balancer(s) in {namespace}")

    if namespaces and succeeded == 0:
        raise TransientNetworkError(
            f"XC API unreachable for all {len(namespaces)} namespace(s). Check credentials and tenant URL."
        )

    logger.info(f"Total: {len(targets)} load balancer(s) discovered across {succeeded} namespace(s)")
    return dict(sorted(targets.items()))


def write_discovery(path: Path, targets: dict[str, DiscoveredTarget]) -> None:
    """Write discovered targets as ``{"xc_certificates": {key: {...}}}``."""
    data = {DISCOVERY_KEY: {key: target.to_dict() for key, target in sorted(targets.items())}}
    path.write_text(json.dumps(data, indent=2) + "\n")
    logger.info(f"Wrote {path} ({len(targets)} certificates)")


def load_discovery(path: Path) -> dict[str, DiscoveredTarget]:
    """Read targets written by write_discovery."""
    data = json.loads(path.read_text())
    return {
        key: DiscoveredTarget(
            namespace=entry["namespace"],
            name=entry["name"],
            domains=list(entry.get("domains") or []),
        )
        for key, entry in data.get(DISCOVERY_KEY, {}).items()
    }
