"""
TXT record propagation checks.
"""

import logging
import time

import dns.exception
import dns.resolver

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import IssuanceTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5
QUERY_LIFETIME = 5


def make_resolver(nameservers: list[str] | None = None) -> dns.resolver.Resolver:
    """
    Create a resolver using explicit recursive nameservers, or the system configuration.
    """
    if nameservers:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = list(nameservers)
    else:
        resolver = dns.resolver.Resolver()
    resolver.cache = None
    return resolver


def lookup_txt(fqdn: str, resolver: dns.resolver.Resolver) -> list[str]:
    """
    Return the TXT values visible at fqdn; an empty list if none are.
    """
    name = zone_utils.normalize_name(fqdn) + "."
    try:
        answer = resolver.resolve(name, "TXT", lifetime=QUERY_LIFETIME)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return []
    except dns.exception.Timeout:
        logger.debug(f"TXT lookup for {name} timed out")
        return []

    return [b"".join(rdata.strings).decode("utf-8") for rdata in answer]


def wait_for_txt(
    fqdn: str,
    value: str,
    timeout: float,
    nameservers: list[str] | None = None,
    interval: float = DEFAULT_INTERVAL,
) -> None:
    """
    Poll until a TXT value is visible at fqdn.

    Args:
        fqdn: Record name.
        value: Expected TXT value.
        timeout: Maximum seconds to wait.
        nameservers: Recursive resolvers to ask; system defaults when empty.
        interval: Seconds between lookups.

    Raises:
        IssuanceTimeoutError: If the value is not visible in time.
    """
    resolver = make_resolver(nameservers)
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        attempt += 1
        values = lookup_txt(fqdn, resolver)
        if value in values:
            logger.info(f"TXT record for {fqdn} visible after {attempt} lookup(s)")
            return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise IssuanceTimeoutError(f"Propagation of {fqdn}", timeout)

        logger.debug(f"TXT value not yet visible at {fqdn} (found {len(values)} value(s))")
        time.sleep(min(interval, remaining))
