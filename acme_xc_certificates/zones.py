"""
DNS zone matching.

Zones are plain suffix domains taken from configuration; nothing here talks to
DNS. A name belongs to a zone when it equals the zone or ends with
``"." + zone``, and the longest matching zone wins.
"""

import logging
from collections.abc import Iterable

from acme_xc_certificates.exceptions import ConfigurationError, ZoneNotFoundError

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """
    Normalize a DNS name for comparison.

    Strips surrounding whitespace and the trailing root dot, and lowercases.

    Args:
        name: DNS name, with or without a trailing dot.

    Returns:
        str: Normalized name.
    """
    return name.strip().rstrip(".").lower()


def name_in_zone(name: str, zone: str) -> bool:
    """Return True if name equals zone or is a subdomain of it."""
    name = normalize_name(name)
    zone = normalize_name(zone)
    if not zone:
        return False
    return name == zone or name.endswith("." + zone)


def resolve_zone(fqdn: str, zones: Iterable[str]) -> str:
    """
    Find the most specific zone owning a name.

    Args:
        fqdn: Fully-qualified name, e.g. "_acme-challenge.sub.example.com.".
        zones: Candidate zone names.

    Returns:
        str: The longest matching zone, normalized.

    Raises:
        ZoneNotFoundError: If no candidate matches.
    """
    zones = list(zones)
    name = normalize_name(fqdn)

    matched = ""
    for zone in zones:
        zone = normalize_name(zone)
        if not zone:
            continue
        if name_in_zone(name, zone) and len(zone) > len(matched):
            matched = zone

    if not matched:
        raise ZoneNotFoundError(name, [normalize_name(z) for z in zones])

    logger.debug(f"Resolved zone for {name}: {matched}")
    return matched


def relative_name(fqdn: str, zone: str) -> str:
    """
    Return the record name relative to its zone.

    "_acme-challenge.example.com" in "example.com" gives "_acme-challenge";
    the zone apex gives "@".
    """
    name = normalize_name(fqdn)
    zone = normalize_name(zone)

    if name == zone:
        return "@"
    if not name.endswith("." + zone):
        raise ZoneNotFoundError(name, [zone])
    return name[: -len(zone) - 1]


def domain_in_zones(domain: str, zones: Iterable[str]) -> bool:
    """Return True if the domain is covered by at least one zone."""
    return any(name_in_zone(domain, zone) for zone in zones)


def validate_zones(zones: Iterable[str], field: str = "zones") -> list[str]:
    """
    Normalize a configured zone list and reject duplicates.

    Duplicate entries make the longest-suffix tie-break ambiguous, so they are
    refused instead of being resolved in list order.

    Args:
        zones: Configured zone names.
        field: Configuration field name used in error messages.

    Returns:
        list[str]: Normalized zone names in configuration order.

    Raises:
        ConfigurationError: On empty or duplicate zone names.
    """
    normalized: list[str] = []

    for zone in zones:
        name = normalize_name(zone)
        if not name:
            raise ConfigurationError(field, "zone names must not be empty")
        if name in normalized:
            raise ConfigurationError(field, f"duplicate zone '{name}'")
        normalized.append(name)

    return normalized
