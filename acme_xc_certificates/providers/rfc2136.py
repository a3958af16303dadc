"""
RFC 2136 dynamic update backend.

Updates add or delete one TXT rdata at a time, which makes presence additive
on the server side without a read-modify-write.
"""

import logging

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.resolver
import dns.tsig
import dns.tsigkeyring
import dns.update

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.providers.base import DnsProvider

logger = logging.getLogger(__name__)

DEFAULT_PORT = 53
DEFAULT_TSIG_ALGORITHM = "HMAC-SHA512"
TXT_TTL = 120
QUERY_TIMEOUT = 10

TSIG_ALGORITHMS = {
    "HMAC-MD5": dns.tsig.HMAC_MD5,
    "HMAC-SHA1": dns.tsig.HMAC_SHA1,
    "HMAC-SHA224": dns.tsig.HMAC_SHA224,
    "HMAC-SHA256": dns.tsig.HMAC_SHA256,
    "HMAC-SHA384": dns.tsig.HMAC_SHA384,
    "HMAC-SHA512": dns.tsig.HMAC_SHA512,
}


class Rfc2136DnsProvider(DnsProvider):
    """DNS-01 records through TSIG-signed dynamic updates to a primary server."""

    name = "rfc2136"
    requires_zones = True

    def __init__(
        self,
        server: str,
        zones: list[str],
        tsig_key_name: str = "",
        tsig_secret: str = "",
        tsig_algorithm: str = DEFAULT_TSIG_ALGORITHM,
        port: int = DEFAULT_PORT,
    ) -> None:
        super().__init__(zones)
        if not server:
            raise ConfigurationError("dns_provider_config.server", "RFC 2136 server address is required")

        algorithm = tsig_algorithm.upper()
        if algorithm not in TSIG_ALGORITHMS:
            raise ConfigurationError(
                "dns_provider_config.tsig_algorithm", f"unsupported TSIG algorithm '{tsig_algorithm}'"
            )

        self.server = server
        self.port = port
        self.keyring = None
        self.keyname = None
        self.keyalgorithm = TSIG_ALGORITHMS[algorithm]

        if tsig_key_name and tsig_secret:
            self.keyring = dns.tsigkeyring.from_text({tsig_key_name: tsig_secret})
            self.keyname = dns.name.from_text(tsig_key_name)

    @classmethod
    def from_config(cls, config: dict[str, str], zones: list[str]) -> "Rfc2136DnsProvider":
        try:
            port = int(config.get("port", DEFAULT_PORT))
        except ValueError:
            raise ConfigurationError("dns_provider_config.port", "port must be an integer") from None

        return cls(
            server=config.get("server", ""),
            zones=zones,
            tsig_key_name=config.get("tsig_key_name", ""),
            tsig_secret=config.get("tsig_secret", ""),
            tsig_algorithm=config.get("tsig_algorithm", DEFAULT_TSIG_ALGORITHM),
            port=port,
        )

    def _update(self, zone: str) -> dns.update.UpdateMessage:
        return dns.update.UpdateMessage(
            zone + ".", keyring=self.keyring, keyname=self.keyname, keyalgorithm=self.keyalgorithm
        )

    def _send(self, update: dns.update.UpdateMessage, action: str, fqdn: str) -> None:
        try:
            response = dns.query.tcp(update, self.server, port=self.port, timeout=QUERY_TIMEOUT)
        except (dns.exception.DNSException, OSError) as e:
            raise self.error(f"{action} of {fqdn} failed: {e}") from e

        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            raise self.error(f"{action} of {fqdn} was refused: {dns.rcode.to_text(rcode)}")

    def present(self, fqdn: str, token: str) -> None:
        zone = self.zone_for(fqdn)
        record_name = zone_utils.relative_name(fqdn, zone)

        update = self._update(zone)
        update.add(record_name, TXT_TTL, "TXT", f'"{token}"')

        logger.info(f"Adding TXT value at {record_name} in zone {zone} via {self.server}")
        self._send(update, "present", fqdn)

    def cleanup(self, fqdn: str, token: str) -> None:
        zone = self.zone_for(fqdn)
        record_name = zone_utils.relative_name(fqdn, zone)

        update = self._update(zone)
        update.delete(record_name, "TXT", f'"{token}"')

        logger.info(f"Deleting TXT value at {record_name} in zone {zone} via {self.server}")
        self._send(update, "cleanup", fqdn)

    def query(self, fqdn: str) -> list[str]:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [self.server]
        resolver.port = self.port

        try:
            answer = resolver.resolve(zone_utils.normalize_name(fqdn) + ".", "TXT", lifetime=QUERY_TIMEOUT)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as e:
            raise self.error(f"query of {fqdn} failed: {e}") from e

        return [b"".join(rdata.strings).decode("utf-8") for rdata in answer]
