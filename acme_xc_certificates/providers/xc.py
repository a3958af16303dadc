"""
F5 XC DNS backend.

XC stores the challenge as a single TXT rrset holding every value, so a new
token is merged into the existing set and the whole rrset is replaced.
"""

import logging

import requests

from acme_xc_certificates import xc
from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.providers.base import DnsProvider, record_lock

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


class XcDnsProvider(DnsProvider):
    """DNS-01 records in F5 XC primary DNS zones, via the RRSet API."""

    name = "xc"
    requires_zones = True

    def __init__(
        self,
        client: xc.XcClient,
        zones: list[str],
        group_name: str = xc.DEFAULT_GROUP_NAME,
    ) -> None:
        super().__init__(zones)
        self.client = client
        self.group_name = group_name or xc.DEFAULT_GROUP_NAME

    @classmethod
    def from_config(cls, config: dict[str, str], zones: list[str]) -> "XcDnsProvider":
        """
        Build the provider from a string-keyed configuration map.

        Keys: ``tenant_url``, ``api_token`` or ``p12_path``/``p12_password``,
        ``group_name`` (optional), ``dry_run`` (optional).
        """
        client = xc.XcClient(
            tenant_url=config.get("tenant_url", ""),
            api_token=config.get("api_token"),
            p12_path=config.get("p12_path"),
            p12_password=config.get("p12_password"),
            dry_run=str(config.get("dry_run", "")).lower() in ("1", "true", "yes"),
        )
        return cls(client, zones, group_name=config.get("group_name", xc.DEFAULT_GROUP_NAME))

    def close(self) -> None:
        self.client.close()

    def _locate(self, fqdn: str) -> tuple[str, str]:
        zone = self.zone_for(fqdn)
        return zone, zone_utils.relative_name(fqdn, zone)

    def present(self, fqdn: str, token: str) -> None:
        zone, record_name = self._locate(fqdn)

        with record_lock(fqdn):
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                try:
                    existing = self.client.get_txt_rrset(zone, record_name, self.group_name)

                    if existing is None:
                        logger.info(f"Creating TXT record {record_name} in zone {zone}")
                        self.client.create_txt_rrset(zone, record_name, [token], self.group_name)
                    elif token in existing:
                        logger.debug(f"Token already present at {record_name} in zone {zone}")
                        return
                    else:
                        merged = sorted(set(existing) | {token})
                        logger.info(
                            f"Merging token into TXT record {record_name} in zone {zone} "
                            f"({len(existing)} existing value(s))"
                        )
                        self.client.replace_txt_rrset(zone, record_name, merged, self.group_name)

                    if self.client.dry_run:
                        return

                    # Another writer outside this process may have replaced the set.
                    current = self.client.get_txt_rrset(zone, record_name, self.group_name) or []
                    if token in current:
                        return
                    logger.warning(
                        f"Token missing from {record_name} in zone {zone} after write "
                        f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS}), retrying"
                    )
                except requests.exceptions.HTTPError as e:
                    if e.response is None or e.response.status_code != 409:
                        raise self.error(f"failed to present TXT record {fqdn}: {e}") from e
                    logger.warning(
                        f"Conflicting write to {record_name} in zone {zone} "
                        f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS}), re-reading"
                    )
                except requests.exceptions.RequestException as e:
                    raise self.error(f"failed to present TXT record {fqdn}: {e}") from e

        raise self.error(f"TXT value for {fqdn} did not persist after {MAX_WRITE_ATTEMPTS} attempts")

    def cleanup(self, fqdn: str, token: str) -> None:
        zone, record_name = self._locate(fqdn)

        with record_lock(fqdn):
            try:
                existing = self.client.get_txt_rrset(zone, record_name, self.group_name)
                if existing is None:
                    logger.debug(f"No TXT record {record_name} in zone {zone}, nothing to clean up")
                    return

                remaining = [value for value in existing if value != token]
                if len(remaining) == len(existing):
                    logger.debug(f"Token not present at {record_name} in zone {zone}")
                    return

                if remaining:
                    logger.info(f"Removing token from TXT record {record_name} in zone {zone}")
                    self.client.replace_txt_rrset(zone, record_name, remaining, self.group_name)
                else:
                    logger.info(f"Deleting TXT record {record_name} in zone {zone}")
                    self.client.delete_txt_rrset(zone, record_name, self.group_name)
            except requests.exceptions.RequestException as e:
                raise self.error(f"failed to clean up TXT record {fqdn}: {e}") from e

    def query(self, fqdn: str) -> list[str]:
        zone, record_name = self._locate(fqdn)
        try:
            return self.client.get_txt_rrset(zone, record_name, self.group_name) or []
        except requests.exceptions.RequestException as e:
            raise self.error(f"failed to query TXT record {fqdn}: {e}") from e
