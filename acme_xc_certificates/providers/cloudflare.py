"""
Cloudflare DNS backend.

Cloudflare keeps one record per TXT value, so publishing a token is a plain
create and removing one deletes only the record carrying it.
"""

import logging
from typing import Any

import requests

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import ConfigurationError, ZoneNotFoundError
from acme_xc_certificates.providers.base import DnsProvider, record_lock

logger = logging.getLogger(__name__)

CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"
REQUEST_TIMEOUT = 30
TXT_TTL = 120


class CloudflareDnsProvider(DnsProvider):
    """DNS-01 records through the Cloudflare v4 API with a scoped API token."""

    name = "cloudflare"

    def __init__(self, api_token: str, zones: list[str] | None = None) -> None:
        super().__init__(zones)
        if not api_token:
            raise ConfigurationError("dns_provider_config.api_token", "Cloudflare API token is required")

        self.http = requests.Session()
        self.http.headers.update({"Authorization": f"Bearer {api_token}"})
        self._zone_ids: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: dict[str, str], zones: list[str]) -> "CloudflareDnsProvider":
        return cls(config.get("api_token", ""), zones)

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        try:
            r = self.http.request(method, f"{CLOUDFLARE_API}{path}", **kwargs)
        except requests.exceptions.RequestException as e:
            raise self.error(f"{method} {path} failed: {e}") from e

        try:
            body = r.json()
        except ValueError:
            raise self.error(f"{method} {path} returned invalid JSON (HTTP {r.status_code})") from None

        if r.status_code >= 400 or not body.get("success", False):
            errors = body.get("errors") or r.text
            raise self.error(f"{method} {path} failed (HTTP {r.status_code}): {errors}")

        return body.get("result")

    def _candidate_zones(self, fqdn: str) -> list[str]:
        if self.zones:
            return [self.zone_for(fqdn)]

        labels = zone_utils.normalize_name(fqdn).split(".")
        return [".".join(labels[i:]) for i in range(len(labels) - 1)]

    def _zone_id(self, fqdn: str) -> str:
        """Find the Cloudflare zone ID, walking parent labels when no zones are configured."""
        candidates = self._candidate_zones(fqdn)

        for zone in candidates:
            if zone in self._zone_ids:
                return self._zone_ids[zone]

            result = self._request("GET", "/zones", params={"name": zone, "status": "active"})
            if result:
                self._zone_ids[zone] = result[0]["id"]
                logger.debug(f"Cloudflare zone for {fqdn}: {zone} ({result[0]['id']})")
                return result[0]["id"]

        raise ZoneNotFoundError(zone_utils.normalize_name(fqdn), candidates)

    def _records(self, zone_id: str, fqdn: str) -> list[dict[str, Any]]:
        name = zone_utils.normalize_name(fqdn)
        return self._request(
            "GET", f"/zones/{zone_id}/dns_records", params={"type": "TXT", "name": name, "per_page": 100}
        ) or []

    def present(self, fqdn: str, token: str) -> None:
        zone_id = self._zone_id(fqdn)
        name = zone_utils.normalize_name(fqdn)

        with record_lock(fqdn):
            if any(record.get("content") == token for record in self._records(zone_id, fqdn)):
                logger.debug(f"Token already present at {name}")
                return

            logger.info(f"Creating Cloudflare TXT record {name}")
            self._request(
                "POST",
                f"/zones/{zone_id}/dns_records",
                json={"type": "TXT", "name": name, "content": token, "ttl": TXT_TTL},
            )

    def cleanup(self, fqdn: str, token: str) -> None:
        zone_id = self._zone_id(fqdn)

        with record_lock(fqdn):
            for record in self._records(zone_id, fqdn):
                if record.get("content") == token:
                    logger.info(f"Deleting Cloudflare TXT record {record['id']} at {record.get('name')}")
                    self._request("DELETE", f"/zones/{zone_id}/dns_records/{record['id']}")

    def query(self, fqdn: str) -> list[str]:
        zone_id = self._zone_id(fqdn)
        return [record.get("content", "") for record in self._records(zone_id, fqdn)]
