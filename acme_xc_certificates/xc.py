"""
F5 Distributed Cloud (XC) API client.

Covers the three corners of the API the certificate automation touches: DNS
RRSets for DNS-01 TXT records, HTTP load balancer listing for discovery, and
certificate objects for pushing issued certificates.
"""

import base64
import logging
import os
import tempfile
from typing import Any
from urllib.parse import quote

import requests
import requests.auth
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from acme_xc_certificates.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_GROUP_NAME = "default"
RRSET_TTL = 120
RRSET_DESCRIPTION = "ACME DNS-01 challenge"
REQUEST_TIMEOUT = 30


def normalize_tenant_url(tenant_url: str) -> str:
    """
    Strip a trailing "/api" and "/" from a tenant URL.

    "https://tenant.console.ves.volterra.io/api/" -> "https://tenant.console.ves.volterra.io"
    """
    url = tenant_url.strip().rstrip("/")
    if url.endswith("/api"):
        url = url[: -len("/api")]
    return url.rstrip("/")


def string_url(data: bytes) -> str:
    """Encode data as an inline XC "string:///" URL."""
    return "string:///" + base64.b64encode(data).decode("ascii")


class XcClient:
    """
    Client for the F5 XC configuration API.

    Attributes:
        http (requests.Session): A session object for making HTTP requests.
        tenant_url (str): Tenant base URL without the "/api" suffix.
        dry_run (bool): If True, allow GET but log and skip POST/PUT/DELETE requests.
    """

    def __init__(
        self,
        tenant_url: str,
        api_token: str | None = None,
        p12_path: str | None = None,
        p12_password: str | None = None,
        dry_run: bool = False,
    ) -> None:
        if not tenant_url:
            raise ConfigurationError("xc.tenant_url", "tenant URL is required")

        self.tenant_url = normalize_tenant_url(tenant_url)
        self.dry_run = dry_run
        self.http = requests.Session()
        self._temp_files: list[str] = []

        if api_token:
            self.http.auth = ApiTokenAuth(api_token)
        elif p12_path:
            self.http.cert = self._extract_p12(p12_path, p12_password or "")
        else:
            raise ConfigurationError("xc.api_token", "an API token or a P12 credential is required")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.http.close()
        for path in self._temp_files:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        self._temp_files = []

    def close(self) -> None:
        """
        Closes the HTTP session and removes extracted credential files.
        """
        self.__exit__(None, None, None)

    def add_headers(self, headers: dict[str, str]) -> None:
        """
        Adds headers to the HTTP session.

        Args:
            headers (dict[str, str]): A dictionary of headers to add to the session.
        """
        self.http.headers.update(headers)

    def _extract_p12(self, p12_path: str, p12_password: str) -> tuple[str, str]:
        """
        Extract the certificate and key of a P12 API credential into PEM files.

        Returns:
            tuple[str, str]: (certificate path, key path) for requests' ``cert``.
        """
        try:
            with open(p12_path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            raise ConfigurationError("xc.p12_path", f"P12 file not found: {p12_path}") from None

        try:
            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                data, p12_password.encode("utf-8")
            )
        except ValueError as e:
            raise ConfigurationError("xc.p12_password", f"cannot open P12 credential: {e}") from None

        if private_key is None or certificate is None:
            raise ConfigurationError("xc.p12_path", "P12 credential has no certificate/key pair")

        cert_path = self._write_temp(
            certificate.public_bytes(serialization.Encoding.PEM), "xc_cert_"
        )
        key_path = self._write_temp(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            "xc_key_",
        )
        return cert_path, key_path

    def _write_temp(self, data: bytes, prefix: str) -> str:
        fd, path = tempfile.mkstemp(suffix=".pem", prefix=prefix)
        self._temp_files.append(path)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return path

    def _make_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Internal method to make HTTP requests with dry-run support.

        In dry-run mode:
        - GET and HEAD requests are executed normally
        - POST, PUT, DELETE requests are logged but not executed

        Args:
            method (str): HTTP method (GET, POST, PUT, DELETE, HEAD)
            url (str): URL for the request
            **kwargs: Additional arguments to pass to requests

        Returns:
            requests.Response: Response object (real or mocked)
        """
        method_upper = method.upper()

        if self.dry_run and method_upper not in ["GET", "HEAD"]:
            logger.warning(f"[DRY-RUN] Skipping {method_upper} request to {url}")
            if "json" in kwargs:
                logger.debug(f"[DRY-RUN] Would send payload: {kwargs['json']}")

            mock_response = requests.Response()
            mock_response.status_code = 200
            mock_response._content = b'{"dry_run": true, "success": true}'
            mock_response.headers["Content-Type"] = "application/json"
            return mock_response

        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        return getattr(self.http, method.lower())(url, **kwargs)

    def _rrsets_url(self, zone: str, group: str) -> str:
        return (
            f"{self.tenant_url}/api/config/dns/namespaces/system/dns_zones/"
            f"{quote(zone)}/rrsets/{quote(group)}"
        )

    def _txt_rrset_url(self, zone: str, record_name: str, group: str) -> str:
        return f"{self._rrsets_url(zone, group)}/{quote(record_name)}/TXT"

    @staticmethod
    def _rrset_payload(zone: str, record_name: str, values: list[str], group: str) -> dict[str, Any]:
        return {
            "dns_zone_name": zone,
            "group_name": group,
            "type": "TXT",
            "rrset": {
                "description": RRSET_DESCRIPTION,
                "ttl": RRSET_TTL,
                "txt_record": {"name": record_name, "values": values},
            },
        }

    def get_txt_rrset(
        self, zone: str, record_name: str, group: str = DEFAULT_GROUP_NAME
    ) -> list[str] | None:
        """
        Fetch the values of a TXT rrset.

        Returns:
            list[str] | None: Record values, or None if the rrset does not exist.

        Raises:
            requests.exceptions.HTTPError: On any status other than 200/404.
        """
        url = self._txt_rrset_url(zone, record_name, group)
        r = self._make_request("GET", url)

        if r.status_code == 404:
            return None
        r.raise_for_status()

        rrset = r.json().get("rrset") or {}
        return list((rrset.get("txt_record") or {}).get("values") or [])

    def create_txt_rrset(
        self, zone: str, record_name: str, values: list[str], group: str = DEFAULT_GROUP_NAME
    ) -> None:
        """
        Create a TXT rrset.

        Raises:
            requests.exceptions.HTTPError: If the HTTP request fails.
        """
        payload = self._rrset_payload(zone, record_name, values, group)
        # The create endpoint infers the type from the record body.
        del payload["type"]

        logger.debug(f"Creating TXT rrset {record_name} in {zone}")
        r = self._make_request("POST", self._rrsets_url(zone, group), json=payload)
        self._raise_with_detail(r)

    def replace_txt_rrset(
        self, zone: str, record_name: str, values: list[str], group: str = DEFAULT_GROUP_NAME
    ) -> None:
        """
        Replace the values of an existing TXT rrset.

        Raises:
            requests.exceptions.HTTPError: If the HTTP request fails.
        """
        payload = self._rrset_payload(zone, record_name, values, group)

        logger.debug(f"Replacing TXT rrset {record_name} in {zone} with {len(values)} value(s)")
        r = self._make_request("PUT", self._txt_rrset_url(zone, record_name, group), json=payload)
        self._raise_with_detail(r)

    def delete_txt_rrset(self, zone: str, record_name: str, group: str = DEFAULT_GROUP_NAME) -> None:
        """
        Delete a TXT rrset. A missing rrset is not an error.

        Raises:
            requests.exceptions.HTTPError: If the HTTP request fails.
        """
        logger.debug(f"Deleting TXT rrset {record_name} in {zone}")
        r = self._make_request("DELETE", self._txt_rrset_url(zone, record_name, group))
        if r.status_code == 404:
            return
        self._raise_with_detail(r)

    def list_http_loadbalancers(self, namespace: str) -> list[dict[str, Any]]:
        """
        List HTTP load balancers in a namespace, including their full spec.

        Raises:
            requests.exceptions.RequestException: If the HTTP request fails.
        """
        url = f"{self.tenant_url}/api/config/namespaces/{quote(namespace)}/http_loadbalancers?report_fields"
        r = self._make_request("GET", url)
        r.raise_for_status()
        return r.json().get("items") or []

    def upsert_certificate(
        self, namespace: str, name: str, certificate_pem: str, private_key_pem: str
    ) -> dict[str, Any]:
        """
        Create or replace a certificate object.

        Args:
            namespace: XC namespace.
            name: Certificate object name.
            certificate_pem: Leaf certificate followed by its issuer chain.
            private_key_pem: Private key in PEM format.

        Returns:
            dict[str, Any]: API response body.

        Raises:
            requests.exceptions.HTTPError: If the HTTP request fails.
        """
        payload = {
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "certificate_url": string_url(certificate_pem.encode("utf-8")),
                "private_key": {
                    "clear_secret_info": {"url": string_url(private_key_pem.encode("utf-8"))}
                },
            },
        }

        base = f"{self.tenant_url}/api/config/namespaces/{quote(namespace)}/certificates"
        r = self._make_request("PUT", f"{base}/{quote(name)}", json=payload)

        if r.status_code == 404:
            logger.info(f"Certificate {namespace}/{name} does not exist yet, creating it")
            r = self._make_request("POST", base, json=payload)

        self._raise_with_detail(r)
        return r.json() if r.content else {}

    @staticmethod
    def _raise_with_detail(r: requests.Response) -> None:
        """Log the API error body before raising for status."""
        if r.status_code >= 400:
            try:
                logger.error(f"Error detail from XC API: {r.json()}")
            except ValueError:
                logger.error(f"Error response body: {r.text}")
        r.raise_for_status()


class ApiTokenAuth(requests.auth.AuthBase):
    """
    API token authentication for the XC API.

    Attributes:
        token (str): The API token used for authentication.
    """

    def __init__(self, token: str) -> None:
        self._token = token

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        """
        Adds the API token to the Authorization header of the request.
        """
        r.headers["Authorization"] = f"APIToken {self._token}"
        return r
