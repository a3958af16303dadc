import logging
import threading
from typing import Any

import requests

from acme_xc_certificates import models, utils
from acme_xc_certificates.exceptions import AcmeError, RegistrationError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
BAD_NONCE = "urn:ietf:params:acme:error:badNonce"


class AcmeClient:
    """Client for interacting with an ACME (Automated Certificate Management Environment) server."""

    DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
    TEST_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"

    def __init__(self, account_key, directory_url: str | None = None, staging: bool = False):
        """
        Initialize the AcmeClient.

        Args:
        - account_key: RSA or EC private key of the account.
        - directory_url (str | None): ACME directory URL; defaults to Let's Encrypt.
        - staging (bool): Use the Let's Encrypt staging directory when no URL is given.
        """
        self.http = requests.Session()
        self.account_key = account_key
        self.directory_url = directory_url or (self.TEST_DIRECTORY_URL if staging else self.DIRECTORY_URL)

        self._directory: dict[str, Any] | None = None
        self._nonce: str | None = None
        self._key_id: str = ""
        # Nonces are single-use; concurrent authorizations share this client.
        self._lock = threading.RLock()

    def __enter__(self):
        """
        Context management entry point.
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Context management exit point. Closes the HTTP session.
        """
        self.http.close()

    def close(self):
        """Close the AcmeClient."""
        self.__exit__(None, None, None)

    @property
    def key_id(self) -> str:
        """Account URL used as the JWS "kid" once registered."""
        return self._key_id

    def add_headers(self, headers: dict[str, str]) -> None:
        """
        Add headers to the HTTP session.

        Args:
        - headers (dict[str, str]): Headers to add.
        """
        self.http.headers.update(headers)

    def new_account(
        self,
        terms_of_service_agreed: bool | None = None,
        only_existing: bool | None = None,
        contact: list[str] | None = None,
        eab_kid: str | None = None,
        eab_hmac_key: str | None = None,
    ) -> models.Account:
        """
        Register an ACME account, or look up the existing one for this key.

        Args:
        - terms_of_service_agreed (bool | None): Whether the user agrees to the terms of service.
        - only_existing (bool | None): Only return an existing account.
        - contact (list[str] | None): Contact URIs, e.g. ["mailto:admin@example.com"].
        - eab_kid / eab_hmac_key: External Account Binding credentials.

        Returns:
        - models.Account: The registered account.

        Raises:
        - RegistrationError: If the CA rejects the request.
        """
        payload: dict[str, Any] = {}

        if terms_of_service_agreed:
            payload["termsOfServiceAgreed"] = terms_of_service_agreed

        if only_existing:
            payload["onlyReturnExisting"] = only_existing

        if contact:
            payload["contact"] = contact

        url = self.url_for("newAccount")
        public_jwk = utils.jwk_public(self.account_key)

        if eab_kid and eab_hmac_key and not only_existing:
            payload["externalAccountBinding"] = utils.build_eab(public_jwk, eab_kid, eab_hmac_key, url)

        r = self._signed_request(
            url=url,
            key={"alg": utils.jws_algorithm(self.account_key), "jwk": public_jwk},
            payload=payload,
        )

        if r.status_code not in (200, 201):
            raise RegistrationError("Account registration rejected", r.status_code, _problem(r))

        self._key_id = r.headers["Location"]
        logger.info(
            f"ACME account {'found' if r.status_code == 200 else 'created'}: {self._key_id}"
        )
        return models.Account(self, self._key_id, r.json() if r.content else {})

    def new_order(self, domains: list[str]) -> models.Order:
        """
        Create a new order for the specified domains.

        Args:
        - domains (list[str]): Domain names; duplicates are dropped, order is kept.

        Returns:
        - models.Order: The created order.

        Raises:
        - AcmeError: If the server refuses the order.
        """
        all_domains: list[str] = []
        for domain in domains:
            if domain not in all_domains:
                all_domains.append(domain)

        payload = {"identifiers": [{"type": "dns", "value": d} for d in all_domains]}
        url = self.url_for("newOrder")

        logger.debug(f"Creating new order with URL {url} and payload: {payload}")
        response = self.signed_request(url, payload)

        if response.status_code != 201:
            raise AcmeError(
                f"Failed to create order for {', '.join(all_domains)}",
                response.status_code,
                _problem(response),
            )

        return models.Order(self, response.headers["Location"], response.json())

    def url_for(self, resource: str) -> str:
        """
        Get the URL for a specific ACME resource.

        Args:
        - resource (str): ACME resource identifier.

        Returns:
        - str: Resource URL.

        Raises:
        - AcmeError: If the directory does not advertise the resource.
        """
        if not self._directory:
            r = self.http.get(self.directory_url, timeout=REQUEST_TIMEOUT)
            r.raise_for_status()

            self._directory = r.json()
            logger.debug(f"Fetched directory: {self._directory}")

        url = (self._directory or {}).get(resource)
        if not url:
            raise AcmeError(f"Directory {self.directory_url} has no '{resource}' resource")
        return url

    def signed_request(self, url: str, payload: dict[str, Any] | None = None) -> requests.Response:
        """
        Send a signed request to the ACME server.

        Args:
        - url (str): URL for the request.
        - payload (dict | None): Payload data for the request. None for POST-as-GET.

        Returns:
        - requests.Response: Response object.
        """
        # Look the account up by key if this client never registered.
        if not self._key_id:
            logger.debug("Key ID not found. Looking up existing account.")
            self.new_account(only_existing=True)

        return self._signed_request(
            url=url,
            key={"alg": utils.jws_algorithm(self.account_key), "kid": self._key_id},
            payload=payload,
        )

    def format_data(self, url: str, key: dict[str, Any], payload: dict[str, Any] | None) -> dict[str, Any]:
        """
        Format the flattened JWS body for a signed request.

        Args:
        - url (str): URL for the request.
        - key (dict): "alg" plus either "jwk" or "kid".
        - payload (dict | None): Payload data for the request. None for POST-as-GET.

        Returns:
        - dict: Formatted data.
        """
        protected_header = {"url": url, "nonce": self._nonce, **key}
        protected = utils.b64url(utils.json_encode(protected_header))

        logger.debug(f"Protected header: {protected_header}")

        # POST-as-GET carries an empty payload
        if payload is None:
            dumped_payload = ""
        else:
            dumped_payload = utils.b64url(utils.json_encode(payload))

        signing_input = f"{protected}.{dumped_payload}".encode("utf-8")
        signature = utils.b64url(utils.sign(self.account_key, signing_input))

        return {
            "protected": protected,
            "payload": dumped_payload,
            "signature": signature,
        }

    def _signed_request(
        self, url: str, key: dict[str, Any], payload: dict[str, Any] | None
    ) -> requests.Response:
        """Send a signed request to the ACME server with nonce handling."""
        with self._lock:
            if not self._nonce:
                self._new_nonce()

            for attempt in range(2):  # try once, then retry if badNonce
                data = self.format_data(url, key, payload)
                headers = {"Content-Type": "application/jose+json"}

                logger.debug(f"Sending signed request to {url} (attempt {attempt + 1})")

                try:
                    response = self.http.post(url, headers=headers, json=data, timeout=REQUEST_TIMEOUT)
                except requests.exceptions.RequestException as e:
                    logger.error(f"Error sending signed request: {e}")
                    raise

                new_nonce = response.headers.get("Replay-Nonce")
                self._nonce = new_nonce

                if response.status_code == 400 and _problem(response).get("type") == BAD_NONCE:
                    logger.warning("badNonce received, retrying once with new nonce")
                    if not new_nonce:
                        self._new_nonce()
                    continue

                return response

        raise AcmeError("ACME request failed after badNonce retry", 400)

    def _new_nonce(self):
        """Get a new nonce from the ACME server."""
        url = self.url_for("newNonce")
        r = self.http.head(url, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()

        self._nonce = r.headers["Replay-Nonce"]


def _problem(response: requests.Response) -> dict[str, Any]:
    """Return the RFC 7807 problem document of a response, or {}."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
