import logging
import time
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acme_xc_certificates import utils
from acme_xc_certificates.exceptions import AcmeError, IssuanceTimeoutError

# Only import for type checking, not at runtime
if TYPE_CHECKING:
    from acme_xc_certificates.acme import AcmeClient

logger = logging.getLogger(__name__)


class Resource:
    """Base class representing a generic ACME resource."""

    POLL_INTERVAL = 1
    MAX_RETRIES = 5

    def __init__(self, client: "AcmeClient", url: str, data: dict[str, Any] | None = None):
        self.client = client
        self.url = url
        self._data: dict[str, Any] | None = data
        self._retry_after = time.monotonic()

    @property
    def status(self) -> str:
        """Get the status of the resource."""
        if not self._data:
            return ""
        return self._data.get("status", "")

    @property
    def error(self) -> dict[str, Any]:
        """Problem document attached to the resource, if any."""
        if not self._data:
            return {}
        return self._data.get("error") or {}

    def get_json_response(self, r: Any) -> dict[str, Any]:
        """
        Parse the JSON response from the request.
        Args:
        - r: Response object.
        Returns:
        - dict[str, Any]: Parsed JSON data.
        Raises:
        - AcmeError: If the response is not valid JSON.
        """
        try:
            if r.status_code == 204:
                return {}
            return r.json()
        except ValueError:
            raise AcmeError(f"Invalid JSON response: {r.text}", r.status_code) from None

    def update(self, deadline: float | None = None) -> None:
        """
        Update the resource information with retries.

        Args:
        - deadline (float | None): `time.monotonic()` value no backoff sleep may run past.
        """
        r = None
        attempts = 0

        for attempt in range(self.MAX_RETRIES):
            attempts += 1
            try:
                r = self.client.signed_request(self.url, payload=None)

                if r.status_code not in (200, 202):
                    raise AcmeError(f"Failed to update {self.url}", r.status_code)

                self._data = self.get_json_response(r)

                self._retry_after = time.monotonic() + int(
                    r.headers.get("Retry-After", self.POLL_INTERVAL)
                )

                if self._data:
                    return

            except Exception as e:
                logger.warning(f"Error while updating resource: {e}")
                wait_time = 2**attempt

                if r is not None:
                    wait_time = int(r.headers.get("Retry-After", wait_time))

                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    wait_time = min(wait_time, remaining)

                time.sleep(wait_time)

        raise AcmeError(f"Failed to update {self.url} after {attempts} attempts")

    def poll_until_not(self, statuses: set[str], timeout: float | None = None) -> None:
        """
        Poll the resource until its status is not in the specified set.

        Args:
        - statuses (set[str]): Set of statuses to poll.
        - timeout (float | None): Give up after this many seconds.

        Raises:
        - IssuanceTimeoutError: If the status is still in the set when the timeout expires.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while self.status in statuses:
            logger.debug(f"Polling {self.url}, current status: {self.status}")
            now = time.monotonic()

            if deadline is not None and now >= deadline:
                raise IssuanceTimeoutError(f"Waiting for {self.url} to leave {sorted(statuses)}", timeout)

            delay = self._retry_after - now
            if deadline is not None:
                delay = min(delay, deadline - now)
            if delay > 0:
                time.sleep(delay)
            self.update(deadline)

    def __getitem__(self, item: str) -> Any:
        """
        Get an item from the resource data.

        Args:
        - item: Item to get.

        Returns:
        - Any: Value associated with the item.
        """
        if not self._data:
            self.update()

        if self._data is None:
            raise ValueError("Resource data is None")

        return self._data.get(item)

    def __repr__(self) -> str:
        """Representation of the Resource."""
        data = repr(self._data) if self._data else "..."
        return f"<{self.__class__.__name__} {self.url} {data}>"


class Account(Resource):
    """Represents an ACME account resource."""

    @property
    def key_thumbprint(self) -> str:
        """Return the JWK thumbprint of the account key (for key authorizations)."""
        return utils.json_thumbprint(utils.jwk_public(self.client.account_key))


class Challenge(Resource):
    """Class representing an ACME challenge."""

    @property
    def type(self) -> str:
        """Get the type of the challenge."""
        if not self._data:
            self.update()
        if self._data:
            return self._data.get("type", "")
        return ""

    @property
    def token(self) -> str:
        return self["token"] or ""

    def respond(self) -> None:
        """Tell the server the challenge is ready to be validated."""
        r = self.client.signed_request(self.url, {})
        if r.status_code != 200:
            raise AcmeError(f"Failed to respond to challenge {self.url}", r.status_code)
        self._data = self.get_json_response(r)


class Authorization(Resource):
    """Class representing an ACME authorization."""

    @property
    def identifier(self) -> dict[str, Any]:
        """Get the identifier for the authorization."""
        return self["identifier"]

    @property
    def domain(self) -> str:
        """Domain being authorized, with "*." restored for wildcard authorizations."""
        value = self.identifier.get("value", "")
        if self["wildcard"]:
            return f"*.{value}"
        return value

    @property
    def challenges(self) -> list[Challenge]:
        """Get the list of challenges associated with the authorization."""
        if not self._data:
            self.update()
        if not self._data:
            raise ValueError("Authorization data is None")

        return [
            Challenge(self.client, challenge["url"], challenge)
            for challenge in self._data.get("challenges", [])
        ]


class Order(Resource):
    """Class representing an ACME order."""

    @property
    def authorizations(self) -> list[Authorization]:
        """Get the list of authorizations associated with the order."""
        if not self._data:
            raise ValueError("Order data is None")

        return [Authorization(self.client, url) for url in self._data.get("authorizations", [])]

    def finalize(self, csr: x509.CertificateSigningRequest) -> None:
        """
        Finalize the order with the provided CSR (Certificate Signing Request).

        Args:
        - csr (x509.CertificateSigningRequest): The CSR for finalizing the order.

        Raises:
        - AcmeError: If the order is not "ready" or the server refuses the CSR.
        """
        logger.debug(f"status: {self.status}")
        if self.status != "ready":
            raise AcmeError(f"Cannot finalize order in state '{self.status}'")

        if not self._data:
            raise ValueError("Order data is None")

        csr_b64 = utils.b64url(csr.public_bytes(serialization.Encoding.DER))

        r = self.client.signed_request(self._data.get("finalize", ""), {"csr": csr_b64})
        if r.status_code not in (200, 201):
            try:
                problem = r.json()
            except ValueError:
                problem = {}
            raise AcmeError("Order finalization rejected", r.status_code, problem)

        self._data = self.get_json_response(r)
        self._retry_after = time.monotonic() + int(r.headers.get("Retry-After", self.POLL_INTERVAL))

    def certificate(self) -> str:
        """
        Get the certificate associated with the order.

        Returns:
        - str: Certificate chain (PEM format).

        Raises:
        - AcmeError: If the order is not in the "valid" state.
        """
        if self.status != "valid":
            raise AcmeError(f"Cannot download certificate of order in state '{self.status}'")

        if not self._data:
            raise ValueError("Order data is None")

        r = self.client.signed_request(self._data.get("certificate", ""))
        if r.status_code != 200:
            raise AcmeError("Certificate download failed", r.status_code)

        return r.text
