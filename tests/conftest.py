import json
import re
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acme_xc_certificates import acme, models, utils, xc
from acme_xc_certificates.challenge import dns01_txt_value
from acme_xc_certificates.providers.base import DnsProvider, record_lock

ACME_BASE = "https://acme.test"
DIRECTORY_URL = f"{ACME_BASE}/directory"
TENANT_URL = "https://tenant.console.ves.volterra.io"


class FakeDnsProvider(DnsProvider):
    """In-memory provider recording every call."""

    name = "fake"

    def __init__(self, zones=None, fail_present=False, fail_cleanup=False):
        super().__init__(zones)
        self.records: dict[str, list[str]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.fail_present = fail_present
        self.fail_cleanup = fail_cleanup

    def present(self, fqdn, token):
        self.calls.append(("present", fqdn, token))
        if self.fail_present:
            raise self.error("present refused")
        with record_lock(fqdn):
            values = self.records.setdefault(fqdn, [])
            if token not in values:
                values.append(token)

    def cleanup(self, fqdn, token):
        self.calls.append(("cleanup", fqdn, token))
        if self.fail_cleanup:
            raise self.error("cleanup refused")
        with record_lock(fqdn):
            values = [v for v in self.records.get(fqdn, []) if v != token]
            if values:
                self.records[fqdn] = values
            else:
                self.records.pop(fqdn, None)

    def query(self, fqdn):
        return list(self.records.get(fqdn, []))

    def count(self, action):
        return sum(1 for call in self.calls if call[0] == action)


def _decode_payload(request):
    payload = request.json()["payload"]
    if not payload:
        return None
    return json.loads(utils.b64url_decode(payload))


class FakeAcmeServer:
    """
    Minimal stateful ACME CA on top of requests_mock.

    A challenge validates when the DNS provider holds the expected TXT value at
    the time the client responds, unless ``reject_challenges`` is set.
    Identifiers listed in ``preauthorized`` get authorizations that are already valid.
    """

    def __init__(self, mocker, account_key, provider, ca, reject_challenges=False, days=90, preauthorized=()):
        self.mocker = mocker
        self.thumbprint = utils.json_thumbprint(utils.jwk_public(account_key))
        self.provider = provider
        self.ca_key, self.ca_cert = ca
        self.reject_challenges = reject_challenges
        self.days = days
        self.preauthorized = set(preauthorized)

        self.nonce = 0
        self.orders: dict[int, dict] = {}
        self.authorizations: dict[int, dict] = {}
        self.certificates: dict[int, str] = {}
        self.accounts_created = 0

        mocker.get(
            DIRECTORY_URL,
            json={
                "newNonce": f"{ACME_BASE}/new-nonce",
                "newAccount": f"{ACME_BASE}/new-account",
                "newOrder": f"{ACME_BASE}/new-order",
            },
        )
        mocker.head(f"{ACME_BASE}/new-nonce", headers={"Replay-Nonce": "nonce-0"})
        mocker.post(f"{ACME_BASE}/new-account", json=self._new_account)
        mocker.post(f"{ACME_BASE}/new-order", json=self._new_order)
        mocker.post(re.compile(rf"{ACME_BASE}/authz/\d+$"), json=self._authz)
        mocker.post(re.compile(rf"{ACME_BASE}/chall/\d+$"), json=self._challenge)
        mocker.post(re.compile(rf"{ACME_BASE}/order/\d+$"), json=self._order)
        mocker.post(re.compile(rf"{ACME_BASE}/order/\d+/finalize$"), json=self._finalize)
        mocker.post(re.compile(rf"{ACME_BASE}/cert/\d+$"), text=self._certificate)

    @property
    def acme_requests(self):
        return [r for r in self.mocker.request_history if r.url.startswith(ACME_BASE)]

    def _headers(self, context, **extra):
        self.nonce += 1
        context.headers["Replay-Nonce"] = f"nonce-{self.nonce}"
        context.headers.update(extra)

    def _new_account(self, request, context):
        self.accounts_created += 1
        context.status_code = 201
        self._headers(context, Location=f"{ACME_BASE}/acct/1")
        payload = _decode_payload(request) or {}
        return {"status": "valid", "contact": payload.get("contact", [])}

    def _new_order(self, request, context):
        payload = _decode_payload(request)
        order_id = len(self.orders) + 1
        authz_urls = []

        for identifier in payload["identifiers"]:
            authz_id = len(self.authorizations) + 1
            value = identifier["value"]
            wildcard = value.startswith("*.")
            self.authorizations[authz_id] = {
                "status": "valid" if value in self.preauthorized else "pending",
                "identifier": {"type": "dns", "value": value.removeprefix("*.")},
                "wildcard": wildcard,
                "challenges": [
                    {
                        "type": "http-01",
                        "url": f"{ACME_BASE}/http-chall/{authz_id}",
                        "token": f"http-token-{authz_id}",
                        "status": "pending",
                    },
                    {
                        "type": "dns-01",
                        "url": f"{ACME_BASE}/chall/{authz_id}",
                        "token": f"dns-token-{authz_id}",
                        "status": "pending",
                    },
                ],
            }
            authz_urls.append(f"{ACME_BASE}/authz/{authz_id}")

        self.orders[order_id] = {
            "status": "pending",
            "identifiers": payload["identifiers"],
            "authorizations": authz_urls,
            "finalize": f"{ACME_BASE}/order/{order_id}/finalize",
        }
        context.status_code = 201
        self._headers(context, Location=f"{ACME_BASE}/order/{order_id}")
        return self.orders[order_id]

    def _authz(self, request, context):
        self._headers(context)
        return self.authorizations[int(request.path.rsplit("/", 1)[1])]

    def _challenge(self, request, context):
        self._headers(context)
        authz_id = int(request.path.rsplit("/", 1)[1])
        authz = self.authorizations[authz_id]
        challenge = next(c for c in authz["challenges"] if c["url"] == request.url)

        if _decode_payload(request) is not None and challenge["status"] == "pending":
            domain = authz["identifier"]["value"]
            expected = dns01_txt_value(challenge["token"], self.thumbprint)
            published = self.provider.query(f"_acme-challenge.{domain}.")

            if expected in published and not self.reject_challenges:
                challenge["status"] = "valid"
                authz["status"] = "valid"
            else:
                challenge["status"] = "invalid"
                challenge["error"] = {"detail": f"No TXT record found at _acme-challenge.{domain}"}
                authz["status"] = "invalid"

        return challenge

    def _order(self, request, context):
        self._headers(context)
        order = self.orders[int(request.path.rsplit("/", 1)[1])]
        if order["status"] == "pending":
            statuses = {self.authorizations[int(u.rsplit("/", 1)[1])]["status"] for u in order["authorizations"]}
            if statuses == {"valid"}:
                order["status"] = "ready"
            elif "invalid" in statuses:
                order["status"] = "invalid"
        return order

    def _finalize(self, request, context):
        self._headers(context)
        order_id = int(request.path.split("/")[2])
        order = self.orders[order_id]
        csr = x509.load_der_x509_csr(utils.b64url_decode(_decode_payload(request)["csr"]))

        self.certificates[order_id] = sign_csr(csr, (self.ca_key, self.ca_cert), self.days)
        order["status"] = "valid"
        order["certificate"] = f"{ACME_BASE}/cert/{order_id}"
        return order

    def _certificate(self, request, context):
        self._headers(context)
        context.headers["Content-Type"] = "application/pem-certificate-chain"
        return self.certificates[int(request.path.rsplit("/", 1)[1])]


def sign_csr(csr, ca, days=90):
    """Issue a leaf for a CSR from the test CA; returns leaf + CA as PEM."""
    ca_key, ca_cert = ca
    now = datetime.now(timezone.utc)
    san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value

    leaf = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca_cert.subject)
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(hours=1))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(san, critical=False)
        .sign(ca_key, hashes.SHA256())
    )
    return (
        leaf.public_bytes(serialization.Encoding.PEM) + ca_cert.public_bytes(serialization.Encoding.PEM)
    ).decode("ascii")


@pytest.fixture(scope="session")
def account_key():
    """Fixture to generate a private RSA key for the tests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_account_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def test_ca():
    """Self-signed CA used to issue leaf certificates."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Issuing CA")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def issue_pem(test_ca):
    """Return a function issuing a PEM chain for domains with a fresh key."""

    def _issue(domains, days=90, key=None):
        from acme_xc_certificates.certificate import generate_csr

        key = key or ec.generate_private_key(ec.SECP256R1())
        return sign_csr(generate_csr(domains, key), test_ca, days), key

    return _issue


@pytest.fixture
def acme_client(account_key):
    """Fixture to initialize an AcmeClient instance."""
    return acme.AcmeClient(account_key, directory_url=DIRECTORY_URL)


@pytest.fixture
def resource(acme_client):
    data = {"status": "pending"}
    return models.Resource(acme_client, f"{ACME_BASE}/resource/1", data)


@pytest.fixture
def order(acme_client):
    """Fixture to initialize an Order instance."""
    data = {
        "authorizations": [f"{ACME_BASE}/authz/1"],
        "finalize": f"{ACME_BASE}/order/1/finalize",
        "status": "ready",
    }
    return models.Order(acme_client, f"{ACME_BASE}/order/1", data)


@pytest.fixture
def fake_provider():
    return FakeDnsProvider(zones=["example.com"])


@pytest.fixture
def acme_server(requests_mock, account_key, fake_provider, test_ca):
    return FakeAcmeServer(requests_mock, account_key, fake_provider, test_ca)


@pytest.fixture
def xc_client():
    return xc.XcClient(TENANT_URL, api_token="test-token-123")


@pytest.fixture
def requests_mock():
    """Fixture for requests-mock."""
    import requests_mock as rm

    with rm.Mocker() as m:
        yield m
