"""Tests for the ACME account and issuance session."""

import json
import stat

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from acme_xc_certificates import certificate, validation
from acme_xc_certificates.challenge import ChallengeOrchestrator
from acme_xc_certificates.exceptions import ChallengeValidationError, ConfigurationError
from acme_xc_certificates.session import AccountIdentity, AcmeSession
from conftest import ACME_BASE, DIRECTORY_URL, FakeAcmeServer


def _session(account_key, provider, **kwargs):
    identity = AccountIdentity(account_key, DIRECTORY_URL, "admin@example.com")
    orchestrator = ChallengeOrchestrator(provider, cert_timeout=30)
    return AcmeSession(identity, orchestrator, cert_timeout=30, key_algorithm="ECDSA", **kwargs)


def _posts(server, path):
    return [r for r in server.acme_requests if r.method == "POST" and r.path == path]


class TestAccountIdentity:
    """Tests for AccountIdentity."""

    def test_creates_key_with_owner_only_permissions(self, tmp_path):
        key_path = tmp_path / "account.pem"

        identity = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="ECDSA")

        assert isinstance(identity.private_key, ec.EllipticCurvePrivateKey)
        assert stat.S_IMODE(key_path.stat().st_mode) == 0o600
        assert identity.contact == ["mailto:admin@example.com"]

    def test_reuses_existing_key(self, tmp_path):
        key_path = tmp_path / "account.pem"
        first = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="ECDSA")

        second = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="RSA")

        assert second.private_key.private_numbers() == first.private_key.private_numbers()

    def test_metadata_round_trip(self, tmp_path):
        key_path = tmp_path / "account.pem"
        identity = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="ECDSA")
        identity.kid = f"{ACME_BASE}/acct/7"
        identity.save()

        reloaded = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com")

        assert reloaded.kid == f"{ACME_BASE}/acct/7"
        assert json.loads((tmp_path / "account.pem.json").read_text())["directory_url"] == DIRECTORY_URL

    def test_directory_mismatch(self, tmp_path):
        """Test a key registered with another CA directory is refused."""
        key_path = tmp_path / "account.pem"
        identity = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="ECDSA")
        identity.save()

        with pytest.raises(ConfigurationError, match="account_key_path"):
            AccountIdentity.load_or_create(key_path, "https://other-ca.test/directory", "admin@example.com")

    def test_no_email_no_contact(self, account_key):
        assert AccountIdentity(account_key, DIRECTORY_URL, "").contact == []


class TestRegister:
    """Tests for AcmeSession.register."""

    def test_registers_once(self, account_key, fake_provider, acme_server):
        session = _session(account_key, fake_provider)

        account = session.register()
        again = session.register()

        assert account is again
        assert acme_server.accounts_created == 1
        assert account["contact"] == ["mailto:admin@example.com"]
        assert session.identity.kid == f"{ACME_BASE}/acct/1"

    def test_saves_account_url_next_to_key(self, tmp_path, requests_mock, fake_provider, test_ca):
        key_path = tmp_path / "account.pem"
        identity = AccountIdentity.load_or_create(key_path, DIRECTORY_URL, "admin@example.com", algorithm="ECDSA")
        FakeAcmeServer(requests_mock, identity.private_key, fake_provider, test_ca)
        session = AcmeSession(identity, ChallengeOrchestrator(fake_provider, cert_timeout=30))

        session.register()

        metadata = json.loads((tmp_path / "account.pem.json").read_text())
        assert metadata == {"directory_url": DIRECTORY_URL, "email": "admin@example.com", "kid": f"{ACME_BASE}/acct/1"}


class TestIssue:
    """Tests for AcmeSession.issue."""

    def test_direct_mode(self, account_key, fake_provider, acme_server):
        """Test a fresh key is generated and the leaf covers the domain."""
        with _session(account_key, fake_provider) as session:
            issued = session.issue(["app.example.com"])

        assert isinstance(issued.private_key, ec.EllipticCurvePrivateKey)
        assert issued.certificate.public_key().public_numbers() == issued.private_key.public_key().public_numbers()
        assert validation.verify_certificate_covers_domain(issued.certificate, "app.example.com") == (True, "")
        assert fake_provider.count("present") == 1
        assert fake_provider.count("cleanup") == 1
        assert fake_provider.records == {}

    def test_multiple_domains_and_wildcard(self, account_key, fake_provider, acme_server):
        """Test the wildcard and its base name share one record name without losing a token."""
        with _session(account_key, fake_provider) as session:
            issued = session.issue(["example.com", "*.example.com", "www.example.com"])

        assert issued.domains == ["example.com", "*.example.com", "www.example.com"]
        assert fake_provider.count("present") == 3
        assert {call[1] for call in fake_provider.calls} == {
            "_acme-challenge.example.com.",
            "_acme-challenge.www.example.com.",
        }
        assert fake_provider.records == {}

    def test_csr_mode(self, account_key, fake_provider, acme_server):
        """Test a caller-supplied CSR is finalized as is and no key is returned."""
        key = ec.generate_private_key(ec.SECP256R1())
        csr = certificate.generate_csr(["app.example.com"], key)

        with _session(account_key, fake_provider) as session:
            issued = session.issue(["app.example.com"], csr)

        assert issued.private_key is None
        assert issued.certificate.public_key().public_numbers() == key.public_key().public_numbers()

    def test_csr_names_must_match(self, account_key, fake_provider, acme_server):
        key = ec.generate_private_key(ec.SECP256R1())
        csr = certificate.generate_csr(["other.example.com"], key)

        with _session(account_key, fake_provider) as session:
            with pytest.raises(ConfigurationError, match="certificate.csr_path"):
                session.issue(["app.example.com"], csr)

        assert _posts(acme_server, "/new-order") == []

    def test_rejected_challenge(self, requests_mock, account_key, fake_provider, test_ca):
        server = FakeAcmeServer(requests_mock, account_key, fake_provider, test_ca, reject_challenges=True)

        with _session(account_key, fake_provider) as session:
            with pytest.raises(ChallengeValidationError, match="app.example.com"):
                session.issue(["app.example.com"])

        assert fake_provider.count("cleanup") == 1
        assert fake_provider.records == {}
        assert _posts(server, "/order/1/finalize") == []

    def test_domain_outside_zones(self, account_key, fake_provider, acme_server):
        with _session(account_key, fake_provider) as session:
            with pytest.raises(ConfigurationError, match="zones"):
                session.issue(["app.unrelated.com"])

        assert fake_provider.calls == []

    def test_already_valid_authorization_is_skipped(self, requests_mock, account_key, fake_provider, test_ca):
        server = FakeAcmeServer(
            requests_mock, account_key, fake_provider, test_ca, preauthorized=["app.example.com"]
        )

        with _session(account_key, fake_provider) as session:
            issued = session.issue(["app.example.com"])

        assert issued.common_name == "app.example.com"
        assert fake_provider.calls == []
        assert [r for r in server.acme_requests if "/chall/" in r.path] == []
