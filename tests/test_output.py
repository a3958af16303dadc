"""Tests for certificate delivery."""

import stat
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.serialization import pkcs12

from acme_xc_certificates import output, xc
from acme_xc_certificates.certificate import IssuedCertificate
from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.request_set import Destination
from conftest import TENANT_URL


@pytest.fixture
def issued(issue_pem):
    pem, key = issue_pem(["app.example.com", "www.app.example.com"])
    return IssuedCertificate.from_pem(pem, key)


class TestBundlePath:
    """Tests for bundle_path function."""

    def test_key_to_file_name(self):
        assert output.bundle_path(Path("certs"), "shop/lb-1") == Path("certs/shop_lb-1.p12")
        assert output.bundle_path(Path("certs"), "certificate") == Path("certs/certificate.p12")


class TestWritePkcs12:
    """Tests for write_pkcs12 function."""

    def test_bundle_contents_and_permissions(self, tmp_path, issued):
        """Test the bundle opens with the password and is readable only by its owner."""
        path = output.write_pkcs12(tmp_path / "out" / "certificate.p12", issued, "s3cret")

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        bundle = pkcs12.load_pkcs12(path.read_bytes(), b"s3cret")
        assert bundle.cert.certificate == issued.certificate
        assert [c.certificate for c in bundle.additional_certs] == issued.chain
        assert bundle.key.private_numbers() == issued.private_key.private_numbers()

    def test_certificate_only_without_key(self, tmp_path, issue_pem):
        pem, _ = issue_pem(["app.example.com"])
        issued = IssuedCertificate.from_pem(pem)

        path = output.write_pkcs12(tmp_path / "certificate.p12", issued, "s3cret")

        assert pkcs12.load_pkcs12(path.read_bytes(), b"s3cret").key is None

    def test_wrong_password(self, tmp_path, issued):
        path = output.write_pkcs12(tmp_path / "certificate.p12", issued, "s3cret")

        with pytest.raises(ValueError):
            pkcs12.load_pkcs12(path.read_bytes(), b"wrong")

    def test_password_required(self, tmp_path, issued):
        with pytest.raises(ConfigurationError, match="p12_password"):
            output.write_pkcs12(tmp_path / "certificate.p12", issued, "")

        assert not (tmp_path / "certificate.p12").exists()


class TestPushToXc:
    """Tests for push_to_xc function."""

    def test_upserts_full_chain_and_key(self, xc_client, requests_mock, issued):
        url = f"{TENANT_URL}/api/config/namespaces/shop/certificates/lb-1"
        requests_mock.put(url, json={"metadata": {"name": "lb-1"}})

        output.push_to_xc(xc_client, Destination("shop", "lb-1"), issued)

        spec = requests_mock.last_request.json()["spec"]
        assert spec["certificate_url"] == xc.string_url(issued.fullchain_pem().encode())
        assert spec["private_key"]["clear_secret_info"]["url"] == xc.string_url(issued.private_key_pem().encode())

    def test_refused_without_private_key(self, xc_client, requests_mock, issue_pem):
        pem, _ = issue_pem(["app.example.com"])

        with pytest.raises(ConfigurationError, match="push_to_xc"):
            output.push_to_xc(xc_client, Destination("shop", "lb-1"), IssuedCertificate.from_pem(pem))

        assert requests_mock.call_count == 0
