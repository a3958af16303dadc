import base64
from pathlib import Path

import pytest
import requests
import requests_mock
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from acme_xc_certificates import xc
from acme_xc_certificates.exceptions import ConfigurationError
from conftest import TENANT_URL

RRSETS = f"{TENANT_URL}/api/config/dns/namespaces/system/dns_zones/example.com/rrsets/default"


def test_normalize_tenant_url():
    assert xc.normalize_tenant_url("https://t.console.ves.volterra.io/api/") == "https://t.console.ves.volterra.io"
    assert xc.normalize_tenant_url(" https://t.console.ves.volterra.io ") == "https://t.console.ves.volterra.io"


def test_string_url():
    assert xc.string_url(b"abc") == "string:///" + base64.b64encode(b"abc").decode()


def test_client_requires_tenant_and_credentials():
    with pytest.raises(ConfigurationError, match="tenant_url"):
        xc.XcClient("", api_token="t")

    with pytest.raises(ConfigurationError, match="api_token"):
        xc.XcClient(TENANT_URL)


def test_api_token_header(xc_client):
    with requests_mock.Mocker() as m:
        m.get(f"{RRSETS}/_acme-challenge/TXT", json={"rrset": {"txt_record": {"values": ["a"]}}})

        xc_client.get_txt_rrset("example.com", "_acme-challenge")

        assert m.last_request.headers["Authorization"] == "APIToken test-token-123"


def test_get_txt_rrset(xc_client):
    with requests_mock.Mocker() as m:
        m.get(
            f"{RRSETS}/_acme-challenge.app/TXT",
            json={"rrset": {"txt_record": {"name": "_acme-challenge.app", "values": ["v1", "v2"]}}},
        )

        assert xc_client.get_txt_rrset("example.com", "_acme-challenge.app") == ["v1", "v2"]


def test_get_txt_rrset_missing(xc_client):
    with requests_mock.Mocker() as m:
        m.get(f"{RRSETS}/_acme-challenge/TXT", status_code=404, json={"code": 5})

        assert xc_client.get_txt_rrset("example.com", "_acme-challenge") is None


def test_get_txt_rrset_error(xc_client):
    with requests_mock.Mocker() as m:
        m.get(f"{RRSETS}/_acme-challenge/TXT", status_code=500)

        with pytest.raises(requests.exceptions.HTTPError):
            xc_client.get_txt_rrset("example.com", "_acme-challenge")


def test_create_txt_rrset_payload(xc_client):
    with requests_mock.Mocker() as m:
        m.post(RRSETS, json={})

        xc_client.create_txt_rrset("example.com", "_acme-challenge", ["token"])

        assert m.last_request.json() == {
            "dns_zone_name": "example.com",
            "group_name": "default",
            "rrset": {
                "description": xc.RRSET_DESCRIPTION,
                "ttl": xc.RRSET_TTL,
                "txt_record": {"name": "_acme-challenge", "values": ["token"]},
            },
        }


def test_replace_txt_rrset_payload(xc_client):
    with requests_mock.Mocker() as m:
        m.put(f"{RRSETS}/_acme-challenge/TXT", json={})

        xc_client.replace_txt_rrset("example.com", "_acme-challenge", ["a", "b"])

        body = m.last_request.json()
        assert body["type"] == "TXT"
        assert body["rrset"]["txt_record"]["values"] == ["a", "b"]


def test_delete_txt_rrset_ignores_missing(xc_client):
    with requests_mock.Mocker() as m:
        m.delete(f"{RRSETS}/_acme-challenge/TXT", status_code=404)

        xc_client.delete_txt_rrset("example.com", "_acme-challenge")

        assert m.call_count == 1


def test_custom_group(xc_client):
    with requests_mock.Mocker() as m:
        url = f"{TENANT_URL}/api/config/dns/namespaces/system/dns_zones/example.com/rrsets/acme/_acme-challenge/TXT"
        m.get(url, json={"rrset": {"txt_record": {"values": []}}})

        assert xc_client.get_txt_rrset("example.com", "_acme-challenge", group="acme") == []


def test_list_http_loadbalancers(xc_client):
    with requests_mock.Mocker() as m:
        url = f"{TENANT_URL}/api/config/namespaces/shop/http_loadbalancers?report_fields"
        m.get(url, json={"items": [{"name": "lb-1"}]})

        assert xc_client.list_http_loadbalancers("shop") == [{"name": "lb-1"}]
        assert "report_fields" in m.last_request.url


def test_upsert_certificate_replaces_existing(xc_client):
    with requests_mock.Mocker() as m:
        url = f"{TENANT_URL}/api/config/namespaces/shop/certificates/lb-1"
        m.put(url, json={"metadata": {"name": "lb-1"}})

        xc_client.upsert_certificate("shop", "lb-1", "CERT", "KEY")

        body = m.last_request.json()
        assert body["metadata"] == {"name": "lb-1", "namespace": "shop"}
        assert body["spec"]["certificate_url"] == xc.string_url(b"CERT")
        assert body["spec"]["private_key"]["clear_secret_info"]["url"] == xc.string_url(b"KEY")


def test_upsert_certificate_creates_when_missing(xc_client):
    with requests_mock.Mocker() as m:
        base = f"{TENANT_URL}/api/config/namespaces/shop/certificates"
        m.put(f"{base}/lb-1", status_code=404)
        m.post(base, json={"metadata": {"name": "lb-1"}})

        result = xc_client.upsert_certificate("shop", "lb-1", "CERT", "KEY")

        assert result == {"metadata": {"name": "lb-1"}}
        assert [r.method for r in m.request_history] == ["PUT", "POST"]


def test_dry_run_skips_writes():
    client = xc.XcClient(TENANT_URL, api_token="t", dry_run=True)

    with requests_mock.Mocker() as m:
        m.get(f"{RRSETS}/_acme-challenge/TXT", status_code=404)

        client.create_txt_rrset("example.com", "_acme-challenge", ["token"])
        client.upsert_certificate("shop", "lb-1", "CERT", "KEY")
        assert client.get_txt_rrset("example.com", "_acme-challenge") is None

        assert [r.method for r in m.request_history] == ["GET"]


def test_p12_credential(tmp_path, test_ca):
    key, cert = test_ca
    p12 = tmp_path / "api.p12"
    p12.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"api", key, cert, None, serialization.BestAvailableEncryption(b"secret")
        )
    )

    client = xc.XcClient(TENANT_URL, p12_path=str(p12), p12_password="secret")
    cert_path, key_path = client.http.cert
    assert Path(cert_path).read_text().startswith("-----BEGIN CERTIFICATE-----")
    assert Path(key_path).exists()

    client.close()
    assert not Path(cert_path).exists()
    assert not Path(key_path).exists()


def test_p12_wrong_password(tmp_path, test_ca):
    key, cert = test_ca
    p12 = tmp_path / "api.p12"
    p12.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"api", key, cert, None, serialization.BestAvailableEncryption(b"secret")
        )
    )

    with pytest.raises(ConfigurationError, match="p12_password"):
        xc.XcClient(TENANT_URL, p12_path=str(p12), p12_password="wrong")


def test_p12_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="p12_path"):
        xc.XcClient(TENANT_URL, p12_path=str(tmp_path / "missing.p12"))
