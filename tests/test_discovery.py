import json

import pytest
import requests

from acme_xc_certificates import discovery
from acme_xc_certificates.exceptions import TransientNetworkError
from conftest import TENANT_URL


def _lb(name, domains, **spec):
    base = {"https": {}, "advertise_on_public_default_vip": {}}
    base.update(spec)
    base["domains"] = domains
    return {"name": name, "get_spec": {k: v for k, v in base.items() if v is not None}}


def _lb_url(namespace):
    return f"{TENANT_URL}/api/config/namespaces/{namespace}/http_loadbalancers?report_fields"


def test_is_eligible():
    assert discovery.is_eligible(_lb("lb", ["a.example.com"]))
    assert discovery.is_eligible(
        _lb("lb", ["a.example.com"], advertise_on_public_default_vip=None, advertise_on_public={})
    )


def test_is_eligible_rejects_auto_cert_and_http():
    assert not discovery.is_eligible(_lb("lb", ["a.example.com"], https=None, https_auto_cert={}))
    assert not discovery.is_eligible(_lb("lb", ["a.example.com"], https=None, http={}))
    assert not discovery.is_eligible(_lb("lb", ["a.example.com"], https_auto_cert={}))


def test_is_eligible_rejects_private():
    assert not discovery.is_eligible(_lb("lb", ["a.example.com"], advertise_on_public_default_vip=None))
    assert not discovery.is_eligible({"name": "lb"})


def test_matches_filter():
    assert discovery.matches_filter(["a.example.com"], None)
    assert discovery.matches_filter(["a.example.com", "example.com"], ["example.com"])
    assert not discovery.matches_filter(["a.example.com", "b.example.org"], ["example.com"])
    assert not discovery.matches_filter(["notexample.com"], ["example.com"])


def test_discover_load_balancers(xc_client, requests_mock):
    requests_mock.get(
        _lb_url("shop"),
        json={
            "items": [
                _lb("lb-web", ["www.example.com", "example.com"]),
                _lb("lb-auto", ["auto.example.com"], https=None, https_auto_cert={}),
                _lb("lb-other", ["app.example.org"]),
                _lb("lb-empty", []),
            ]
        },
    )
    requests_mock.get(_lb_url("blog"), json={"items": [_lb("lb-blog", ["blog.example.com"])]})

    targets = discovery.discover_load_balancers(xc_client, ["shop", "blog", " "], ["example.com"])

    assert list(targets) == ["blog/lb-blog", "shop/lb-web"]
    assert targets["shop/lb-web"].domains == ["www.example.com", "example.com"]


def test_discover_skips_failed_namespace(xc_client, requests_mock):
    requests_mock.get(_lb_url("shop"), status_code=403)
    requests_mock.get(_lb_url("blog"), json={"items": [_lb("lb-blog", ["blog.example.com"])]})

    targets = discovery.discover_load_balancers(xc_client, ["shop", "blog"])

    assert list(targets) == ["blog/lb-blog"]


def test_discover_all_namespaces_fail(xc_client, requests_mock):
    requests_mock.get(_lb_url("shop"), exc=requests.exceptions.ConnectionError)
    requests_mock.get(_lb_url("blog"), status_code=500)

    with pytest.raises(TransientNetworkError, match="2 namespace"):
        discovery.discover_load_balancers(xc_client, ["shop", "blog"])


def test_write_and_load_discovery(tmp_path):
    path = tmp_path / "certificates.auto.tfvars.json"
    targets = {
        "shop/lb-web": discovery.DiscoveredTarget("shop", "lb-web", ["www.example.com"]),
        "blog/lb-blog": discovery.DiscoveredTarget("blog", "lb-blog", ["blog.example.com"]),
    }

    discovery.write_discovery(path, targets)

    data = json.loads(path.read_text())
    assert list(data[discovery.DISCOVERY_KEY]) == ["blog/lb-blog", "shop/lb-web"]
    assert data[discovery.DISCOVERY_KEY]["shop/lb-web"] == {
        "namespace": "shop",
        "name": "lb-web",
        "domains": ["www.example.com"],
    }
    assert discovery.load_discovery(path) == targets
