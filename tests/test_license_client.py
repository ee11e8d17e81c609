import json

import httpx
import pytest

from fulfillment.errors import LicenseServiceError
from fulfillment.licenses.client import LicenseServiceClient, pick_expires_at, pick_license_key


def client_for(handler, **kwargs):
    return LicenseServiceClient(
        base_url="https://licenses.test/",
        token="secret",
        timeout=2,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_issue_posts_payload_with_bearer_token():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "license_key": "ABC-123"})

    grant = client_for(handler).issue({"nom": "Lovelace", "duration": 1})

    assert grant.license_key == "ABC-123"
    assert grant.expires_at is None
    assert seen["url"] == "https://licenses.test/api/licenses/issue"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"nom": "Lovelace", "duration": 1}


def test_issue_reads_nested_camel_case_fields():
    def handler(request):
        return httpx.Response(200, json={
            "data": {"licenseKey": "XYZ", "expiresAt": "2030-01-01T00:00:00Z"},
        })

    grant = client_for(handler).issue({})

    assert grant.license_key == "XYZ"
    assert grant.expires_at.year == 2030
    assert grant.expires_at.utcoffset().total_seconds() == 0


@pytest.mark.parametrize("body", [
    {"ok": False, "license_key": "ABC"},
    {"ok": True},
    {"message": "created"},
])
def test_issue_rejected(body):
    client = client_for(lambda request: httpx.Response(200, json=body))
    with pytest.raises(LicenseServiceError):
        client.issue({})


def test_http_error_becomes_license_error():
    client = client_for(lambda request: httpx.Response(503, text="maintenance"))
    with pytest.raises(LicenseServiceError, match="503"):
        client.issue({})


def test_timeout_becomes_license_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(LicenseServiceError, match="timed out"):
        client_for(handler).issue({})


def test_connect_error_becomes_license_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LicenseServiceError, match="unreachable"):
        client_for(handler).renew({"license_key": "K"})


def test_invalid_json_becomes_license_error():
    client = client_for(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(LicenseServiceError, match="invalid JSON"):
        client.issue({})


def test_missing_base_url():
    client = LicenseServiceClient(base_url="", token="")
    with pytest.raises(LicenseServiceError, match="not configured"):
        client.issue({})


def test_renew_keeps_key_when_response_omits_it():
    client = client_for(lambda request: httpx.Response(200, json={"renewed": True}))

    grant = client.renew({"license_key": "KEY-1", "duration": 1, "unit": "months"})

    assert grant.license_key == "KEY-1"


def test_renew_accepts_expiry_as_success_marker():
    client = client_for(lambda request: httpx.Response(200, json={"expires_at": "2031-06-30T10:00:00+00:00"}))

    grant = client.renew({"license_key": "KEY-1"})

    assert grant.expires_at.month == 6


def test_renew_rejected():
    client = client_for(lambda request: httpx.Response(200, json={"success": False, "expires_at": "2031-01-01"}))
    with pytest.raises(LicenseServiceError):
        client.renew({"license_key": "KEY-1"})


def test_readers_tolerate_garbage():
    assert pick_license_key({}) == ""
    assert pick_expires_at({"expires_at": "not a date"}) is None
