from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from src.hpeadmin.integrations.errors import GreenLakeHTTPError, InvalidRegionError, SessionError
from src.hpeadmin.integrations.greenlake_client import GreenLakeClient, GreenLakeTokens


class _FakeResp:
    def __init__(self, status_code: int, payload, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if text is None else text

    def json(self):
        return self._payload


def _client(tmp_path, **kwargs) -> GreenLakeClient:
    tokens_path = tmp_path / "tokens.json"
    tokens_path.write_text(json.dumps({"access_token": "ok", "token_type": "Bearer"}))
    defaults = dict(
        client_id="cid",
        client_secret="secret",
        tokens_path=str(tokens_path),
        com_regions=("us-west", "eu-central"),
        page_limit=2,
    )
    defaults.update(kwargs)
    return GreenLakeClient(**defaults)


def test_request_refetches_token_on_401(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)
    seen_auth: list[str] = []

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        seen_auth.append(headers["Authorization"])
        if len(seen_auth) == 1:
            return _FakeResp(401, {"message": "expired"})
        return _FakeResp(200, {"items": [], "total": 0})

    monkeypatch.setattr("requests.request", fake_request)
    monkeypatch.setattr(client, "fetch_tokens", lambda: GreenLakeTokens(access_token="fresh"))

    resp = client.request("GET", "/subscriptions/v1/subscriptions")
    assert resp == {"items": [], "total": 0}
    assert seen_auth == ["Bearer ok", "Bearer fresh"]


def test_request_raises_http_error_with_status(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        return _FakeResp(404, {"message": "not found"})

    monkeypatch.setattr("requests.request", fake_request)

    with pytest.raises(GreenLakeHTTPError) as exc:
        client.request("DELETE", "/subscriptions/v1/subscriptions/abc")
    assert exc.value.status_code == 404
    assert exc.value.method == "DELETE"
    assert exc.value.url.endswith("/subscriptions/v1/subscriptions/abc")


def test_request_sends_json_body_with_content_type(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)
    seen = SimpleNamespace(url=None, headers=None, params=None, data=None)

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        seen.url = url
        seen.headers = headers
        seen.params = params
        seen.data = data
        return _FakeResp(204, None, text="")

    monkeypatch.setattr("requests.request", fake_request)

    resp = client.request(
        "PATCH",
        "/devices/v1/devices",
        params={"id": "d1,d2"},
        body={"subscription": []},
        content_type="application/merge-patch+json",
    )
    assert resp is None
    assert seen.url == "https://global.api.greenlake.hpe.com/devices/v1/devices"
    assert seen.headers["Content-Type"] == "application/merge-patch+json"
    assert seen.params == {"id": "d1,d2"}
    assert json.loads(seen.data) == {"subscription": []}


def test_request_uses_regional_com_base(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)
    seen = SimpleNamespace(url=None)

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        seen.url = url
        return _FakeResp(200, {"items": []})

    monkeypatch.setattr("requests.request", fake_request)

    client.request("GET", "/compute-ops-mgmt/v1beta1/external-services", region="eu-central")
    assert seen.url == "https://eu-central-api.compute.cloud.hpe.com/compute-ops-mgmt/v1beta1/external-services"


def test_unknown_region_is_rejected_before_any_request(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)

    def fake_request(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr("requests.request", fake_request)

    with pytest.raises(InvalidRegionError) as exc:
        client.request("GET", "/compute-ops-mgmt/v1beta1/external-services", region="mars")
    assert exc.value.valid_regions == ["us-west", "eu-central"]
    assert isinstance(exc.value, SessionError)


def test_get_all_follows_offset_pagination(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)
    pages = {
        0: {"items": [{"id": "a"}, {"id": "b"}], "total": 3},
        2: {"items": [{"id": "c"}], "total": 3},
    }
    offsets: list[int] = []

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        offsets.append(params["offset"])
        assert params["limit"] == 2
        assert params["filter"] == "key eq 'K1'"
        return _FakeResp(200, pages[params["offset"]])

    monkeypatch.setattr("requests.request", fake_request)

    items = client.get_all("/subscriptions/v1/subscriptions", params={"filter": "key eq 'K1'"})
    assert [i["id"] for i in items] == ["a", "b", "c"]
    assert offsets == [0, 2]


def test_get_all_accepts_bare_list(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)

    def fake_request(method, url, headers=None, params=None, data=None, timeout=None):
        return _FakeResp(200, [{"id": "x"}])

    monkeypatch.setattr("requests.request", fake_request)

    assert client.get_all("/anything") == [{"id": "x"}]


def test_fetch_tokens_requires_credentials(tmp_path) -> None:
    client = _client(tmp_path, client_id=None)
    with pytest.raises(SessionError):
        client.fetch_tokens()


def test_fetch_tokens_saves_token_file(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)
    seen = SimpleNamespace(url=None, data=None)

    def fake_post(url, data=None, headers=None, timeout=None):
        seen.url = url
        seen.data = data
        return _FakeResp(200, {"access_token": "new", "token_type": "Bearer", "expires_in": 7200})

    monkeypatch.setattr("requests.post", fake_post)

    tokens = client.fetch_tokens()
    assert tokens.access_token == "new"
    assert seen.url == "https://sso.common.cloud.hpe.com/as/token.oauth2"
    assert seen.data["grant_type"] == "client_credentials"

    saved = json.loads((tmp_path / "tokens.json").read_text())
    assert saved["access_token"] == "new"
    assert saved["expires_in"] == 7200


def test_fetch_tokens_failure_raises_session_error(monkeypatch, tmp_path) -> None:
    client = _client(tmp_path)

    def fake_post(url, data=None, headers=None, timeout=None):
        return _FakeResp(401, {"error": "invalid_client"})

    monkeypatch.setattr("requests.post", fake_post)

    with pytest.raises(SessionError):
        client.fetch_tokens()


def test_tokens_expire_with_skew() -> None:
    tokens = GreenLakeTokens(access_token="t", expires_in=7200, saved_at_unix=1000)
    assert tokens.is_expired(now=1000 + 7200 - 61) is False
    assert tokens.is_expired(now=1000 + 7200 - 60) is True
    assert GreenLakeTokens(access_token="t").is_expired(now=10**12) is False
