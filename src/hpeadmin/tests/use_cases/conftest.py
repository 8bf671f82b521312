from __future__ import annotations

from typing import Any

import pytest

from src.hpeadmin.integrations.errors import InvalidRegionError


class StubClient:
    """In-memory stand-in for GreenLakeClient.

    `collections` maps a URI to the list `get_all` returns (or a callable
    taking `params` that returns it). `responses` maps `(method, uri)` to the
    value `request` returns, an exception to raise, or a callable taking
    `(body, params)`.
    """

    def __init__(
        self,
        *,
        collections: dict[str, Any] | None = None,
        responses: dict[tuple[str, str], Any] | None = None,
        regions: tuple[str, ...] = ("us-west", "eu-central"),
    ) -> None:
        self.collections = collections or {}
        self.responses = responses or {}
        self.regions = list(regions)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def validate_region(self, region: str) -> str:
        if region not in self.regions:
            raise InvalidRegionError(region, self.regions)
        return region

    def describe_url(self, uri: str, region: str | None = None) -> str:
        base = f"https://{region}-api.compute.cloud.hpe.com" if region else "https://global.api.greenlake.hpe.com"
        return f"{base}{uri}"

    def get_all(self, uri: str, *, region: str | None = None, params: dict[str, Any] | None = None) -> list:
        self.calls.append(("GET_ALL", uri, {"region": region, "params": params}))
        value = self.collections.get(uri, [])
        if callable(value):
            value = value(params)
        return [dict(v) for v in value]

    def request(
        self,
        method: str,
        uri: str,
        *,
        body: Any = None,
        content_type: str = "application/json",
        region: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        self.calls.append(
            (method, uri, {"body": body, "content_type": content_type, "region": region, "params": params})
        )
        value = self.responses.get((method, uri))
        if callable(value):
            value = value(body, params)
        if isinstance(value, Exception):
            raise value
        return value

    def mutations(self) -> list[tuple[str, str, dict[str, Any]]]:
        return [c for c in self.calls if c[0] not in ("GET_ALL", "GET")]


@pytest.fixture
def stub_client_cls():
    return StubClient


class _Sleeper:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep():
    return _Sleeper()
