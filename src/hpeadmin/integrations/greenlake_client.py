"""HPE GreenLake Platform (GLP) / Compute Ops Management (COM) connector.

Purpose
- Provide a small, testable wrapper around authenticated GLP and COM REST calls.
- Keep OAuth token handling (load/save/fetch) in one place.
- Resolve regional COM endpoints against a process-wide region list.

This module knows nothing about subscriptions or external services; the
use-case modules build URIs and payloads and call `request` / `get_all`.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import requests

from src.hpeadmin.config.settings import (
    DEFAULT_COM_REGIONS,
    DEFAULT_GLP_BASE_URL,
    DEFAULT_TOKEN_URL,
    HPEAdminSettings,
    load_settings,
)
from src.hpeadmin.integrations.errors import (
    GreenLakeHTTPError,
    InvalidRegionError,
    SessionError,
)

logger = logging.getLogger(__name__)

# Refetch a cached token this many seconds before it actually expires.
TOKEN_EXPIRY_SKEW_SECONDS = 60


def com_base_url(region: str) -> str:
    return f"https://{region}-api.compute.cloud.hpe.com"


@dataclass(slots=True)
class GreenLakeTokens:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    saved_at_unix: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_in is None or self.saved_at_unix is None:
            return False
        now = time.time() if now is None else now
        return now >= self.saved_at_unix + self.expires_in - TOKEN_EXPIRY_SKEW_SECONDS


class GreenLakeClient:
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        tokens_path: str,
        glp_base_url: str = DEFAULT_GLP_BASE_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        com_regions: tuple[str, ...] | list[str] = DEFAULT_COM_REGIONS,
        workspace_id: str | None = None,
        timeout_seconds: int = 30,
        page_limit: int = 100,
        debug: bool = False,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._tokens_path = tokens_path
        self._glp_base_url = glp_base_url.rstrip("/")
        self._token_url = token_url
        self._com_regions = list(com_regions)
        self.workspace_id = workspace_id
        self._timeout_seconds = timeout_seconds
        self._page_limit = page_limit
        self._debug = debug
        self._tokens: GreenLakeTokens | None = None

    @classmethod
    def from_settings(cls, settings: HPEAdminSettings) -> "GreenLakeClient":
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            tokens_path=settings.tokens_path,
            glp_base_url=settings.glp_base_url,
            token_url=settings.token_url,
            com_regions=settings.com_regions,
            workspace_id=settings.workspace_id,
            timeout_seconds=settings.timeout_seconds,
            page_limit=settings.page_limit,
            debug=settings.debug,
        )

    @classmethod
    def from_env(cls) -> "GreenLakeClient":
        return cls.from_settings(load_settings())

    # ------------------------------------------------------------------
    # Region registry
    # ------------------------------------------------------------------

    @property
    def com_regions(self) -> list[str]:
        return list(self._com_regions)

    def validate_region(self, region: str) -> str:
        if not region or region not in self._com_regions:
            raise InvalidRegionError(region, self._com_regions)
        return region

    def describe_url(self, uri: str, region: str | None = None) -> str:
        if uri.startswith("http://") or uri.startswith("https://"):
            return uri
        if region is None:
            return f"{self._glp_base_url}{uri}"
        return f"{com_base_url(self.validate_region(region))}{uri}"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def load_tokens(self) -> GreenLakeTokens | None:
        if not os.path.exists(self._tokens_path):
            return None
        with open(self._tokens_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        if not raw.get("access_token"):
            return None
        return GreenLakeTokens(
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            expires_in=raw.get("expires_in"),
            saved_at_unix=raw.get("saved_at_unix"),
        )

    def save_tokens(self, tokens: GreenLakeTokens) -> None:
        payload: dict[str, Any] = {
            "access_token": tokens.access_token,
            "token_type": tokens.token_type,
            "expires_in": tokens.expires_in,
            "saved_at_unix": tokens.saved_at_unix or int(time.time()),
        }
        with open(self._tokens_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

    def fetch_tokens(self) -> GreenLakeTokens:
        """Run the OAuth2 client-credentials grant and persist the result."""

        if not self._client_id or not self._client_secret:
            raise SessionError(
                "No active session: set HPE_CLIENT_ID and HPE_CLIENT_SECRET (API client credentials)."
            )

        resp = requests.post(
            self._token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
            headers={"Accept": "application/json"},
            timeout=self._timeout_seconds,
        )
        if resp.status_code >= 400:
            raise SessionError(f"Token request failed: HTTP {resp.status_code}: {resp.text}")

        raw = resp.json()
        if not raw.get("access_token"):
            raise SessionError("Token request failed (missing access_token)")

        tokens = GreenLakeTokens(
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            expires_in=raw.get("expires_in"),
            saved_at_unix=int(time.time()),
        )
        self.save_tokens(tokens)
        logger.info(
            "Fetched new GreenLake access token (workspace=%s, expires_in=%s)",
            self.workspace_id or "-",
            tokens.expires_in,
        )
        return tokens

    def _current_tokens(self) -> GreenLakeTokens:
        if self._tokens is None:
            self._tokens = self.load_tokens()
        if self._tokens is None or self._tokens.is_expired():
            self._tokens = self.fetch_tokens()
        return self._tokens

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        bearer_token: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
        content_type: str = "application/json",
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {bearer_token}",
            "Accept": "application/json",
        }
        data = None
        if body is not None:
            headers["Content-Type"] = content_type
            data = json.dumps(body)

        resp = requests.request(
            method,
            url,
            headers=headers,
            params=params,
            data=data,
            timeout=self._timeout_seconds,
        )

        # Only method + URL; never headers.
        if self._debug:
            logger.debug("[HPE_DEBUG] %s %s -> %s", method, url, resp.status_code)

        if resp.status_code >= 400:
            raise GreenLakeHTTPError(resp.status_code, resp.text, method=method, url=url)
        if resp.status_code == 204 or not (resp.text or "").strip():
            return None
        return resp.json()

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
        """Send one authenticated request.

        `uri` is relative to the GLP base when `region` is None and to the
        regional COM base otherwise. A 401 triggers one token refetch + retry.
        """

        url = self.describe_url(uri, region)
        tokens = self._current_tokens()
        try:
            return self._request_json(
                method,
                url,
                bearer_token=tokens.access_token,
                params=params,
                body=body,
                content_type=content_type,
            )
        except GreenLakeHTTPError as e:
            if e.status_code != 401:
                raise
            logger.info("Access token rejected for %s %s; fetching a new one", method, url)
            self._tokens = self.fetch_tokens()
            return self._request_json(
                method,
                url,
                bearer_token=self._tokens.access_token,
                params=params,
                body=body,
                content_type=content_type,
            )

    def get_all(
        self,
        uri: str,
        *,
        region: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """GET a list endpoint, following offset/limit pagination.

        Accepts both bare JSON arrays and the `{"items": [...], "total": N}`
        envelope used by GLP and COM.
        """

        collected: list[dict[str, Any]] = []
        offset = 0
        while True:
            page_params = dict(params or {})
            page_params.setdefault("limit", self._page_limit)
            page_params["offset"] = offset

            resp = self.request("GET", uri, region=region, params=page_params)
            if resp is None:
                return collected
            if isinstance(resp, list):
                return resp
            if not isinstance(resp, dict):
                return collected

            items = resp.get("items")
            if items is None:
                return [resp]
            if isinstance(items, dict):
                items = [items]

            collected.extend(items)
            total = resp.get("total")
            if not items or len(items) < int(page_params["limit"]):
                return collected
            if total is not None and len(collected) >= int(total):
                return collected
            offset += len(items)
