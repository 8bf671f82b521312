"""Compute Ops Management external services (ServiceNow, DSCC).

External services are regional COM resources. Deploying one and testing
one both complete asynchronously: the create/test call returns right away
and the result only shows up later on the service record (`state`) or in
the activity log. Both are polled at a fixed 1-second interval.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field

from src.hpeadmin.integrations.errors import extract_error_details
from src.hpeadmin.use_cases.bulk_status import BATCH_ERRORS, BulkStatusTracker, emit_whatif
from src.hpeadmin.use_cases.polling import POLL_INTERVAL_SECONDS, poll_until
from src.hpeadmin.use_cases.records import parse_timestamp, tag_records, utc_now

logger = logging.getLogger(__name__)

EXTERNAL_SERVICES_URI = "/compute-ops-mgmt/v1beta1/external-services"
ACTIVITIES_URI = "/compute-ops-mgmt/v1beta1/activities"
EXTERNAL_SERVICE_TYPE_NAME = "HPECOM.ExternalService"

SERVICE_TYPE_SERVICENOW = "SERVICE_NOW"
SERVICE_TYPE_DSCC = "DSCC"
SERVICE_TYPES = (SERVICE_TYPE_SERVICENOW, SERVICE_TYPE_DSCC)

STATE_ENABLED = "ENABLED"

# ServiceNow's default refresh token lifespan.
DEFAULT_REFRESH_TOKEN_EXPIRES_IN_DAYS = 100
_SECONDS_PER_DAY = 86400

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ServiceNowServiceData(_CamelModel):
    incident_url: str | None = Field(default=None, alias="incidentUrl")
    oauth_url: str | None = Field(default=None, alias="oauthUrl")
    refresh_token_expires_in: int | None = Field(default=None, alias="refreshTokenExpiresIn")


class DSCCServiceData(_CamelModel):
    region: str


class ExternalServiceAuthentication(_CamelModel):
    client_id: str | None = Field(default=None, alias="clientId")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class ExternalServicePayload(_CamelModel):
    name: str
    description: str | None = None
    service_type: str = Field(alias="serviceType")
    authentication_type: str = Field(default="OAUTH", alias="authenticationType")
    service_data: ServiceNowServiceData | DSCCServiceData | None = Field(default=None, alias="serviceData")
    authentication: ExternalServiceAuthentication | None = None


class ExternalServiceUpdate(_CamelModel):
    name: str | None = None
    description: str | None = None
    service_data: ServiceNowServiceData | None = Field(default=None, alias="serviceData")
    authentication: ExternalServiceAuthentication | None = None


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


def _list_services(client: Any, region: str) -> list[dict[str, Any]]:
    return client.get_all(EXTERNAL_SERVICES_URI, region=region)


def _find_by_name(client: Any, region: str, name: str) -> dict[str, Any] | None:
    for svc in _list_services(client, region):
        if str(svc.get("name") or "").lower() == name.lower():
            return svc
    return None


def get_external_services(
    client: Any,
    region: str,
    *,
    name: str | None = None,
    service_type: str | None = None,
) -> list[dict[str, Any]]:
    """List external services in a COM region, optionally filtered by name or type."""

    client.validate_region(region)
    if service_type and service_type.upper() not in SERVICE_TYPES:
        raise ValueError(f"Unknown service type '{service_type}'. Valid types: {', '.join(SERVICE_TYPES)}")

    services = _list_services(client, region)
    if name:
        services = [s for s in services if str(s.get("name") or "").lower() == name.lower()]
    if service_type:
        services = [s for s in services if str(s.get("serviceType") or "").upper() == service_type.upper()]
    services = sorted(services, key=lambda s: str(s.get("name") or "").lower())
    return tag_records(services, EXTERNAL_SERVICE_TYPE_NAME)


# ---------------------------------------------------------------------------
# Deploy
# ---------------------------------------------------------------------------


def _deploy(
    client: Any,
    region: str,
    payload: ExternalServicePayload,
    *,
    dry_run: bool,
    poll_timeout_seconds: float | None,
    sleep: Callable[[float], None],
) -> list[dict[str, Any]] | None:
    tracker = BulkStatusTracker(identifier_field="name", operation="deploy external service")
    item = tracker.accept(payload.name)
    if item is None:
        raise ValueError("name is required")

    services = _list_services(client, region)
    same_name = [s for s in services if str(s.get("name") or "").lower() == payload.name.lower()]
    same_dscc = [
        s for s in services
        if payload.service_type == SERVICE_TYPE_DSCC and str(s.get("serviceType") or "").upper() == SERVICE_TYPE_DSCC
    ]
    if same_name:
        tracker.warn(item, "External service already exists in the region! No action needed.")
    elif same_dscc:
        tracker.warn(
            item,
            f"A DSCC integration already exists in the region ('{same_dscc[0].get('name')}'). Only one is allowed.",
        )

    body = payload.to_body()

    if dry_run:
        if item.is_pending:
            emit_whatif("POST", client.describe_url(EXTERNAL_SERVICES_URI, region), body)
        return None

    def send(batch: list) -> None:
        client.request("POST", EXTERNAL_SERVICES_URI, body=body, region=region)
        poll_until(
            lambda: _find_by_name(client, region, payload.name),
            lambda svc: svc is not None and str(svc.get("state") or "").upper() == STATE_ENABLED,
            description=f"waiting for external service '{payload.name}' to be enabled",
            interval_seconds=POLL_INTERVAL_SECONDS,
            timeout_seconds=poll_timeout_seconds,
            sleep=sleep,
        )

    tracker.submit_batch(
        send,
        success_detail="External service successfully deployed and enabled.",
        failure_detail="External service cannot be deployed!",
    )
    return tracker.results()


def new_servicenow_integration(
    client: Any,
    region: str,
    *,
    name: str,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    oauth_url: str,
    incident_url: str,
    description: str | None = None,
    refresh_token_expires_in_days: int = DEFAULT_REFRESH_TOKEN_EXPIRES_IN_DAYS,
    dry_run: bool = False,
    poll_timeout_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict[str, Any]] | None:
    """Deploy a ServiceNow integration and wait until COM reports it ENABLED.

    The wait has no upper bound unless `poll_timeout_seconds` is given.
    """

    client.validate_region(region)
    payload = ExternalServicePayload(
        name=name,
        description=description,
        service_type=SERVICE_TYPE_SERVICENOW,
        service_data=ServiceNowServiceData(
            incident_url=incident_url,
            oauth_url=oauth_url,
            refresh_token_expires_in=refresh_token_expires_in_days * _SECONDS_PER_DAY,
        ),
        authentication=ExternalServiceAuthentication(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
        ),
    )
    return _deploy(
        client,
        region,
        payload,
        dry_run=dry_run,
        poll_timeout_seconds=poll_timeout_seconds,
        sleep=sleep,
    )


def new_dscc_integration(
    client: Any,
    region: str,
    *,
    name: str,
    dscc_region: str,
    client_id: str,
    client_secret: str,
    description: str | None = None,
    dry_run: bool = False,
    poll_timeout_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict[str, Any]] | None:
    """Deploy a Data Services Cloud Console integration (one per COM region)."""

    client.validate_region(region)
    payload = ExternalServicePayload(
        name=name,
        description=description,
        service_type=SERVICE_TYPE_DSCC,
        service_data=DSCCServiceData(region=dscc_region),
        authentication=ExternalServiceAuthentication(client_id=client_id, client_secret=client_secret),
    )
    return _deploy(
        client,
        region,
        payload,
        dry_run=dry_run,
        poll_timeout_seconds=poll_timeout_seconds,
        sleep=sleep,
    )


# ---------------------------------------------------------------------------
# Update / remove
# ---------------------------------------------------------------------------


def _drop_unchanged(body: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    changed: dict[str, Any] = {}
    for k, v in body.items():
        if k == "authentication":
            # Secrets are write-only; always resend.
            changed[k] = v
        elif isinstance(v, dict):
            nested = _drop_unchanged(v, current.get(k) or {})
            if nested:
                changed[k] = nested
        elif current.get(k) != v:
            changed[k] = v
    return changed


def set_external_service(
    client: Any,
    region: str,
    name: str,
    *,
    new_name: str | None = None,
    description: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
    refresh_token: str | None = None,
    incident_url: str | None = None,
    refresh_token_expires_in_days: int | None = None,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Update an external service's name, description, endpoint or credentials."""

    client.validate_region(region)

    service_data = ServiceNowServiceData(
        incident_url=incident_url,
        refresh_token_expires_in=(
            refresh_token_expires_in_days * _SECONDS_PER_DAY if refresh_token_expires_in_days is not None else None
        ),
    )
    auth = ExternalServiceAuthentication(client_id=client_id, client_secret=client_secret, refresh_token=refresh_token)
    update = ExternalServiceUpdate(
        name=new_name,
        description=description,
        service_data=service_data if service_data.to_body() else None,
        authentication=auth if auth.to_body() else None,
    )
    requested = update.to_body()
    if not requested:
        raise ValueError("Nothing to update: pass at least one property to change")

    tracker = BulkStatusTracker(identifier_field="name", operation="update external service")
    item = tracker.accept(name)
    if item is None:
        raise ValueError("name is required")

    svc = _find_by_name(client, region, name)
    if svc is None:
        tracker.fail(item, "External service cannot be found in the region!")
        return None if dry_run else tracker.results()

    body = _drop_unchanged(requested, svc)
    if not body:
        tracker.warn(item, "External service already has the requested settings! No action needed.")
    elif svc.get("serviceType") == SERVICE_TYPE_DSCC and ("serviceData" in body or "refreshToken" in (body.get("authentication") or {})):
        tracker.fail(item, "ServiceNow settings cannot be applied to a DSCC integration.")

    uri = f"{EXTERNAL_SERVICES_URI}/{svc['id']}"

    if dry_run:
        if item.is_pending:
            emit_whatif("PATCH", client.describe_url(uri, region), body)
        return None

    tracker.submit_batch(
        lambda batch: client.request(
            "PATCH", uri, body=body, content_type=MERGE_PATCH_CONTENT_TYPE, region=region
        ),
        success_detail="External service successfully updated.",
        failure_detail="External service cannot be updated!",
    )
    return tracker.results()


def remove_external_services(
    client: Any,
    region: str,
    names: Iterable[str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Delete external services by name."""

    client.validate_region(region)

    tracker = BulkStatusTracker(identifier_field="name", operation="remove external service")
    items = tracker.accept_all(names)
    if not items:
        return None if dry_run else tracker.results()

    by_name = {str(s.get("name") or "").lower(): s for s in _list_services(client, region)}

    targets: dict[str, str] = {}
    seen: set[str] = set()
    for item in items:
        svc = by_name.get(item.identifier.lower())
        if svc is None:
            tracker.warn(item, "External service cannot be found in the region! No action needed.")
            continue
        if item.identifier.lower() in seen:
            tracker.warn(item, "Name is listed more than once; it is only removed once.")
            continue
        seen.add(item.identifier.lower())
        targets[item.identifier] = f"{EXTERNAL_SERVICES_URI}/{svc['id']}"

    if dry_run:
        for item in tracker.pending():
            emit_whatif("DELETE", client.describe_url(targets[item.identifier], region))
        return None

    tracker.submit_each(
        lambda item: client.request("DELETE", targets[item.identifier], region=region),
        success_detail="External service successfully removed.",
        failure_detail="External service cannot be removed!",
    )
    return tracker.results()


# ---------------------------------------------------------------------------
# Test
# ---------------------------------------------------------------------------


def _newest_activity(
    client: Any, region: str, resource_uri: str, *, since: datetime
) -> dict[str, Any] | None:
    resp = client.request(
        "GET",
        ACTIVITIES_URI,
        region=region,
        params={"filter": f"source/resourceUri eq '{resource_uri}'", "sort": "createdAt desc", "limit": 10},
    )
    items = resp.get("items") if isinstance(resp, dict) else resp
    newest: tuple[datetime, dict[str, Any]] | None = None
    for a in items or []:
        source = a.get("source") or {}
        if source.get("resourceUri") != resource_uri:
            continue
        created = parse_timestamp(a.get("createdAt"))
        if created is None or created <= since:
            continue
        if newest is None or created > newest[0]:
            newest = (created, a)
    return newest[1] if newest else None


def _activity_failed(activity: dict[str, Any]) -> bool:
    text = f"{activity.get('key') or ''} {activity.get('status') or ''}".upper()
    return "FAIL" in text or "ERROR" in text


def run_external_service_test(
    client: Any,
    region: str,
    name: str,
    *,
    dry_run: bool = False,
    poll_timeout_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], datetime] = utc_now,
) -> list[dict[str, Any]] | None:
    """Trigger a connectivity test and wait for its activity-log record.

    The newest activity for the service created after the test call was sent
    decides the outcome.
    """

    client.validate_region(region)

    tracker = BulkStatusTracker(identifier_field="name", operation="test external service")
    item = tracker.accept(name)
    if item is None:
        raise ValueError("name is required")

    svc = _find_by_name(client, region, name)
    if svc is None:
        tracker.fail(item, "External service cannot be found in the region!")
        return None if dry_run else tracker.results()

    uri = f"{EXTERNAL_SERVICES_URI}/{svc['id']}"
    resource_uri = svc.get("resourceUri") or uri

    if dry_run:
        emit_whatif("POST", client.describe_url(f"{uri}/test", region))
        return None

    started = now()
    try:
        client.request("POST", f"{uri}/test", region=region)
        activity = poll_until(
            lambda: _newest_activity(client, region, resource_uri, since=started),
            lambda a: a is not None,
            description=f"waiting for test result of external service '{name}'",
            interval_seconds=POLL_INTERVAL_SECONDS,
            timeout_seconds=poll_timeout_seconds,
            sleep=sleep,
        )
    except BATCH_ERRORS as e:
        err = extract_error_details(e)
        logger.warning("Test of external service '%s' could not complete: %s", name, err.message)
        tracker.fail(item, "External service test cannot be run!", cause=err.as_dict())
        return tracker.results()

    message = activity.get("formattedMessage") or activity.get("title") or activity.get("key") or ""
    if _activity_failed(activity):
        tracker.fail(item, f"External service test failed: {message}", cause={"activity": activity.get("key")})
    else:
        tracker.complete(item, f"External service test succeeded: {message}")
    return tracker.results()
