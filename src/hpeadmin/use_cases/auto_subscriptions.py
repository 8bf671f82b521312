"""Workspace auto-subscription policy (per device type).

When enabled for a device type, GreenLake attaches a subscription of the
configured tier to new devices of that type automatically.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from src.hpeadmin.use_cases.bulk_status import BulkStatusTracker, emit_whatif
from src.hpeadmin.use_cases.records import tag_records

logger = logging.getLogger(__name__)

AUTO_SUBSCRIPTION_URI = "/ui-doorway/ui/v1/license/autolicense"
AUTO_SUBSCRIPTION_TYPE_NAME = "HPEGreenLake.AutoSubscription"

# Device type -> tiers accepted by the auto-subscription policy.
AUTO_SUBSCRIPTION_TIERS: dict[str, tuple[str, ...]] = {
    "AP": ("FOUNDATION_AP", "ADVANCED_AP"),
    "SWITCH": ("FOUNDATION_SWITCH", "ADVANCED_SWITCH"),
    "GATEWAY": ("FOUNDATION_GW", "ADVANCED_GW"),
    "COMPUTE": ("STANDARD_PROLIANT", "ENHANCED_PROLIANT"),
}


class AutoSubscriptionEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_type: str
    enabled: bool
    tier: str | None = Field(default=None, alias="auto_license_subscription_tier_group")


def _normalize_device_type(device_type: str) -> str:
    dt = device_type.strip().upper()
    if dt not in AUTO_SUBSCRIPTION_TIERS:
        raise ValueError(
            f"Unknown device type '{device_type}'. Valid types: {', '.join(AUTO_SUBSCRIPTION_TIERS)}"
        )
    return dt


def _normalize_tier(device_type: str, tier: str) -> str:
    t = (tier or "").strip().upper()
    allowed = AUTO_SUBSCRIPTION_TIERS[device_type]
    if t not in allowed:
        raise ValueError(f"Tier '{tier}' is not valid for {device_type}. Valid tiers: {', '.join(allowed)}")
    return t


def _fetch_policy(client: Any) -> dict[str, AutoSubscriptionEntry]:
    resp = client.request("GET", AUTO_SUBSCRIPTION_URI) or {}
    raw = resp.get("autolicenses") if isinstance(resp, dict) else resp
    entries = [AutoSubscriptionEntry.model_validate(r) for r in (raw or []) if isinstance(r, dict)]
    logger.debug("Auto-subscription policy has %d device type(s)", len(entries))
    return {e.device_type.upper(): e for e in entries}


def _policy_body(entries: list[AutoSubscriptionEntry]) -> dict[str, Any]:
    return {"autolicenses": [e.model_dump(by_alias=True, exclude_none=True) for e in entries]}


def get_auto_subscription(client: Any) -> list[dict[str, Any]]:
    """Return the auto-subscription policy, one record per device type."""

    policy = _fetch_policy(client)
    records = [e.model_dump(by_alias=True) for _, e in sorted(policy.items())]
    return tag_records(records, AUTO_SUBSCRIPTION_TYPE_NAME)


def set_auto_subscription(
    client: Any,
    tiers: Mapping[str, str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Enable auto-subscription for each device type with the given tier."""

    wanted: dict[str, str] = {}
    for device_type, tier in tiers.items():
        if not device_type or not str(device_type).strip():
            continue
        dt = _normalize_device_type(device_type)
        wanted[dt] = _normalize_tier(dt, tier)

    tracker = BulkStatusTracker(identifier_field="device_type", operation="enable auto-subscription")
    items = tracker.accept_all(tiers.keys())
    if not items:
        return None if dry_run else tracker.results()

    current = _fetch_policy(client)

    seen: set[str] = set()
    for item in items:
        dt = item.identifier.upper()
        entry = current.get(dt)
        if entry is not None and entry.enabled and (entry.tier or "").upper() == wanted[dt]:
            tracker.warn(item, f"Auto-subscription is already enabled for {dt} with tier {wanted[dt]}! No action needed.")
        elif dt in seen:
            tracker.warn(item, "Device type is listed more than once; it is only processed once.")
        seen.add(dt)

    entries = [
        AutoSubscriptionEntry(device_type=i.identifier.upper(), enabled=True, tier=wanted[i.identifier.upper()])
        for i in tracker.pending()
    ]
    body = _policy_body(entries)

    if dry_run:
        if entries:
            emit_whatif("POST", client.describe_url(AUTO_SUBSCRIPTION_URI), body)
        return None

    tracker.submit_batch(
        lambda batch: client.request("POST", AUTO_SUBSCRIPTION_URI, body=body),
        success_detail="Auto-subscription successfully enabled.",
        failure_detail="Auto-subscription cannot be enabled!",
    )
    return tracker.results()


def remove_auto_subscription(
    client: Any,
    device_types: Iterable[str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Disable auto-subscription for each device type."""

    tracker = BulkStatusTracker(identifier_field="device_type", operation="disable auto-subscription")
    items = tracker.accept_all(device_types)
    for item in items:
        _normalize_device_type(item.identifier)
    if not items:
        return None if dry_run else tracker.results()

    current = _fetch_policy(client)

    seen: set[str] = set()
    for item in items:
        dt = item.identifier.upper()
        entry = current.get(dt)
        if entry is None or not entry.enabled:
            tracker.warn(item, f"Auto-subscription is already disabled for {dt}! No action needed.")
        elif dt in seen:
            tracker.warn(item, "Device type is listed more than once; it is only processed once.")
        seen.add(dt)

    entries = [
        AutoSubscriptionEntry(device_type=i.identifier.upper(), enabled=False) for i in tracker.pending()
    ]
    body = _policy_body(entries)

    if dry_run:
        if entries:
            emit_whatif("POST", client.describe_url(AUTO_SUBSCRIPTION_URI), body)
        return None

    tracker.submit_batch(
        lambda batch: client.request("POST", AUTO_SUBSCRIPTION_URI, body=body),
        success_detail="Auto-subscription successfully disabled.",
        failure_detail="Auto-subscription cannot be disabled!",
    )
    return tracker.results()
