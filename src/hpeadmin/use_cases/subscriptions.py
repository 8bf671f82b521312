"""GreenLake workspace subscriptions: list, add keys, remove keys."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from src.hpeadmin.integrations.errors import ErrorDetails
from src.hpeadmin.use_cases.bulk_status import BulkStatusTracker, emit_whatif
from src.hpeadmin.use_cases.records import as_int, parse_timestamp, tag_records, utc_now

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_URI = "/subscriptions/v1/subscriptions"
SUBSCRIPTION_TYPE_NAME = "HPEGreenLake.Subscription"

# The create endpoint accepts at most this many keys per request.
MAX_SUBSCRIPTION_KEYS_PER_REQUEST = 5

PRODUCT_TYPE_DEVICE = "DEVICE"
PRODUCT_TYPE_SERVICE = "SERVICE"


_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _end_time_sort_key(sub: dict[str, Any]) -> tuple[bool, datetime]:
    end = parse_timestamp(sub.get("endTime"))
    return (end is None, end or _FAR_FUTURE)


def filter_subscriptions(
    subscriptions: Iterable[dict[str, Any]],
    *,
    key: str | None = None,
    subscription_type: str | None = None,
    product_type: str | None = None,
    show_valid: bool = False,
    show_expired: bool = False,
    show_with_available_quantity: bool = False,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Apply client-side filters. No network calls."""

    if show_valid and show_expired:
        raise ValueError("show_valid and show_expired are mutually exclusive")

    now = now or utc_now()
    out: list[dict[str, Any]] = []
    for sub in subscriptions:
        if key and str(sub.get("key") or "").lower() != key.lower():
            continue
        if subscription_type and str(sub.get("subscriptionType") or "").lower() != subscription_type.lower():
            continue
        if product_type and str(sub.get("productType") or "").upper() != product_type.upper():
            continue

        if show_valid or show_expired:
            end = parse_timestamp(sub.get("endTime"))
            is_valid = end is not None and end > now
            if show_valid and not is_valid:
                continue
            if show_expired and is_valid:
                continue

        if show_with_available_quantity:
            available = as_int(sub.get("availableQuantity"))
            if available is None or available < 1:
                continue

        out.append(sub)
    return out


def get_subscriptions(
    client: Any,
    *,
    key: str | None = None,
    subscription_type: str | None = None,
    show_device_subscriptions: bool = False,
    show_service_subscriptions: bool = False,
    show_valid: bool = False,
    show_expired: bool = False,
    show_with_available_quantity: bool = False,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """List workspace subscriptions, filtered and sorted by end date."""

    if show_device_subscriptions and show_service_subscriptions:
        raise ValueError("show_device_subscriptions and show_service_subscriptions are mutually exclusive")
    if show_valid and show_expired:
        raise ValueError("show_valid and show_expired are mutually exclusive")

    product_type = None
    if show_device_subscriptions:
        product_type = PRODUCT_TYPE_DEVICE
    elif show_service_subscriptions:
        product_type = PRODUCT_TYPE_SERVICE

    params = {"filter": f"key eq '{key}'"} if key else None
    subscriptions = client.get_all(SUBSCRIPTIONS_URI, params=params)

    filtered = filter_subscriptions(
        subscriptions,
        key=key,
        subscription_type=subscription_type,
        product_type=product_type,
        show_valid=show_valid,
        show_expired=show_expired,
        show_with_available_quantity=show_with_available_quantity,
        now=now,
    )
    logger.debug("Subscriptions: %d fetched, %d after filters", len(subscriptions), len(filtered))
    filtered.sort(key=_end_time_sort_key)
    return tag_records(filtered, SUBSCRIPTION_TYPE_NAME)


def _index_by_key(subscriptions: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    return {str(s.get("key") or "").lower(): s for s in subscriptions if s.get("key")}


def _add_failure_detail(err: ErrorDetails) -> str:
    if err.workspace_name or err.workspace_id:
        where = err.workspace_name or err.workspace_id
        return f"Subscription key cannot be added: it is already claimed by workspace '{where}'."
    return "Subscription key cannot be added to the workspace!"


def add_subscriptions(
    client: Any,
    keys: Iterable[str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Add subscription keys to the workspace in a single request (max 5 keys)."""

    tracker = BulkStatusTracker(identifier_field="subscription_key", operation="add subscription")
    items = tracker.accept_all(keys)

    if len(items) > MAX_SUBSCRIPTION_KEYS_PER_REQUEST:
        raise ValueError(
            f"At most {MAX_SUBSCRIPTION_KEYS_PER_REQUEST} subscription keys can be added per request "
            f"({len(items)} given)"
        )

    existing = _index_by_key(client.get_all(SUBSCRIPTIONS_URI))

    seen: set[str] = set()
    for item in items:
        k = item.identifier.lower()
        if k in existing:
            tracker.warn(item, "Subscription key already exists in the workspace! No action needed.")
        elif k in seen:
            tracker.warn(item, "Subscription key is listed more than once; it is only added once.")
        seen.add(k)

    pending = tracker.pending()
    body = {"subscriptions": [{"key": item.identifier} for item in pending]}

    if dry_run:
        if pending:
            emit_whatif("POST", client.describe_url(SUBSCRIPTIONS_URI), body)
        return None

    tracker.submit_batch(
        lambda batch: client.request("POST", SUBSCRIPTIONS_URI, body=body),
        success_detail="Subscription key successfully added to the workspace.",
        failure_detail=_add_failure_detail,
    )
    return tracker.results()


def remove_subscriptions(
    client: Any,
    keys: Iterable[str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Remove subscription keys from the workspace.

    A subscription that is still consumed by devices or services
    (`quantity != availableQuantity`) is left alone with a Warning.
    """

    tracker = BulkStatusTracker(identifier_field="subscription_key", operation="remove subscription")
    items = tracker.accept_all(keys)

    existing = _index_by_key(client.get_all(SUBSCRIPTIONS_URI))

    targets: dict[str, str] = {}
    seen: set[str] = set()
    for item in items:
        sub = existing.get(item.identifier.lower())
        if sub is None:
            tracker.warn(item, "Subscription key cannot be found in the workspace! No action needed.")
            continue
        if as_int(sub.get("quantity")) != as_int(sub.get("availableQuantity")):
            tracker.warn(
                item,
                "Subscription key is in use by devices or services and cannot be removed. "
                "Detach it from all devices first (device-subscription remove), then retry.",
            )
            continue
        if item.identifier.lower() in seen:
            tracker.warn(item, "Subscription key is listed more than once; it is only removed once.")
            continue
        seen.add(item.identifier.lower())
        targets[item.identifier] = str(sub["id"])

    if dry_run:
        for item in tracker.pending():
            emit_whatif("DELETE", client.describe_url(f"{SUBSCRIPTIONS_URI}/{targets[item.identifier]}"))
        return None

    tracker.submit_each(
        lambda item: client.request("DELETE", f"{SUBSCRIPTIONS_URI}/{targets[item.identifier]}"),
        success_detail="Subscription key successfully removed from the workspace.",
        failure_detail="Subscription key cannot be removed from the workspace!",
    )
    return tracker.results()
