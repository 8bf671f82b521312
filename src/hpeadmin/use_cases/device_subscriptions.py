"""Attach / detach a GreenLake subscription to devices.

Both operations send a single PATCH to the devices collection with the
target device IDs comma-joined in the `id` query parameter.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from src.hpeadmin.use_cases.bulk_status import BulkStatusTracker, emit_whatif
from src.hpeadmin.use_cases.records import as_int
from src.hpeadmin.use_cases.subscriptions import SUBSCRIPTIONS_URI

logger = logging.getLogger(__name__)

DEVICES_URI = "/devices/v1/devices"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def _attached_subscription_ids(device: dict[str, Any]) -> list[str]:
    subs = device.get("subscription") or []
    if isinstance(subs, dict):
        subs = [subs]
    return [str(s.get("id")) for s in subs if isinstance(s, dict) and s.get("id")]


def _has_application(device: dict[str, Any]) -> bool:
    app = device.get("application")
    return isinstance(app, dict) and bool(app.get("id"))


def get_devices_by_serial(client: Any, serial_numbers: list[str]) -> dict[str, dict[str, Any]]:
    """Fetch the given devices; returns lower-cased serial number -> device record."""

    if not serial_numbers:
        return {}
    flt = " or ".join(f"serialNumber eq '{s}'" for s in serial_numbers)
    devices = client.get_all(DEVICES_URI, params={"filter": flt})
    logger.debug("Devices: %d of %d serial numbers found", len(devices), len(serial_numbers))
    return {str(d.get("serialNumber") or "").lower(): d for d in devices if d.get("serialNumber")}


def _find_subscription(client: Any, key: str) -> dict[str, Any] | None:
    subs = client.get_all(SUBSCRIPTIONS_URI, params={"filter": f"key eq '{key}'"})
    for s in subs:
        if str(s.get("key") or "").lower() == key.lower():
            return s
    return None


def _patch_devices(client: Any, device_ids: list[str], body: dict[str, Any]) -> Any:
    return client.request(
        "PATCH",
        DEVICES_URI,
        params={"id": ",".join(device_ids)},
        body=body,
        content_type=MERGE_PATCH_CONTENT_TYPE,
    )


def _whatif_patch(client: Any, device_ids: list[str], body: dict[str, Any]) -> None:
    emit_whatif("PATCH", f"{client.describe_url(DEVICES_URI)}?id={','.join(device_ids)}", body)


def add_device_subscription(
    client: Any,
    serial_numbers: Iterable[str],
    subscription_key: str,
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Attach `subscription_key` to each device.

    Devices must already be assigned to a service (application); the
    subscription must exist in the workspace and have enough available
    quantity left.
    """

    if not subscription_key or not subscription_key.strip():
        raise ValueError("subscription_key is required")
    subscription_key = subscription_key.strip()

    tracker = BulkStatusTracker(identifier_field="serial_number", operation="attach subscription")
    items = tracker.accept_all(serial_numbers)
    if not items:
        return None if dry_run else tracker.results()

    subscription = _find_subscription(client, subscription_key)
    devices = get_devices_by_serial(client, [i.identifier for i in items])

    if subscription is None:
        for item in items:
            tracker.fail(item, f"Subscription key '{subscription_key}' cannot be found in the workspace!")
        return None if dry_run else tracker.results()

    sub_id = str(subscription["id"])
    device_ids: dict[str, str] = {}
    for item in items:
        serial = item.identifier.lower()
        device = devices.get(serial)
        if device is None:
            tracker.fail(item, "Device cannot be found in the workspace!")
            continue
        attached = _attached_subscription_ids(device)
        if sub_id in attached:
            tracker.warn(item, "Subscription is already attached to the device! No action needed.")
            continue
        if attached:
            tracker.warn(item, "Device already has another subscription attached. Detach it first.")
            continue
        if not _has_application(device):
            tracker.fail(
                item,
                "Device must be assigned to a service before a subscription can be attached.",
            )
            continue
        if serial in device_ids:
            tracker.warn(item, "Serial number is listed more than once; it is only processed once.")
            continue
        device_ids[serial] = str(device["id"])

    available = as_int(subscription.get("availableQuantity"))
    if available is not None:
        for n, item in enumerate(tracker.pending()):
            if n >= available:
                device_ids.pop(item.identifier.lower(), None)
                tracker.fail(
                    item,
                    f"Subscription key '{subscription_key}' has no available quantity left "
                    f"({available} available).",
                )

    ids = [device_ids[i.identifier.lower()] for i in tracker.pending()]
    body = {"subscription": [{"id": sub_id}]}

    if dry_run:
        if ids:
            _whatif_patch(client, ids, body)
        return None

    tracker.submit_batch(
        lambda batch: _patch_devices(client, ids, body),
        success_detail="Subscription successfully attached to the device.",
        failure_detail="Subscription cannot be attached to the device!",
    )
    return tracker.results()


def remove_device_subscription(
    client: Any,
    serial_numbers: Iterable[str],
    *,
    dry_run: bool = False,
) -> list[dict[str, Any]] | None:
    """Detach whatever subscription is attached to each device."""

    tracker = BulkStatusTracker(identifier_field="serial_number", operation="detach subscription")
    items = tracker.accept_all(serial_numbers)
    if not items:
        return None if dry_run else tracker.results()

    devices = get_devices_by_serial(client, [i.identifier for i in items])

    device_ids: dict[str, str] = {}
    for item in items:
        serial = item.identifier.lower()
        device = devices.get(serial)
        if device is None:
            tracker.fail(item, "Device cannot be found in the workspace!")
            continue
        if not _attached_subscription_ids(device):
            tracker.warn(item, "Device has no subscription attached! No action needed.")
            continue
        if serial in device_ids:
            tracker.warn(item, "Serial number is listed more than once; it is only processed once.")
            continue
        device_ids[serial] = str(device["id"])

    ids = [device_ids[i.identifier.lower()] for i in tracker.pending()]
    body: dict[str, Any] = {"subscription": []}

    if dry_run:
        if ids:
            _whatif_patch(client, ids, body)
        return None

    tracker.submit_batch(
        lambda batch: _patch_devices(client, ids, body),
        success_detail="Subscription successfully detached from the device.",
        failure_detail="Subscription cannot be detached from the device!",
    )
    return tracker.results()
