from __future__ import annotations

import pytest

from src.hpeadmin.integrations.errors import GreenLakeHTTPError
from src.hpeadmin.use_cases.device_subscriptions import (
    DEVICES_URI,
    MERGE_PATCH_CONTENT_TYPE,
    add_device_subscription,
    remove_device_subscription,
)
from src.hpeadmin.use_cases.subscriptions import SUBSCRIPTIONS_URI

SUBSCRIPTION = {"id": "sub-1", "key": "KEY1", "quantity": 10, "availableQuantity": 10}


def _device(serial: str, *, app: bool = True, subs: list[str] | None = None) -> dict:
    return {
        "id": f"dev-{serial.lower()}",
        "serialNumber": serial,
        "application": {"id": "app-1"} if app else None,
        "subscription": [{"id": s} for s in (subs or [])],
    }


def test_add_checks_each_device_and_patches_eligible_ones(stub_client_cls) -> None:
    client = stub_client_cls(
        collections={
            SUBSCRIPTIONS_URI: [SUBSCRIPTION],
            DEVICES_URI: [
                _device("SN1"),
                _device("SN3", app=False),
                _device("SN4", subs=["sub-1"]),
                _device("SN5"),
            ],
        }
    )

    results = add_device_subscription(client, ["SN1", "SN2", "SN3", "SN4", "", "SN5"], "KEY1")

    assert [(r["serial_number"], r["status"]) for r in results] == [
        ("SN1", "Complete"),
        ("SN2", "Failed"),
        ("SN3", "Failed"),
        ("SN4", "Warning"),
        ("SN5", "Complete"),
    ]
    assert "assigned to a service" in results[2]["details"]

    (patch,) = client.mutations()
    assert patch[0] == "PATCH"
    assert patch[1] == DEVICES_URI
    assert patch[2]["params"] == {"id": "dev-sn1,dev-sn5"}
    assert patch[2]["body"] == {"subscription": [{"id": "sub-1"}]}
    assert patch[2]["content_type"] == MERGE_PATCH_CONTENT_TYPE


def test_add_devices_are_looked_up_by_serial_filter(stub_client_cls) -> None:
    client = stub_client_cls(collections={SUBSCRIPTIONS_URI: [SUBSCRIPTION], DEVICES_URI: [_device("SN1")]})

    add_device_subscription(client, ["SN1", "SN2"], "KEY1")

    device_lookup = [c for c in client.calls if c[0] == "GET_ALL" and c[1] == DEVICES_URI]
    assert device_lookup[0][2]["params"] == {"filter": "serialNumber eq 'SN1' or serialNumber eq 'SN2'"}


def test_add_beyond_available_quantity_fails_the_rest(stub_client_cls) -> None:
    sub = dict(SUBSCRIPTION, availableQuantity=1)
    client = stub_client_cls(collections={SUBSCRIPTIONS_URI: [sub], DEVICES_URI: [_device("SN1"), _device("SN2")]})

    results = add_device_subscription(client, ["SN1", "SN2"], "KEY1")

    assert [r["status"] for r in results] == ["Complete", "Failed"]
    assert "available quantity" in results[1]["details"]
    (patch,) = client.mutations()
    assert patch[2]["params"] == {"id": "dev-sn1"}


def test_add_unknown_subscription_fails_every_device(stub_client_cls) -> None:
    client = stub_client_cls(collections={SUBSCRIPTIONS_URI: [], DEVICES_URI: [_device("SN1")]})

    results = add_device_subscription(client, ["SN1", "SN2"], "NOPE")

    assert [r["status"] for r in results] == ["Failed", "Failed"]
    assert client.mutations() == []


def test_add_requires_subscription_key(stub_client_cls) -> None:
    with pytest.raises(ValueError):
        add_device_subscription(stub_client_cls(), ["SN1"], "  ")


def test_add_patch_failure_fails_the_whole_batch(stub_client_cls) -> None:
    client = stub_client_cls(
        collections={SUBSCRIPTIONS_URI: [SUBSCRIPTION], DEVICES_URI: [_device("SN1"), _device("SN2")]},
        responses={("PATCH", DEVICES_URI): GreenLakeHTTPError(500, "internal error")},
    )

    results = add_device_subscription(client, ["SN1", "SN2"], "KEY1")

    for r in results:
        assert r["status"] == "Failed"
        assert r["exception"] == {"message": "internal error", "status_code": 500}


def test_add_dry_run_describes_patch(stub_client_cls, capsys) -> None:
    client = stub_client_cls(collections={SUBSCRIPTIONS_URI: [SUBSCRIPTION], DEVICES_URI: [_device("SN1")]})

    assert add_device_subscription(client, ["SN1"], "KEY1", dry_run=True) is None

    assert client.mutations() == []
    err = capsys.readouterr().err
    assert 'What if: Performing the operation "PATCH"' in err
    assert "?id=dev-sn1" in err


def test_remove_detaches_only_devices_with_a_subscription(stub_client_cls) -> None:
    client = stub_client_cls(collections={DEVICES_URI: [_device("SN1", subs=["sub-1"]), _device("SN2")]})

    results = remove_device_subscription(client, ["SN1", "SN2", "SN9"])

    assert [r["status"] for r in results] == ["Complete", "Warning", "Failed"]
    (patch,) = client.mutations()
    assert patch[2]["params"] == {"id": "dev-sn1"}
    assert patch[2]["body"] == {"subscription": []}


def test_remove_dry_run_describes_patch(stub_client_cls, capsys) -> None:
    client = stub_client_cls(collections={DEVICES_URI: [_device("SN1", subs=["sub-1"])]})

    assert remove_device_subscription(client, ["SN1"], dry_run=True) is None

    assert client.mutations() == []
    err = capsys.readouterr().err
    assert 'What if: Performing the operation "PATCH"' in err
    assert '"subscription": []' in err
