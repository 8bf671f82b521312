"""Smoke test: call a couple of read-only GreenLake / COM APIs.

Prereqs:
- HPE_CLIENT_ID / HPE_CLIENT_SECRET set (or run `python scripts/glp_auth_local.py` first)

Env vars:
- HPE_COM_REGIONS (optional)   [default: us-west,eu-central,ap-northeast]
- HPE_SMOKE_COM_REGION (optional) COM region to list external services for

Run:
  python scripts/glp_api_smoke_test.py
"""

from __future__ import annotations

import os
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.hpeadmin.integrations.greenlake_client import GreenLakeClient
from src.hpeadmin.use_cases.auto_subscriptions import get_auto_subscription
from src.hpeadmin.use_cases.external_services import get_external_services
from src.hpeadmin.use_cases.subscriptions import get_subscriptions


def main() -> None:
    client = GreenLakeClient.from_env()

    print("Calling subscriptions...")
    subs = get_subscriptions(client)
    valid = get_subscriptions(client, show_valid=True, show_with_available_quantity=True)
    print(f"Subscriptions: {len(subs)} total, {len(valid)} valid with available quantity")
    for s in valid[:5]:
        print(f"  {s.get('key')} | {s.get('subscriptionType')} | available {s.get('availableQuantity')} | ends {s.get('endTime')}")

    print("\nCalling auto-subscription policy...")
    for entry in get_auto_subscription(client):
        print(f"  {entry.get('device_type')}: enabled={entry.get('enabled')}")

    region = os.environ.get("HPE_SMOKE_COM_REGION")
    if region:
        print(f"\nCalling COM external services in {region}...")
        for svc in get_external_services(client, region):
            print(f"  {svc.get('name')} | {svc.get('serviceType')} | {svc.get('state')}")
    else:
        print("\nSkipped COM external services (set HPE_SMOKE_COM_REGION=<region> to enable).")


if __name__ == "__main__":
    main()
