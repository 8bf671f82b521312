"""Command line entry point: `hpe-admin <resource> <action> ...`.

Examples:
  hpe-admin subscription list --valid --available
  hpe-admin subscription add KEY1 KEY2 --dry-run
  hpe-admin device-subscription add --subscription-key KEY1 SN123 SN456
  hpe-admin auto-subscription set COMPUTE=ENHANCED_PROLIANT
  hpe-admin external-service test --region eu-central --name "ServiceNow prod"

Env vars: see `.env.example` (HPE_CLIENT_ID, HPE_CLIENT_SECRET, ...).
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable

import yaml

from src.hpeadmin.config.settings import configure_logging, load_settings
from src.hpeadmin.integrations.errors import GreenLakeError
from src.hpeadmin.integrations.greenlake_client import GreenLakeClient
from src.hpeadmin.use_cases import (
    auto_subscriptions,
    device_subscriptions,
    external_services,
    subscriptions,
)


def _print_output(result: Any, fmt: str) -> None:
    if fmt == "yaml":
        print(yaml.safe_dump(result, sort_keys=False, allow_unicode=True), end="")
    else:
        print(json.dumps(result, indent=2, default=str))


def _parse_type_tier_pairs(pairs: list[str]) -> dict[str, str]:
    tiers: dict[str, str] = {}
    for p in pairs:
        if "=" not in p:
            raise ValueError(f"Expected TYPE=TIER, got '{p}'")
        device_type, tier = p.split("=", 1)
        tiers[device_type.strip()] = tier.strip()
    return tiers


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _subscription_list(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return subscriptions.get_subscriptions(
        client,
        key=args.key,
        subscription_type=args.type,
        show_device_subscriptions=args.device,
        show_service_subscriptions=args.service,
        show_valid=args.valid,
        show_expired=args.expired,
        show_with_available_quantity=args.available,
    )


def _subscription_add(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return subscriptions.add_subscriptions(client, args.keys, dry_run=args.dry_run)


def _subscription_remove(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return subscriptions.remove_subscriptions(client, args.keys, dry_run=args.dry_run)


def _device_subscription_add(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return device_subscriptions.add_device_subscription(
        client, args.serial_numbers, args.subscription_key, dry_run=args.dry_run
    )


def _device_subscription_remove(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return device_subscriptions.remove_device_subscription(client, args.serial_numbers, dry_run=args.dry_run)


def _auto_subscription_list(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return auto_subscriptions.get_auto_subscription(client)


def _auto_subscription_set(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return auto_subscriptions.set_auto_subscription(
        client, _parse_type_tier_pairs(args.pairs), dry_run=args.dry_run
    )


def _auto_subscription_remove(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return auto_subscriptions.remove_auto_subscription(client, args.device_types, dry_run=args.dry_run)


def _external_service_list(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.get_external_services(
        client, args.region, name=args.name, service_type=args.type
    )


def _external_service_new_servicenow(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.new_servicenow_integration(
        client,
        args.region,
        name=args.name,
        description=args.description,
        client_id=args.client_id,
        client_secret=args.client_secret,
        refresh_token=args.refresh_token,
        oauth_url=args.oauth_url,
        incident_url=args.incident_url,
        refresh_token_expires_in_days=args.refresh_token_expires_in_days,
        dry_run=args.dry_run,
        poll_timeout_seconds=args.timeout,
    )


def _external_service_new_dscc(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.new_dscc_integration(
        client,
        args.region,
        name=args.name,
        description=args.description,
        dscc_region=args.dscc_region,
        client_id=args.client_id,
        client_secret=args.client_secret,
        dry_run=args.dry_run,
        poll_timeout_seconds=args.timeout,
    )


def _external_service_set(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.set_external_service(
        client,
        args.region,
        args.name,
        new_name=args.new_name,
        description=args.description,
        client_id=args.client_id,
        client_secret=args.client_secret,
        refresh_token=args.refresh_token,
        incident_url=args.incident_url,
        refresh_token_expires_in_days=args.refresh_token_expires_in_days,
        dry_run=args.dry_run,
    )


def _external_service_remove(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.remove_external_services(client, args.region, args.names, dry_run=args.dry_run)


def _external_service_test(client: GreenLakeClient, args: argparse.Namespace) -> Any:
    return external_services.run_external_service_test(
        client, args.region, args.name, dry_run=args.dry_run, poll_timeout_seconds=args.timeout
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dry-run", action="store_true", help="Describe the request instead of sending it")
    common.add_argument("--output", choices=["json", "yaml"], default="json")
    common.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING (default: HPE_LOG_LEVEL)")

    parser = argparse.ArgumentParser(prog="hpe-admin", description="HPE GreenLake / COM admin commands")
    resources = parser.add_subparsers(dest="resource", required=True)

    def action(sub: argparse._SubParsersAction, name: str, handler: Callable, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, parents=[common], help=help_text)
        p.set_defaults(handler=handler)
        return p

    # subscription
    sub = resources.add_parser("subscription", help="Workspace subscriptions").add_subparsers(
        dest="action", required=True
    )
    p = action(sub, "list", _subscription_list, "List subscriptions")
    p.add_argument("--key")
    p.add_argument("--type", help="subscriptionType, e.g. CENTRAL_COMPUTE")
    kind = p.add_mutually_exclusive_group()
    kind.add_argument("--device", action="store_true", help="Device subscriptions only")
    kind.add_argument("--service", action="store_true", help="Service subscriptions only")
    validity = p.add_mutually_exclusive_group()
    validity.add_argument("--valid", action="store_true", help="Not yet expired")
    validity.add_argument("--expired", action="store_true")
    p.add_argument("--available", action="store_true", help="availableQuantity >= 1")
    p = action(sub, "add", _subscription_add, "Add subscription keys (max 5)")
    p.add_argument("keys", nargs="+")
    p = action(sub, "remove", _subscription_remove, "Remove subscription keys")
    p.add_argument("keys", nargs="+")

    # device-subscription
    sub = resources.add_parser("device-subscription", help="Attach/detach subscriptions").add_subparsers(
        dest="action", required=True
    )
    p = action(sub, "add", _device_subscription_add, "Attach a subscription to devices")
    p.add_argument("--subscription-key", required=True)
    p.add_argument("serial_numbers", nargs="+")
    p = action(sub, "remove", _device_subscription_remove, "Detach subscriptions from devices")
    p.add_argument("serial_numbers", nargs="+")

    # auto-subscription
    sub = resources.add_parser("auto-subscription", help="Auto-subscription policy").add_subparsers(
        dest="action", required=True
    )
    action(sub, "list", _auto_subscription_list, "Show the policy")
    p = action(sub, "set", _auto_subscription_set, "Enable auto-subscription")
    p.add_argument("pairs", nargs="+", metavar="TYPE=TIER")
    p = action(sub, "remove", _auto_subscription_remove, "Disable auto-subscription")
    p.add_argument("device_types", nargs="+", metavar="TYPE")

    # external-service
    sub = resources.add_parser("external-service", help="COM external services").add_subparsers(
        dest="action", required=True
    )
    p = action(sub, "list", _external_service_list, "List external services")
    p.add_argument("--region", required=True)
    p.add_argument("--name")
    p.add_argument("--type", choices=list(external_services.SERVICE_TYPES))

    p = action(sub, "new-servicenow", _external_service_new_servicenow, "Deploy a ServiceNow integration")
    p.add_argument("--region", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--description")
    p.add_argument("--client-id", required=True)
    p.add_argument("--client-secret", required=True)
    p.add_argument("--refresh-token", required=True)
    p.add_argument("--oauth-url", required=True)
    p.add_argument("--incident-url", required=True)
    p.add_argument(
        "--refresh-token-expires-in-days",
        type=int,
        default=external_services.DEFAULT_REFRESH_TOKEN_EXPIRES_IN_DAYS,
    )
    p.add_argument("--timeout", type=float, default=None, help="Stop waiting after N seconds (default: wait forever)")

    p = action(sub, "new-dscc", _external_service_new_dscc, "Deploy a DSCC integration")
    p.add_argument("--region", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--description")
    p.add_argument("--dscc-region", required=True)
    p.add_argument("--client-id", required=True)
    p.add_argument("--client-secret", required=True)
    p.add_argument("--timeout", type=float, default=None)

    p = action(sub, "set", _external_service_set, "Update an external service")
    p.add_argument("--region", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--new-name")
    p.add_argument("--description")
    p.add_argument("--client-id")
    p.add_argument("--client-secret")
    p.add_argument("--refresh-token")
    p.add_argument("--incident-url")
    p.add_argument("--refresh-token-expires-in-days", type=int)

    p = action(sub, "remove", _external_service_remove, "Remove external services")
    p.add_argument("--region", required=True)
    p.add_argument("names", nargs="+")

    p = action(sub, "test", _external_service_test, "Test an external service")
    p.add_argument("--region", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--timeout", type=float, default=None)

    return parser


def main(argv: list[str] | None = None, *, client: Any = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(args.log_level or settings.log_level)

    if client is None:
        client = GreenLakeClient.from_settings(settings)

    try:
        result = args.handler(client, args)
    except (GreenLakeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if result is not None:
        _print_output(result, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
