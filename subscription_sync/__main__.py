"""Command-line entry point: ``python -m subscription_sync`` or ``subscription-sync``."""

import argparse
import os
import sys
from typing import Optional

import uvicorn

from subscription_sync import __version__
from subscription_sync.config import DEFAULT_CONFIG_PATH, Config
from subscription_sync.exceptions import ConfigurationError, GatewayError
from subscription_sync.services.payment_gateway import PaymentGateway

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subscription-sync",
        description="Subscription lifecycle and billing webhook reconciliation service",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH),
        help=f"billing.yaml location (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration and exit",
    )
    parser.add_argument(
        "--create-plan",
        action="store_true",
        help="Create the monthly billing plan at the processor, print its id and exit",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Restart on code changes (development only)",
    )
    return parser


def describe_config(config: Config) -> list[str]:
    """Human-readable summary of the settings the service will run with."""
    gateway = config.gateway
    billing = config.billing
    notifications = config.notifications
    return [
        f"Config: {config.config_path}",
        f"Gateway: {gateway.environment.value} ({gateway.resolved_base_url}), "
        f"credentials {'set' if gateway.client_id and gateway.client_secret else 'missing'}, "
        f"plan {gateway.plan_id or 'none'}",
        f"Billing: {billing.price} {billing.currency} every {billing.billing_period}, "
        f"grace {billing.grace_period}, session TTL {billing.payment_session_ttl}",
        "Notifications: "
        + (
            f"projects/{notifications.project_id}/topics/{notifications.topic}"
            if notifications.enabled
            else "disabled"
        ),
    ]


def create_plan(config: Config) -> int:
    """Create the recurring billing plan that gateway.plan_id should reference."""
    gateway = PaymentGateway(config.gateway, billing=config.billing)
    try:
        if not gateway.is_configured():
            print("Processor credentials are not configured", file=sys.stderr)
            return 2
        plan_id = gateway.create_plan()
    except GatewayError as e:
        print(f"Plan creation failed: {e}", file=sys.stderr)
        return 1
    finally:
        gateway.close()

    print(plan_id)
    print(f"Set gateway.plan_id to {plan_id} in {config.config_path}", file=sys.stderr)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Fail before binding the port if billing.yaml is unusable
    try:
        config = Config(args.config)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.check_config:
        for line in describe_config(config):
            print(line)
        return 0

    if args.create_plan:
        return create_plan(config)

    # create_app reads these when uvicorn calls the factory, possibly in a reloader child
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    if args.log_format == "console":
        print(f"subscription-sync {__version__} on http://{args.host}:{args.port}")
        for line in describe_config(config):
            print(f"  {line}")

    try:
        uvicorn.run(
            "subscription_sync.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,
        )
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
