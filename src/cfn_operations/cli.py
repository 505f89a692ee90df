"""Command-line entrypoint: apply or delete a stack and follow its events."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence

from cfn_operations.config import load_settings
from cfn_operations.domain.models import ApplyOptions, Capability, DeleteOptions
from cfn_operations.errors import OperationError
from cfn_operations.gateway.cloudformation import CloudFormationGateway
from cfn_operations.logging_utils import configure_logging, get_logger
from cfn_operations.operations import OperationHandle, apply, delete


def _key_value(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cfn-operations",
        description="Apply or delete a CloudFormation stack and wait for it to settle.",
    )
    parser.add_argument("--region", default=None)
    parser.add_argument("--profile", default=None)
    parser.add_argument(
        "--quiet", action="store_true", help="do not print events as they arrive"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="override CFN_OPS_LOG_LEVEL",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    apply_parser = commands.add_parser("apply", help="create or update a stack")
    apply_parser.add_argument("stack_name")
    apply_parser.add_argument("template", type=Path, help="JSON or YAML template file")
    apply_parser.add_argument(
        "--parameter", "-p", action="append", type=_key_value, default=[], metavar="KEY=VALUE"
    )
    apply_parser.add_argument(
        "--tag", action="append", type=_key_value, default=[], metavar="KEY=VALUE"
    )
    apply_parser.add_argument(
        "--capability",
        action="append",
        choices=[capability.value for capability in Capability],
        default=[],
    )
    apply_parser.add_argument("--role-arn", default=None)
    apply_parser.add_argument("--notification-arn", action="append", default=[])
    apply_parser.add_argument("--disable-rollback", action="store_true")
    apply_parser.add_argument(
        "--client-request-token", default=None, help="idempotency token for the execution"
    )

    delete_parser = commands.add_parser("delete", help="delete a stack")
    delete_parser.add_argument("stack_name")
    delete_parser.add_argument("--retain-resource", action="append", default=[])
    delete_parser.add_argument("--role-arn", default=None)
    delete_parser.add_argument(
        "--client-request-token", default=None, help="idempotency token for the deletion"
    )

    return parser


def _build_handle(args: argparse.Namespace, gateway: CloudFormationGateway) -> OperationHandle:
    if args.command == "apply":
        options = ApplyOptions(
            capabilities=tuple(Capability(value) for value in args.capability),
            tags=dict(args.tag),
            role_arn=args.role_arn,
            notification_arns=tuple(args.notification_arn),
            disable_rollback=args.disable_rollback,
            client_request_token=args.client_request_token,
        )
        return apply(
            gateway,
            args.stack_name,
            args.template.read_text(encoding="utf-8"),
            dict(args.parameter),
            options=options,
        )
    options = DeleteOptions(
        retain_resources=tuple(args.retain_resource),
        role_arn=args.role_arn,
        client_request_token=args.client_request_token,
    )
    return delete(gateway, args.stack_name, options=options)


async def _run(args: argparse.Namespace) -> int:
    gateway = CloudFormationGateway(region=args.region, profile=args.profile)
    handle = _build_handle(args, gateway)
    async with handle:
        if not args.quiet:
            async for event in handle.events():
                print(
                    f"{event.timestamp:%H:%M:%S} {event.status:<40} "
                    f"{event.unit_type:<40} {event.unit_name}"
                    + (f" ({event.status_reason})" if event.status_reason else "")
                )
        result = await handle
    print(result)
    return 0 if result.succeeded else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "apply" and not args.template.is_file():
        print(f"template file not found: {args.template}", file=sys.stderr)
        return 2

    # Fail fast on invalid configuration before touching AWS.
    try:
        configure_logging(args.log_level)
        load_settings()
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    logger = get_logger(__name__)
    logger.info("cfn-operations %s %s", args.command, args.stack_name)
    try:
        return asyncio.run(_run(args))
    except OperationError as exc:
        logger.error("%s failed for %s: %s", args.command, args.stack_name, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print(
            "interrupted; the remote operation, if submitted, keeps running",
            file=sys.stderr,
        )
        return 130


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
