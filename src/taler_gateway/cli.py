"""Taler Gateway Command Line Interface.

Operator tools talking directly to a merchant backend:
- Currency and configuration discovery
- Instance provisioning and token issuance
- Bank account management
- Pay URI rewriting

Usage:
    python -m taler_gateway.cli currencies --base-url http://merchant:9966/
    python -m taler_gateway.cli init-instance --instance shop --password secret
    python -m taler_gateway.cli create-token --instance shop --password secret
    python -m taler_gateway.cli accounts list --instance shop --token secret-token:abc
    python -m taler_gateway.cli rewrite-uri taler+http://merchant/instances/shop/pay?oid=1

Connection options default to the TALER_* environment variables.
Output is JSON. Exit code is 1 when the merchant backend rejects a request.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any, Awaitable, Callable

import httpx

from taler_gateway.config import get_settings
from taler_gateway.logging_utils import configure_logging
from taler_gateway.taler.config import DEFAULT_INSTANCE_ID
from taler_gateway.taler.merchant.base import TalerError
from taler_gateway.taler.merchant.client import TalerMerchantClient
from taler_gateway.taler.merchant.pay_uri import (
    normalize_to_wallet_pay_uri,
    rewrite_public_pay_uri,
)


class TalerCli:
    """Taler Gateway Command Line Interface."""

    def __init__(
        self,
        client_factory: Callable[[], TalerMerchantClient] = TalerMerchantClient,
    ) -> None:
        self.client_factory = client_factory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        settings = get_settings()

        connection = argparse.ArgumentParser(add_help=False)
        connection.add_argument(
            "--base-url",
            default=settings.merchant_base_url,
            help="Merchant backend base URL (default: TALER_MERCHANT_BASE_URL)",
        )
        connection.add_argument(
            "--instance",
            default=settings.merchant_instance_id or DEFAULT_INSTANCE_ID,
            help="Merchant instance id (default: TALER_MERCHANT_INSTANCE_ID or 'default')",
        )
        connection.add_argument(
            "--token",
            default=settings.api_token,
            help="Instance API token (default: TALER_API_TOKEN)",
        )
        connection.add_argument(
            "--password",
            default=settings.instance_password,
            help="Instance password (default: TALER_INSTANCE_PASSWORD)",
        )

        parser = argparse.ArgumentParser(
            prog="python -m taler_gateway.cli",
            description="Taler merchant backend operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser(
            "currencies",
            parents=[connection],
            help="List currencies advertised by the merchant backend",
        )
        subparsers.add_parser(
            "config",
            parents=[connection],
            help="Show merchant backend provisioning capabilities",
        )
        subparsers.add_parser(
            "init-instance",
            parents=[connection],
            help="Create the merchant instance (self-provisioning)",
        )

        token = subparsers.add_parser(
            "create-token",
            parents=[connection],
            help="Issue a non-expiring instance API token",
        )
        token.add_argument(
            "--scope",
            default="all",
            help="Token scope (default: all)",
        )

        accounts = subparsers.add_parser(
            "accounts",
            help="Manage instance bank accounts",
        )
        account_commands = accounts.add_subparsers(dest="accounts_command", required=True)
        account_commands.add_parser("list", parents=[connection], help="List bank accounts")
        add = account_commands.add_parser("add", parents=[connection], help="Add a bank account")
        add.add_argument("payto_uri", help="payto:// URI of the account")
        add.add_argument("--credit-facade-url", help="Optional credit facade URL")
        delete = account_commands.add_parser(
            "delete", parents=[connection], help="Delete a bank account"
        )
        delete.add_argument("h_wire", help="Wire hash identifying the account")

        rewrite = subparsers.add_parser(
            "rewrite-uri",
            help="Rewrite a merchant pay URI for wallets",
        )
        rewrite.add_argument("uri", help="Pay URI returned by the merchant backend")
        rewrite.add_argument(
            "--public-base-url",
            default=settings.merchant_public_base_url,
            help="Public merchant URL (default: TALER_MERCHANT_PUBLIC_BASE_URL)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        if parsed.command == "rewrite-uri":
            return self._cmd_rewrite_uri(parsed)

        # Dispatch to command handler
        handlers: dict[str, Callable[[TalerMerchantClient, argparse.Namespace], Awaitable[Any]]] = {
            "currencies": self._cmd_currencies,
            "config": self._cmd_config,
            "init-instance": self._cmd_init_instance,
            "create-token": self._cmd_create_token,
            "accounts": self._cmd_accounts,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        if not parsed.base_url:
            print("ERROR: --base-url required or set TALER_MERCHANT_BASE_URL", file=sys.stderr)
            return 1

        try:
            result = asyncio.run(self._with_client(handler, parsed))
        except (TalerError, httpx.HTTPError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        except ValueError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

        print(json.dumps(result, indent=2, default=str))
        return 0

    async def _with_client(
        self,
        handler: Callable[[TalerMerchantClient, argparse.Namespace], Awaitable[Any]],
        args: argparse.Namespace,
    ) -> Any:
        client = self.client_factory()
        try:
            return await handler(client, args)
        finally:
            await client.aclose()

    async def _cmd_currencies(self, client: TalerMerchantClient, args: argparse.Namespace) -> Any:
        assets = await client.get_currencies(args.base_url)
        return [asdict(a) for a in assets]

    async def _cmd_config(self, client: TalerMerchantClient, args: argparse.Namespace) -> Any:
        return asdict(await client.get_config(args.base_url))

    async def _cmd_init_instance(self, client: TalerMerchantClient, args: argparse.Namespace) -> Any:
        password = _require(args.password, "--password")
        config = await client.get_config(args.base_url)
        if not config.self_provisioning:
            raise TalerError(
                "Merchant backend self-provisioning is disabled. Enable it in the merchant config."
            )
        await client.create_instance(args.base_url, args.instance, password)
        return {"instance_id": args.instance, "status": "ready"}

    async def _cmd_create_token(self, client: TalerMerchantClient, args: argparse.Namespace) -> Any:
        password = _require(args.password, "--password")
        token = await client.create_token(args.base_url, args.instance, password, args.scope)
        return {"instance_id": args.instance, "scope": args.scope, "access_token": token.access_token}

    async def _cmd_accounts(self, client: TalerMerchantClient, args: argparse.Namespace) -> Any:
        token = _require(args.token, "--token")
        if args.accounts_command == "list":
            accounts = await client.get_bank_accounts(args.base_url, args.instance, token)
            return [asdict(a) for a in accounts]
        if args.accounts_command == "add":
            await client.add_bank_account(
                args.base_url, args.instance, token, args.payto_uri, args.credit_facade_url
            )
            return {"payto_uri": args.payto_uri, "status": "added"}
        await client.delete_bank_account(args.base_url, args.instance, token, args.h_wire)
        return {"h_wire": args.h_wire, "status": "deleted"}

    def _cmd_rewrite_uri(self, args: argparse.Namespace) -> int:
        rewritten = rewrite_public_pay_uri(args.uri, args.public_base_url)
        print(json.dumps({
            "input": args.uri,
            "rewritten": rewritten,
            "wallet_uri": normalize_to_wallet_pay_uri(args.uri),
        }, indent=2))
        return 0


def _require(value: str | None, option: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{option} is required")
    return value


def main() -> int:
    """CLI entry point."""
    configure_logging(get_settings().log_level)
    cli = TalerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
