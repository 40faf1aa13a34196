"""CLI entrypoint for Lumenitos."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from stellar_sdk import Keypair, StrKey
from stellar_sdk.exceptions import Ed25519SecretSeedInvalidError

from .amounts import format_xlm
from .auth import AuthorizerKind
from .config import Settings, admin_secret, load_settings, settings_to_toml, write_config
from .constants import DEFAULT_CONFIG_FILE
from .errors import LumenitosError, SubmissionTimeout
from .faucet import fund_account
from .gasless import (
    create_relay_client,
    deploy_account_contract_gasless,
    send_gasless_from_classic,
    send_gasless_from_contract,
)
from .transport import create_transport
from .ttl import TTLLifecycleManager, UNHEALTHY, bump_balance_ttl, bump_code_ttl, bump_instance_ttl, get_contract_ttls
from .wallet import (
    account_contract_address,
    deploy_account_contract,
    get_balance,
    get_transfer_history,
    send_from_classic_account,
    send_from_contract_account,
)


def load_keypair(path: str | Path) -> Keypair:
    """Read a keypair from a file holding the ``S...`` secret seed."""
    key_path = Path(path).expanduser()
    if not key_path.exists():
        raise FileNotFoundError(f"Keypair file not found: {key_path}")
    secret = key_path.read_text().strip()
    try:
        return Keypair.from_secret(secret)
    except (Ed25519SecretSeedInvalidError, ValueError) as exc:
        raise ValueError(f"Keypair file {key_path} does not contain a valid secret seed") from exc


def _settings(args: argparse.Namespace) -> Settings:
    return load_settings(
        args.config,
        network=args.network,
        rpc_url=args.rpc_url,
        keypair_path=args.keypair,
    )


def _owner(settings: Settings) -> Keypair:
    if not settings.keypair_path:
        raise ValueError("No keypair configured (use --keypair or [wallet] keypair in the config)")
    return load_keypair(settings.keypair_path)


def _maintenance_key() -> Keypair | None:
    secret = admin_secret()
    if secret is None:
        return None
    try:
        return Keypair.from_secret(secret)
    except (Ed25519SecretSeedInvalidError, ValueError) as exc:
        raise ValueError("LUMENITOS_ADMIN_SECRET is not a valid secret seed") from exc


def _target_address(args: argparse.Namespace, settings: Settings) -> str:
    if getattr(args, "address", None):
        return args.address
    return account_contract_address(_owner(settings).public_key, settings)


def _cmd_config_init(args: argparse.Namespace) -> int:
    settings = Settings(
        network=args.network or "testnet",
        rpc_url=args.rpc_url,
        keypair_path=args.keypair,
    )
    out = write_config(args.out or DEFAULT_CONFIG_FILE, settings, overwrite=args.force)
    print(f"Wrote config file: {out}")
    return 0


def _cmd_config_show(args: argparse.Namespace) -> int:
    settings = _settings(args)
    print(f"Source: {settings.source or '(defaults)'}")
    print(f"RPC URL: {settings.resolved_rpc_url}")
    print(json.dumps(settings_to_toml(settings), indent=2))
    return 0


def _cmd_address(args: argparse.Namespace) -> int:
    settings = _settings(args)
    owner = args.owner or _owner(settings).public_key
    print(account_contract_address(owner, settings))
    return 0


def _cmd_deploy(args: argparse.Namespace) -> int:
    settings = _settings(args)
    transport = create_transport(settings)
    if args.gasless:
        relay = create_relay_client(settings)
        address = deploy_account_contract_gasless(transport, _owner(settings), settings, relay)
    else:
        address = deploy_account_contract(transport, _owner(settings), settings)
    print(f"Account contract: {address}")
    return 0


def _cmd_send(args: argparse.Namespace) -> int:
    settings = _settings(args)
    transport = create_transport(settings)
    owner = _owner(settings)
    if args.gasless:
        relay = create_relay_client(settings)
        if args.from_classic:
            relayed = send_gasless_from_classic(transport, owner, args.destination, args.amount, settings, relay)
        else:
            relayed = send_gasless_from_contract(
                transport,
                owner,
                args.destination,
                args.amount,
                settings,
                relay,
                authorizer=AuthorizerKind(args.authorizer),
            )
        print(f"Sent {args.amount} XLM to {args.destination} (fee paid by relayer)")
        print(f"Transaction: {relayed.hash or relayed.transaction_id} ({relayed.status})")
        return 0
    if args.from_classic:
        result = send_from_classic_account(transport, owner, args.destination, args.amount, settings)
    else:
        result = send_from_contract_account(
            transport,
            owner,
            args.destination,
            args.amount,
            settings,
            authorizer=AuthorizerKind(args.authorizer),
        )
    print(f"Sent {args.amount} XLM to {args.destination}")
    print(f"Transaction: {result.hash}")
    return 0


def _cmd_balance(args: argparse.Namespace) -> int:
    settings = _settings(args)
    address = _target_address(args, settings)
    balance = get_balance(create_transport(settings), address, settings)
    print(f"{address}: {format_xlm(balance)} XLM")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    settings = _settings(args)
    address = _target_address(args, settings)
    records = get_transfer_history(create_transport(settings), address, settings, limit=args.limit)
    if args.json:
        print(json.dumps([record.to_dict() for record in records], indent=2))
        return 0
    if not records:
        print("No transfers found")
    for record in records:
        arrow = "->" if record.direction == "sent" else "<-"
        print(f"{record.ledger} {record.direction:8} {format_xlm(record.amount):>14} XLM {arrow} {record.counterparty}")
    return 0


def _cmd_ttl(args: argparse.Namespace) -> int:
    settings = _settings(args)
    transport = create_transport(settings)
    address = _target_address(args, settings)
    if args.bump:
        bumpers = {"instance": bump_instance_ttl, "code": bump_code_ttl, "balance": bump_balance_ttl}
        result = bumpers[args.bump](transport, _owner(settings), address, settings)
        print(f"Extended {args.bump} TTL: {result.hash}")
        return 0
    ttls = get_contract_ttls(transport, address, settings)
    print(f"Current ledger: {ttls.current_ledger}")
    for name in ("instance", "code", "balance"):
        live_until = getattr(ttls, name)
        if live_until is None:
            print(f"{name}: not found")
        else:
            print(f"{name}: live until {live_until} ({live_until - ttls.current_ledger} ledgers)")
    return 0


def _cmd_health(args: argparse.Namespace) -> int:
    settings = _settings(args)
    manager = TTLLifecycleManager(create_transport(settings), settings, maintenance_key=_maintenance_key())
    if not (args.bump or args.install):
        report = manager.report()
        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            print(f"Status: {report.status} (ledger {report.current_ledger})")
            for name, status in report.resources.items():
                print(f"  {name}: {json.dumps(status.to_dict())}")
        return 1 if report.status == UNHEALTHY else 0

    result = manager.maintain(bump=args.bump, install=args.install)
    final = result.after or result.before
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        if result.report_only:
            print("No maintenance key configured; report only")
        for action in result.actions:
            outcome = "ok" if action.success else f"failed: {action.error}"
            print(f"  {action.action} {action.resource}: {outcome}")
        print(f"Status: {final.status}")
    return 1 if final.status == UNHEALTHY else 0


def _cmd_fund(args: argparse.Namespace) -> int:
    settings = _settings(args)
    keypair = _owner(settings) if settings.keypair_path else None
    address = args.address
    if address is None:
        if keypair is None:
            raise ValueError("Give an address or configure a keypair")
        address = keypair.public_key
    if StrKey.is_valid_contract(address) and keypair is None:
        raise ValueError("Funding a contract address needs the owner keypair")
    result = fund_account(create_transport(settings), address, settings, keypair)
    print(result.message)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lumenitos", description="Soroban smart-account wallet tools")
    parser.add_argument("--config", help=f"Config file (default: ./{DEFAULT_CONFIG_FILE} if present)")
    parser.add_argument("--network", choices=["testnet", "mainnet"], help="Network override")
    parser.add_argument("--rpc-url", help="RPC URL override")
    parser.add_argument("--keypair", help="File containing the owner's S... secret")
    parser.add_argument("--verbose", action="store_true", help="Log progress to stderr")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_config = sub.add_parser("config", help="Config file helpers")
    p_config_sub = p_config.add_subparsers(dest="config_cmd", required=True)
    p_config_init = p_config_sub.add_parser("init", help="Write a config file")
    p_config_init.add_argument("--out", help=f"Output path (default: {DEFAULT_CONFIG_FILE})")
    p_config_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_config_init.set_defaults(func=_cmd_config_init)
    p_config_show = p_config_sub.add_parser("show", help="Print resolved settings")
    p_config_show.set_defaults(func=_cmd_config_show)

    p_address = sub.add_parser("address", help="Print the account contract address")
    p_address.add_argument("--owner", help="Owner G... public key (default: configured keypair)")
    p_address.set_defaults(func=_cmd_address)

    p_deploy = sub.add_parser("deploy", help="Deploy the account contract through the factory")
    p_deploy.add_argument("--gasless", action="store_true", help="Let the relayer pay the deployment fee")
    p_deploy.set_defaults(func=_cmd_deploy)

    p_send = sub.add_parser("send", help="Send XLM")
    p_send.add_argument("destination", help="Destination G... or C... address")
    p_send.add_argument("amount", help="Amount in XLM")
    p_send.add_argument(
        "--from-classic",
        action="store_true",
        help="Send from the owner's classic account instead of the account contract",
    )
    p_send.add_argument(
        "--authorizer",
        choices=[kind.value for kind in AuthorizerKind],
        default=AuthorizerKind.CONTRACT.value,
        help="Signature encoding expected by the account contract",
    )
    p_send.add_argument("--gasless", action="store_true", help="Submit through the fee-paying relayer")
    p_send.set_defaults(func=_cmd_send)

    p_balance = sub.add_parser("balance", help="Show XLM balance")
    p_balance.add_argument("address", nargs="?", help="Address (default: own account contract)")
    p_balance.set_defaults(func=_cmd_balance)

    p_history = sub.add_parser("history", help="Show recent XLM transfers")
    p_history.add_argument("address", nargs="?", help="Address (default: own account contract)")
    p_history.add_argument("--limit", type=int, default=5, help="Number of transfers")
    p_history.add_argument("--json", action="store_true", help="Emit JSON")
    p_history.set_defaults(func=_cmd_history)

    p_ttl = sub.add_parser("ttl", help="Show or extend an account contract's TTLs")
    p_ttl.add_argument("address", nargs="?", help="Contract address (default: own account contract)")
    p_ttl.add_argument("--bump", choices=["instance", "code", "balance"], help="Extend one entry")
    p_ttl.set_defaults(func=_cmd_ttl)

    p_health = sub.add_parser("health", help="Check (and maintain) shared contract resources")
    p_health.add_argument("--bump", action="store_true", help="Extend near-expiry and restore archived entries")
    p_health.add_argument("--install", action="store_true", help="Install missing code from local WASM")
    p_health.add_argument("--json", action="store_true", help="Emit JSON")
    p_health.set_defaults(func=_cmd_health)

    p_fund = sub.add_parser("fund", help="Fund an address from the testnet friendbot")
    p_fund.add_argument("address", nargs="?", help="G... or C... address (default: owner account)")
    p_fund.set_defaults(func=_cmd_fund)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except SubmissionTimeout as exc:
        print(str(exc))
        print(f"Check transaction {exc.hash} before retrying")
        return 2
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except (LumenitosError, ValueError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
