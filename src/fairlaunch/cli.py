"""Fairlaunch CLI — command-line interface for the campaign engine.

State lives in a data directory (events.jsonl, state.json and the pool
authority key) and custody is the in-memory ledger persisted there, so
a sequence of invocations behaves like one long-running engine.

All amounts are integers in base units.

Usage:
    fairlaunch deposit --account alice --amount 20000000000
    fairlaunch initialize --creator alice --name Moon --ticker MOON \\
        --supply 1000000000 --target 20000000000 --decimals 9
    fairlaunch contribute --campaign campaign_ab12cd34ef56 --contributor bob --amount 10000000000
    fairlaunch finalize --campaign campaign_ab12cd34ef56
    fairlaunch show --campaign campaign_ab12cd34ef56
    fairlaunch status
"""

from __future__ import annotations

import argparse
import json
import secrets
import sys
from pathlib import Path

from fairlaunch.collaborators.tokens import AuthorityIssuer
from fairlaunch.config import LaunchConfig
from fairlaunch.logging_setup import configure_logging
from fairlaunch.persistence.event_log import EventLog
from fairlaunch.persistence.state_store import StateStore
from fairlaunch.service import LaunchService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path.cwd() / "data"

AUTHORITY_KEY_FILE = "authority.key"


def _load_authority_key(data_dir: Path) -> bytes:
    """Read the issuer key, creating it on first use."""
    path = data_dir / AUTHORITY_KEY_FILE
    if path.exists():
        return bytes.fromhex(path.read_text(encoding="utf-8").strip())
    key = secrets.token_bytes(32)
    path.write_text(key.hex(), encoding="utf-8")
    path.chmod(0o600)
    return key


def _make_service(args: argparse.Namespace) -> LaunchService:
    """Create a LaunchService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    config = LaunchConfig.from_config_dir(args.config)
    return LaunchService(
        config,
        issuer=AuthorityIssuer(_load_authority_key(data_dir)),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, sort_keys=True))
        for warning in result.errors:
            print(f"Warning: {warning}", file=sys.stderr)
        return 0
    print(f"Failed [{result.error_kind}]: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_deposit(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.deposit(args.account, args.amount))


def cmd_initialize(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.initialize(
        creator_id=args.creator,
        name=args.name,
        ticker=args.ticker,
        total_supply=args.supply,
        target=args.target,
        decimals=args.decimals,
        initial_contribution=args.initial_contribution,
        campaign_id=args.id,
    ))


def cmd_contribute(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.contribute(args.campaign, args.contributor, args.amount))


def cmd_refund(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.refund(args.campaign, args.contributor))


def cmd_finalize(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.finalize(args.campaign))


def cmd_show(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.show(args.campaign))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fairlaunch",
        description="Fairlaunch — crowdfunded token launches with liquidity bootstrap",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: ./data)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show system status")

    # deposit
    p_dep = sub.add_parser("deposit", help="Credit an account in local custody")
    p_dep.add_argument("--account", required=True, help="Account ID")
    p_dep.add_argument("--amount", required=True, type=int, help="Amount in base units")

    # initialize
    p_init = sub.add_parser("initialize", help="Open a new campaign")
    p_init.add_argument("--creator", required=True, help="Creator account ID (pays the creation fee)")
    p_init.add_argument("--name", required=True, help="Token name")
    p_init.add_argument("--ticker", required=True, help="Token ticker")
    p_init.add_argument("--supply", required=True, type=int, help="Total token supply")
    p_init.add_argument("--target", required=True, type=int, help="Funding target in base units")
    p_init.add_argument("--decimals", type=int, default=9, help="Token decimals (default: 9)")
    p_init.add_argument(
        "--initial-contribution", type=int, default=0,
        help="Creator's own first contribution in base units (default: 0)",
    )
    p_init.add_argument("--id", help="Campaign ID (default: generated)")

    # contribute
    p_con = sub.add_parser("contribute", help="Contribute to a campaign")
    p_con.add_argument("--campaign", required=True, help="Campaign ID")
    p_con.add_argument("--contributor", required=True, help="Contributor account ID")
    p_con.add_argument("--amount", required=True, type=int, help="Amount in base units")

    # refund
    p_ref = sub.add_parser("refund", help="Refund a contributor of an expired campaign")
    p_ref.add_argument("--campaign", required=True, help="Campaign ID")
    p_ref.add_argument("--contributor", required=True, help="Contributor account ID")

    # finalize
    p_fin = sub.add_parser("finalize", help="Finalize a funded campaign")
    p_fin.add_argument("--campaign", required=True, help="Campaign ID")

    # show
    p_show = sub.add_parser("show", help="Show a campaign and its contributions")
    p_show.add_argument("--campaign", required=True, help="Campaign ID")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.log_level, json_output=args.json_logs)

    commands = {
        "status": cmd_status,
        "deposit": cmd_deposit,
        "initialize": cmd_initialize,
        "contribute": cmd_contribute,
        "refund": cmd_refund,
        "finalize": cmd_finalize,
        "show": cmd_show,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
