"""Cash link CLI — command-line interface for the redemption engine.

Usage:
    python -m cashlink.cli status
    python -m cashlink.cli fund --account alice --amount 50000
    python -m cashlink.cli init-link --authority svc --owner alice --amount 10000 \
        --fee-bps 100 --network-fee 50 --base-fee 10 --rent-fee 5 \
        --distribution fixed --max-redemptions 2
    python -m cashlink.cli redeem --link-id link_abc --authority svc --recipient bob
    python -m cashlink.cli cancel --link-id link_abc --authority svc
    python -m cashlink.cli expire --link-id link_abc
    python -m cashlink.cli close --link-id link_abc --authority svc --destination alice
    python -m cashlink.cli show --link-id link_abc
    python -m cashlink.cli check-invariants

CASHLINK_RPC_URL (environment or .env) switches Random draws to the
block-hash seed source.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from cashlink.crypto.seed_source import BlockhashSeedSource, LocalSeedSource, SeedSource
from cashlink.models.link import DistributionType
from cashlink.persistence.event_log import EventLog
from cashlink.persistence.state_store import StateStore, link_to_dict
from cashlink.policy.resolver import PolicyResolver
from cashlink.service import CashLinkService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _seed_source() -> SeedSource:
    rpc_url = os.environ.get("CASHLINK_RPC_URL")
    if rpc_url:
        return BlockhashSeedSource(rpc_url=rpc_url)
    return LocalSeedSource()


def _make_service(config_dir: Path, data_dir: Path = DEFAULT_DATA) -> CashLinkService:
    """Create a CashLinkService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(data_dir / "state.json")
    return CashLinkService(
        resolver,
        seed_source=_seed_source(),
        event_log=event_log,
        state_store=state_store,
    )


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_fund(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.fund_account(args.account, args.amount, mint=args.mint))


def cmd_init_link(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.init_link(
        authority=args.authority,
        owner=args.owner,
        amount=args.amount,
        fee_bps=args.fee_bps,
        network_fee=args.network_fee,
        base_fee_to_redeem=args.base_fee,
        rent_fee_to_redeem=args.rent_fee,
        distribution_type=args.distribution,
        max_num_redemptions=args.max_redemptions,
        mint=args.mint,
        min_amount=args.min_amount,
        pass_key=args.pass_key,
        expires_in_days=args.expires_in_days,
        fingerprint_enabled=args.fingerprint_enabled,
        track_claimants=args.track_claimants,
        allow_cancel_after_redemption=not args.no_cancel_after_redemption,
        link_id=args.link_id,
    )
    return _report(result)


def cmd_redeem(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.redeem(
        args.link_id,
        authority=args.authority,
        recipient=args.recipient,
        pass_key=args.pass_key,
        referrer=args.referrer,
        referrer_fee_bps=args.referrer_fee_bps,
        referee_fee_bps=args.referee_fee_bps,
        weight_ppm=args.weight_ppm,
        fingerprint=args.fingerprint,
        seed=args.seed,
        signature=args.signature,
    )
    return _report(result)


def cmd_cancel(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.cancel(
        args.link_id, authority=args.authority,
        pass_key=args.pass_key, signature=args.signature,
    ))


def cmd_expire(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.expire(args.link_id))


def cmd_close(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.close(
        args.link_id, authority=args.authority,
        destination=args.destination, signature=args.signature,
    ))


def cmd_show(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    link = service.get_link(args.link_id)
    if link is None:
        print(f"Failed: Link not found: {args.link_id}", file=sys.stderr)
        return 1
    data = link_to_dict(link)
    data.pop("pass_key", None)
    data["redeemed_total"] = link.redeemed_total
    data["escrow_balance"] = service.escrow_balance(link.link_id)
    data["redemptions"] = [
        {"claimant": r.claimant, "amount": r.amount, "redeemed_utc": r.redeemed_utc.isoformat()}
        for r in service.get_redemptions(link.link_id)
    ]
    print(json.dumps(data, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run policy and state invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(config_dir=args.config, data_dir=args.data)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cashlink",
        description="Cash link redemption engine CLI",
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
        help="Path to data directory (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show service status")

    # fund
    p_fund = sub.add_parser("fund", help="Credit value to an account")
    p_fund.add_argument("--account", required=True, help="Account name")
    p_fund.add_argument("--amount", required=True, type=int, help="Amount in smallest units")
    p_fund.add_argument("--mint", help="Mint (default: native)")

    # init-link
    p_init = sub.add_parser("init-link", help="Create and fund a link")
    p_init.add_argument("--authority", required=True, help="Redemption authority")
    p_init.add_argument("--owner", required=True, help="Sender funding the link")
    p_init.add_argument("--amount", required=True, type=int)
    p_init.add_argument("--fee-bps", type=int, default=0)
    p_init.add_argument("--network-fee", type=int, default=0)
    p_init.add_argument("--base-fee", type=int, default=0)
    p_init.add_argument("--rent-fee", type=int, default=0)
    p_init.add_argument(
        "--distribution", default="fixed",
        choices=[d.value for d in DistributionType],
        help="Distribution type (default: fixed)",
    )
    p_init.add_argument("--max-redemptions", type=int, default=1)
    p_init.add_argument("--mint", help="Mint (default: native)")
    p_init.add_argument("--min-amount", type=int, help="Random distribution floor")
    p_init.add_argument("--pass-key", help="Gate redemptions behind a pass key")
    p_init.add_argument("--expires-in-days", type=int)
    p_init.add_argument("--fingerprint-enabled", action="store_true")
    p_init.add_argument("--track-claimants", action="store_true")
    p_init.add_argument("--no-cancel-after-redemption", action="store_true")
    p_init.add_argument("--link-id", help="Explicit link ID")

    # redeem
    p_redeem = sub.add_parser("redeem", help="Redeem a link")
    p_redeem.add_argument("--link-id", required=True)
    p_redeem.add_argument("--authority", required=True)
    p_redeem.add_argument("--recipient", required=True)
    p_redeem.add_argument("--pass-key")
    p_redeem.add_argument("--referrer")
    p_redeem.add_argument("--referrer-fee-bps", type=int)
    p_redeem.add_argument("--referee-fee-bps", type=int)
    p_redeem.add_argument("--weight-ppm", type=int)
    p_redeem.add_argument("--fingerprint")
    p_redeem.add_argument("--seed", type=int, help="Explicit Random seed")
    p_redeem.add_argument("--signature", help="Authority signature (hex)")

    # cancel
    p_cancel = sub.add_parser("cancel", help="Cancel a link and refund the owner")
    p_cancel.add_argument("--link-id", required=True)
    p_cancel.add_argument("--authority", required=True)
    p_cancel.add_argument("--pass-key")
    p_cancel.add_argument("--signature")

    # expire
    p_expire = sub.add_parser("expire", help="Expire a link past its expiry")
    p_expire.add_argument("--link-id", required=True)

    # close
    p_close = sub.add_parser("close", help="Close a settled link")
    p_close.add_argument("--link-id", required=True)
    p_close.add_argument("--authority", required=True)
    p_close.add_argument("--destination", required=True)
    p_close.add_argument("--signature")

    # show
    p_show = sub.add_parser("show", help="Show a link")
    p_show.add_argument("--link-id", required=True)

    # check-invariants
    sub.add_parser("check-invariants", help="Run policy and state invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "fund": cmd_fund,
        "init-link": cmd_init_link,
        "redeem": cmd_redeem,
        "cancel": cmd_cancel,
        "expire": cmd_expire,
        "close": cmd_close,
        "show": cmd_show,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
