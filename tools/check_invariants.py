#!/usr/bin/env python3
"""Cash link invariant checks against the policy file and the persisted state."""

import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
DATA_DIR = ROOT / "data"
PARAMS_FILENAME = "cashlink_params.json"
STATE_FILENAME = "state.json"

U64_MAX = 2**64 - 1
KNOWN_STATES = {
    "uninitialized", "initialized", "redeeming", "redeemed",
    "canceled", "expired", "closed",
}
ACTIVE_STATES = {"initialized", "redeeming"}
SCHEMA_VERSION = 1


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_params(params: dict, errors: list[str]) -> None:
    """Policy values the engine relies on."""
    for section in ("amounts", "redemption", "lifecycle", "sinks"):
        if section not in params:
            errors.append(f"Policy missing section: {section}")
    if errors:
        return

    amounts = params["amounts"]
    if amounts["bps_denominator"] != 10_000:
        errors.append(f"bps_denominator must be 10000, got {amounts['bps_denominator']}")
    if amounts["ppm_denominator"] != 1_000_000:
        errors.append(f"ppm_denominator must be 1000000, got {amounts['ppm_denominator']}")
    ceiling = amounts["amount_ceiling"]
    if not 0 < ceiling <= U64_MAX:
        errors.append(f"amount_ceiling must be in (0, 2**64-1], got {ceiling}")

    redemption = params["redemption"]
    if redemption["fully_redeemed_rule"] not in ("dust_threshold", "exhausted_only"):
        errors.append(
            f"fully_redeemed_rule must be dust_threshold or exhausted_only, "
            f"got {redemption['fully_redeemed_rule']!r}"
        )
    if redemption["default_min_amount"] < 1:
        errors.append("default_min_amount must be >= 1")

    lifecycle = params["lifecycle"]
    if lifecycle["seconds_per_day"] != 86_400:
        errors.append(f"seconds_per_day must be 86400, got {lifecycle['seconds_per_day']}")
    if lifecycle["link_storage_deposit"] < 0:
        errors.append("link_storage_deposit must be >= 0")
    if not isinstance(lifecycle["close_requires_no_redemptions"], bool):
        errors.append("close_requires_no_redemptions must be a boolean")

    sinks = params["sinks"]
    if not sinks.get("platform_fee_account") or not sinks.get("fee_payer_account"):
        errors.append("platform_fee_account and fee_payer_account must be set")
    elif sinks["platform_fee_account"] == sinks["fee_payer_account"]:
        errors.append("platform and fee-payer sinks must be distinct accounts")


def check_link(link: dict, open_escrows: set, errors: list[str]) -> None:
    """Accounting invariants of a single persisted link."""
    lid = link.get("link_id", "?")
    if link.get("schema_version") != SCHEMA_VERSION:
        errors.append(f"{lid}: unknown schema_version {link.get('schema_version')!r}")
    state = link.get("state")
    if state not in KNOWN_STATES:
        errors.append(f"{lid}: unknown state {state!r}")
        return

    amount = link["amount"]
    remaining = link["remaining_amount"]
    if not 0 <= remaining <= amount:
        errors.append(f"{lid}: remaining_amount {remaining} outside [0, {amount}]")
    if link["total_redemptions"] > link["max_num_redemptions"]:
        errors.append(
            f"{lid}: total_redemptions {link['total_redemptions']} exceeds "
            f"max_num_redemptions {link['max_num_redemptions']}"
        )
    if link["total_weight_ppm"] > 1_000_000:
        errors.append(f"{lid}: total_weight_ppm {link['total_weight_ppm']} exceeds 1000000")
    if link["distribution_type"] == "fixed" and amount % link["max_num_redemptions"]:
        errors.append(f"{lid}: fixed amount not divisible by max_num_redemptions")
    if link["distribution_type"] == "random" and link["min_amount"] > amount:
        errors.append(f"{lid}: min_amount exceeds amount")

    escrow_open = f"vault:{lid}" in open_escrows
    if state in ACTIVE_STATES and not escrow_open:
        errors.append(f"{lid}: {state} link has no open escrow")
    if state not in ACTIVE_STATES and escrow_open:
        errors.append(f"{lid}: {state} link still has an open escrow")
    if state == "closed" and f"link:{lid}" in open_escrows:
        errors.append(f"{lid}: closed link still holds its storage deposit")


def check_state(state: dict, errors: list[str]) -> None:
    if state.get("schema_version") != SCHEMA_VERSION:
        errors.append(f"State file schema_version {state.get('schema_version')!r} is unknown")
        return

    open_escrows = {row["account"] for row in state.get("ledger", {}).get("escrows", [])}
    for row in state.get("ledger", {}).get("balances", []):
        if row["amount"] < 0:
            errors.append(f"Negative balance: {row['account']} = {row['amount']}")

    links = {link["link_id"]: link for link in state.get("links", [])}
    for link in links.values():
        check_link(link, open_escrows, errors)

    claimed: dict[str, list[int]] = {}
    for claim in state.get("claims", {}).get("claims", []):
        if claim["link_id"] not in links:
            errors.append(f"Claim by {claim['claimant']} for unknown link {claim['link_id']}")
            continue
        claimed.setdefault(claim["link_id"], []).append(claim["amount"])
    for lid, amounts in claimed.items():
        link = links[lid]
        if len(amounts) > link["total_redemptions"]:
            errors.append(f"{lid}: more claim records than redemptions")
        if sum(amounts) != link["amount"] - link["remaining_amount"]:
            errors.append(
                f"{lid}: claim records sum to {sum(amounts)}, link paid out "
                f"{link['amount'] - link['remaining_amount']}"
            )


def check(config_dir: Optional[Path] = None, data_dir: Optional[Path] = None) -> int:
    config_dir = Path(config_dir) if config_dir is not None else CONFIG_DIR
    data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
    errors: list[str] = []

    check_params(load_json(config_dir / PARAMS_FILENAME), errors)

    state_path = data_dir / STATE_FILENAME
    if state_path.exists():
        check_state(load_json(state_path), errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
