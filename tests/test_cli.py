"""Tests for the cash link CLI — proves commands dispatch and persist between runs."""

import json
import pytest
from pathlib import Path

from cashlink.cli import build_parser, main


@pytest.fixture(autouse=True)
def _no_rpc(monkeypatch) -> None:
    monkeypatch.delenv("CASHLINK_RPC_URL", raising=False)


def _run(data: Path, *argv: str) -> int:
    return main(["--data", str(data), *argv])


def _last_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_init_link_command(self) -> None:
        args = build_parser().parse_args([
            "init-link", "--authority", "svc", "--owner", "alice",
            "--amount", "1000", "--distribution", "random", "--min-amount", "10",
            "--max-redemptions", "4", "--no-cancel-after-redemption",
        ])
        assert args.command == "init-link"
        assert args.distribution == "random"
        assert args.min_amount == 10
        assert args.no_cancel_after_redemption is True

    def test_unknown_distribution_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "init-link", "--authority", "svc", "--owner", "alice",
                "--amount", "1000", "--distribution", "lottery",
            ])


class TestCLIExecution:
    def test_no_command_shows_help(self, tmp_path: Path) -> None:
        assert _run(tmp_path) == 0

    def test_status_runs(self, tmp_path: Path, capsys) -> None:
        assert _run(tmp_path, "status") == 0
        assert _last_json(capsys)["links"]["total"] == 0

    def test_lifecycle_across_invocations(self, tmp_path: Path, capsys) -> None:
        assert _run(tmp_path, "fund", "--account", "alice", "--amount", "100000") == 0
        assert _run(tmp_path, "fund", "--account", "fee_payer", "--amount", "10000") == 0
        capsys.readouterr()

        assert _run(
            tmp_path, "init-link", "--authority", "svc", "--owner", "alice",
            "--amount", "10000", "--fee-bps", "100", "--network-fee", "50",
            "--base-fee", "10", "--rent-fee", "5", "--max-redemptions", "2",
            "--link-id", "cli_link",
        ) == 0
        assert _last_json(capsys)["locked_total"] == 10_180

        assert _run(
            tmp_path, "redeem", "--link-id", "cli_link",
            "--authority", "svc", "--recipient", "bob",
        ) == 0
        redeemed = _last_json(capsys)
        assert redeemed["amount_to_redeem"] == 5000
        assert redeemed["total_fee_to_redeem"] == 115

        assert _run(tmp_path, "cancel", "--link-id", "cli_link", "--authority", "svc") == 0
        assert _last_json(capsys)["refunded"] == 5000

        assert _run(tmp_path, "show", "--link-id", "cli_link") == 0
        shown = _last_json(capsys)
        assert shown["state"] == "canceled"
        assert shown["escrow_balance"] == 0
        assert "pass_key" not in shown
        assert shown["redeemed_total"] == 5000

        assert _run(tmp_path, "check-invariants") == 0
        assert (tmp_path / "events.jsonl").exists()

    def test_failure_goes_to_stderr(self, tmp_path: Path, capsys) -> None:
        assert _run(
            tmp_path, "redeem", "--link-id", "missing",
            "--authority", "svc", "--recipient", "bob",
        ) == 1
        assert "Failed:" in capsys.readouterr().err

    def test_show_unknown_link(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "show", "--link-id", "missing") == 1
