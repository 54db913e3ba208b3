"""Tests for the policy resolver — proves runtime policy loads and validates fail-closed."""

import copy
import json
import pytest
from pathlib import Path

from cashlink.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


def _params() -> dict:
    with (CONFIG_DIR / "cashlink_params.json").open("r", encoding="utf-8") as f:
        return json.load(f)


class TestDefaults:
    def test_arithmetic_bounds(self, resolver: PolicyResolver) -> None:
        assert resolver.amount_ceiling() == 2**64 - 1
        assert resolver.bps_denominator() == 10_000
        assert resolver.ppm_denominator() == 1_000_000

    def test_redemption_policy(self, resolver: PolicyResolver) -> None:
        assert resolver.fully_redeemed_rule() == "dust_threshold"
        assert resolver.default_min_amount() == 1

    def test_lifecycle_policy(self, resolver: PolicyResolver) -> None:
        assert resolver.close_requires_no_redemptions() is True
        assert resolver.seconds_per_day() == 86_400
        assert resolver.link_storage_deposit() == 2000

    def test_sinks(self, resolver: PolicyResolver) -> None:
        assert resolver.platform_fee_account() == "platform_fees"
        assert resolver.fee_payer_account() == "fee_payer"


class TestOverrides:
    def test_override_leaf(self, resolver: PolicyResolver) -> None:
        legacy = resolver.with_overrides(fully_redeemed_rule="exhausted_only")
        assert legacy.fully_redeemed_rule() == "exhausted_only"
        assert resolver.fully_redeemed_rule() == "dust_threshold"

    def test_unknown_key(self, resolver: PolicyResolver) -> None:
        with pytest.raises(ValueError, match="Unknown policy parameter"):
            resolver.with_overrides(no_such_knob=1)

    def test_override_is_validated(self, resolver: PolicyResolver) -> None:
        with pytest.raises(ValueError):
            resolver.with_overrides(fully_redeemed_rule="whenever")


class TestValidation:
    def test_missing_section(self) -> None:
        params = _params()
        del params["sinks"]
        with pytest.raises(ValueError, match="sinks"):
            PolicyResolver(params)

    @pytest.mark.parametrize("section, key, value", [
        ("amounts", "amount_ceiling", 0),
        ("amounts", "bps_denominator", 0),
        ("redemption", "default_min_amount", 0),
        ("lifecycle", "link_storage_deposit", -1),
        ("lifecycle", "seconds_per_day", 0),
    ])
    def test_bad_values(self, section: str, key: str, value: int) -> None:
        params = copy.deepcopy(_params())
        params[section][key] = value
        with pytest.raises(ValueError):
            PolicyResolver(params)
