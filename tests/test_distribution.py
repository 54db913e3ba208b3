"""Tests for distribution strategies — proves each policy pays what it promises."""

import pytest
from pathlib import Path

from cashlink.accounting.distribution import DistributionStrategy
from cashlink.models.errors import ConfigurationError, DistributionError, ErrorCode
from cashlink.models.link import DistributionType, Link
from cashlink.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def strategy() -> DistributionStrategy:
    return DistributionStrategy(PolicyResolver.from_config_dir(CONFIG_DIR))


def _link(
    kind: DistributionType,
    amount: int = 1000,
    max_redemptions: int = 4,
    remaining: int | None = None,
    total: int = 0,
    min_amount: int = 1,
    total_weight_ppm: int = 0,
) -> Link:
    return Link(
        link_id="link_dist",
        authority="svc",
        owner="alice",
        amount=amount,
        fee_bps=0,
        network_fee=0,
        base_fee_to_redeem=0,
        rent_fee_to_redeem=0,
        distribution_type=kind,
        max_num_redemptions=max_redemptions,
        remaining_amount=amount if remaining is None else remaining,
        total_redemptions=total,
        min_amount=min_amount,
        total_weight_ppm=total_weight_ppm,
    )


class TestFixed:
    def test_even_split(self, strategy: DistributionStrategy) -> None:
        quote = strategy.quote(_link(DistributionType.FIXED, amount=1000))
        assert quote.amount == 250

    def test_indivisible_amount_rejected_at_creation(
        self, strategy: DistributionStrategy,
    ) -> None:
        with pytest.raises(ConfigurationError) as exc:
            strategy.validate_configuration(DistributionType.FIXED, 1001, 4, None)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_divisible_amount_accepted(self, strategy: DistributionStrategy) -> None:
        strategy.validate_configuration(DistributionType.FIXED, 1000, 4, None)


class TestEqual:
    def test_indivisible_amount_allowed(self, strategy: DistributionStrategy) -> None:
        strategy.validate_configuration(DistributionType.EQUAL, 1001, 4, None)

    def test_pays_floor_share(self, strategy: DistributionStrategy) -> None:
        quote = strategy.quote(_link(DistributionType.EQUAL, amount=1001))
        assert quote.amount == 250


class TestRandom:
    def test_min_amount_required(self, strategy: DistributionStrategy) -> None:
        with pytest.raises(ConfigurationError) as exc:
            strategy.validate_configuration(DistributionType.RANDOM, 1000, 4, None)
        assert exc.value.code == ErrorCode.MIN_AMOUNT_NOT_SET

    def test_min_amount_above_amount_rejected(
        self, strategy: DistributionStrategy,
    ) -> None:
        with pytest.raises(ConfigurationError) as exc:
            strategy.validate_configuration(DistributionType.RANDOM, 1000, 4, 1001)
        assert exc.value.code == ErrorCode.MIN_AMOUNT_MUST_BE_LESS_THAN_AMOUNT

    def test_min_amount_equal_to_amount_allowed(
        self, strategy: DistributionStrategy,
    ) -> None:
        strategy.validate_configuration(DistributionType.RANDOM, 1000, 1, 1000)

    def test_bounds(self, strategy: DistributionStrategy) -> None:
        link = _link(DistributionType.RANDOM, amount=1000, min_amount=10)
        quote = strategy.quote(link, seed=0)
        # average 250 → max_possible 500
        assert quote.min_possible == 10
        assert quote.max_possible == 500
        assert quote.amount == 10

    def test_seed_maps_onto_inclusive_range(
        self, strategy: DistributionStrategy,
    ) -> None:
        link = _link(DistributionType.RANDOM, amount=1000, min_amount=10)
        assert strategy.quote(link, seed=490).amount == 500
        assert strategy.quote(link, seed=491).amount == 10
        assert strategy.quote(link, seed=491 * 7 + 100).amount == 110

    def test_last_redemption_takes_remaining(
        self, strategy: DistributionStrategy,
    ) -> None:
        link = _link(
            DistributionType.RANDOM, amount=1000, max_redemptions=3,
            remaining=123, total=2, min_amount=10,
        )
        quote = strategy.quote(link, seed=999)
        assert quote.amount == 123

    def test_single_redemption_takes_everything(
        self, strategy: DistributionStrategy,
    ) -> None:
        link = _link(DistributionType.RANDOM, amount=1000, max_redemptions=1, min_amount=5)
        assert strategy.quote(link).amount == 1000

    def test_min_above_ceiling_pays_min(self, strategy: DistributionStrategy) -> None:
        link = _link(
            DistributionType.RANDOM, amount=1000, max_redemptions=4,
            remaining=100, total=1, min_amount=80,
        )
        quote = strategy.quote(link, seed=12345)
        assert quote.max_possible == 66
        assert quote.amount == 80

    def test_missing_seed_is_a_programming_error(
        self, strategy: DistributionStrategy,
    ) -> None:
        link = _link(DistributionType.RANDOM, amount=1000, min_amount=10)
        with pytest.raises(ValueError):
            strategy.quote(link)


class TestWeighted:
    def test_share_of_amount(self, strategy: DistributionStrategy) -> None:
        link = _link(DistributionType.WEIGHTED, amount=10_000)
        quote = strategy.quote(link, weight_ppm=400_000)
        assert quote.amount == 4000
        assert quote.total_weight_ppm == 400_000

    def test_weight_required(self, strategy: DistributionStrategy) -> None:
        with pytest.raises(DistributionError) as exc:
            strategy.quote(_link(DistributionType.WEIGHTED))
        assert exc.value.code == ErrorCode.WEIGHT_NOT_PROVIDED

    @pytest.mark.parametrize("weight", [0, -5, 1_000_001])
    def test_weight_out_of_range(
        self, strategy: DistributionStrategy, weight: int,
    ) -> None:
        with pytest.raises(DistributionError) as exc:
            strategy.quote(_link(DistributionType.WEIGHTED), weight_ppm=weight)
        assert exc.value.code == ErrorCode.INVALID_WEIGHT

    def test_cumulative_weight_budget(self, strategy: DistributionStrategy) -> None:
        link = _link(DistributionType.WEIGHTED, amount=10_000, total_weight_ppm=800_000)
        with pytest.raises(DistributionError) as exc:
            strategy.quote(link, weight_ppm=300_000)
        assert exc.value.code == ErrorCode.TOTAL_WEIGHT_EXCEEDED

    def test_exact_budget_allowed(self, strategy: DistributionStrategy) -> None:
        link = _link(DistributionType.WEIGHTED, amount=10_000, total_weight_ppm=800_000)
        quote = strategy.quote(link, weight_ppm=200_000)
        assert quote.total_weight_ppm == 1_000_000

    def test_capped_at_remaining(self, strategy: DistributionStrategy) -> None:
        link = _link(DistributionType.WEIGHTED, amount=10_000, remaining=1000)
        assert strategy.quote(link, weight_ppm=500_000).amount == 1000
