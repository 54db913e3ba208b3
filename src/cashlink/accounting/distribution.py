"""Distribution strategy — computes how much the next redemption pays.

Four policies:

    FIXED     amount / max_num_redemptions; creation requires exact divisibility
    EQUAL     same formula, no divisibility check (remainder is swept at the end)
    RANDOM    uniform draw in [min_possible, max_possible]; last claim takes the rest
    WEIGHTED  amount × weight_ppm / 1_000_000, capped at remaining_amount

The strategy is pure: it reads the link and returns a DistributionQuote.
The accounting engine applies the quote.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from cashlink.accounting.fees import checked_add, checked_div, checked_mul
from cashlink.models.errors import (
    ConfigurationError,
    DistributionError,
    ErrorCode,
)
from cashlink.models.link import DistributionType, Link
from cashlink.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class DistributionQuote:
    """Amount for the next redemption plus the state it implies."""
    amount: int
    total_weight_ppm: int
    min_possible: Optional[int] = None
    max_possible: Optional[int] = None


class DistributionStrategy:
    """Dispatches to the link's distribution policy.

    Usage:
        strategy = DistributionStrategy(resolver)
        quote = strategy.quote(link, weight_ppm=250_000)
        quote = strategy.quote(random_link, draw_seed=seed_source.next_seed)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._ceiling = resolver.amount_ceiling()
        self._ppm = resolver.ppm_denominator()

    def validate_configuration(
        self,
        distribution_type: DistributionType,
        amount: int,
        max_num_redemptions: int,
        min_amount: Optional[int],
    ) -> None:
        """Creation-time checks that depend on the distribution policy."""
        if distribution_type == DistributionType.FIXED:
            if amount % max_num_redemptions != 0:
                raise ConfigurationError(
                    ErrorCode.INVALID_AMOUNT,
                    f"Fixed distribution needs amount ({amount}) divisible by "
                    f"max_num_redemptions ({max_num_redemptions})",
                )
        if distribution_type == DistributionType.RANDOM and min_amount is None:
            raise ConfigurationError(
                ErrorCode.MIN_AMOUNT_NOT_SET,
                "Random distribution requires min_amount",
            )
        if min_amount is not None and min_amount > amount:
            raise ConfigurationError(
                ErrorCode.MIN_AMOUNT_MUST_BE_LESS_THAN_AMOUNT,
                f"min_amount ({min_amount}) exceeds amount ({amount})",
            )

    def quote(
        self,
        link: Link,
        weight_ppm: Optional[int] = None,
        seed: Optional[int] = None,
        draw_seed: Optional[Callable[[], int]] = None,
    ) -> DistributionQuote:
        """Compute the amount for the next redemption of this link.

        Random links use the explicit seed when given. Otherwise draw_seed
        is called, and only when the range actually needs a draw.
        """
        if link.distribution_type == DistributionType.FIXED:
            return self._per_redemption(link)
        if link.distribution_type == DistributionType.EQUAL:
            return self._per_redemption(link)
        if link.distribution_type == DistributionType.RANDOM:
            return self._random(link, seed, draw_seed)
        if link.distribution_type == DistributionType.WEIGHTED:
            return self._weighted(link, weight_ppm)
        raise DistributionError(
            ErrorCode.INVALID_WEIGHT,
            f"Unknown distribution type: {link.distribution_type}",
        )

    def _per_redemption(self, link: Link) -> DistributionQuote:
        amount = checked_div(link.amount, link.max_num_redemptions)
        return DistributionQuote(amount=amount, total_weight_ppm=link.total_weight_ppm)

    def _random(
        self,
        link: Link,
        seed: Optional[int],
        draw_seed: Optional[Callable[[], int]],
    ) -> DistributionQuote:
        remaining = link.remaining_amount

        # Last claim takes everything left: no dust stays behind.
        if (
            link.max_num_redemptions == 1
            or link.total_redemptions == link.max_num_redemptions - 1
        ):
            return DistributionQuote(
                amount=remaining,
                total_weight_ppm=link.total_weight_ppm,
                min_possible=remaining,
                max_possible=remaining,
            )

        remaining_redemptions = link.max_num_redemptions - link.total_redemptions
        average_possible = checked_div(remaining, remaining_redemptions)
        max_possible = min(checked_mul(average_possible, 2, self._ceiling), remaining)
        min_possible = min(link.min_amount, remaining)

        if max_possible > min_possible:
            if seed is None:
                if draw_seed is None:
                    raise ValueError("Random distribution requires a seed")
                seed = draw_seed()
            span = checked_add(max_possible - min_possible, 1, self._ceiling)
            amount = min_possible + (seed % span)
        else:
            amount = min_possible

        return DistributionQuote(
            amount=amount,
            total_weight_ppm=link.total_weight_ppm,
            min_possible=min_possible,
            max_possible=max_possible,
        )

    def _weighted(self, link: Link, weight_ppm: Optional[int]) -> DistributionQuote:
        if weight_ppm is None:
            raise DistributionError(
                ErrorCode.WEIGHT_NOT_PROVIDED,
                "Weighted distribution requires weight_ppm",
            )
        if weight_ppm <= 0 or weight_ppm > self._ppm:
            raise DistributionError(
                ErrorCode.INVALID_WEIGHT,
                f"weight_ppm must be in (0, {self._ppm}], got {weight_ppm}",
            )

        new_total = checked_add(link.total_weight_ppm, weight_ppm, self._ceiling)
        if new_total > self._ppm:
            raise DistributionError(
                ErrorCode.TOTAL_WEIGHT_EXCEEDED,
                f"Cumulative weight {new_total} ppm exceeds {self._ppm} ppm "
                f"(already allocated {link.total_weight_ppm} ppm)",
            )

        share = checked_mul(link.amount, weight_ppm, self._ceiling) // self._ppm
        return DistributionQuote(
            amount=min(share, link.remaining_amount),
            total_weight_ppm=new_total,
        )
