"""Fee calculator — basis-point and fixed-fee arithmetic, overflow-checked.

Amounts live in the unsigned 64-bit range by default. Every addition,
multiplication and subtraction is checked against that range and raises
AmountOverflowError instead of wrapping:

    fee_from_bps(amount, bps)   = floor(amount × bps / 10000)
    total_platform_fee          = fee_from_bps(amount, fee_bps) + network_fee
    total_redemption_fee_budget = (base_fee + rent_fee) × max_num_redemptions
    locked_total                = amount + total_platform_fee + total_redemption_fee_budget
"""

from __future__ import annotations

from cashlink.models.errors import AmountOverflowError
from cashlink.models.link import Link
from cashlink.policy.resolver import PolicyResolver


U64_MAX = 2**64 - 1
BPS_DENOMINATOR = 10_000


def checked_add(a: int, b: int, ceiling: int = U64_MAX) -> int:
    result = a + b
    if a < 0 or b < 0 or result > ceiling:
        raise AmountOverflowError(f"{a} + {b} leaves [0, {ceiling}]")
    return result


def checked_sub(a: int, b: int) -> int:
    if b < 0 or b > a:
        raise AmountOverflowError(f"{a} - {b} underflows")
    return a - b


def checked_mul(a: int, b: int, ceiling: int = U64_MAX) -> int:
    result = a * b
    if a < 0 or b < 0 or result > ceiling:
        raise AmountOverflowError(f"{a} × {b} leaves [0, {ceiling}]")
    return result


def checked_div(a: int, b: int) -> int:
    if b <= 0:
        raise AmountOverflowError(f"division of {a} by {b}")
    return a // b


def fee_from_bps(
    amount: int,
    bps: int,
    ceiling: int = U64_MAX,
    denominator: int = BPS_DENOMINATOR,
) -> int:
    """Floor of amount × bps / denominator. Overflow of the product raises."""
    return checked_mul(amount, bps, ceiling) // denominator


class FeeCalculator:
    """Computes link fees with the policy's arithmetic bounds.

    Usage:
        calc = FeeCalculator(resolver)
        total = calc.locked_total(link)
        per_redeem = calc.platform_fee_per_redeem(link)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        params = resolver.fee_params()
        self._ceiling = params["amount_ceiling"]
        self._bps = params["bps_denominator"]

    @property
    def bps_denominator(self) -> int:
        return self._bps

    def add(self, a: int, b: int) -> int:
        return checked_add(a, b, self._ceiling)

    def mul(self, a: int, b: int) -> int:
        return checked_mul(a, b, self._ceiling)

    def fee_from_bps(self, amount: int, bps: int) -> int:
        return fee_from_bps(amount, bps, self._ceiling, self._bps)

    def total_platform_fee(self, link: Link) -> int:
        return self.add(self.fee_from_bps(link.amount, link.fee_bps), link.network_fee)

    def fee_to_redeem(self, link: Link) -> int:
        """Fixed per-redemption fee: base + rent."""
        return self.add(link.base_fee_to_redeem, link.rent_fee_to_redeem)

    def total_redemption_fee_budget(self, link: Link) -> int:
        return self.mul(self.fee_to_redeem(link), link.max_num_redemptions)

    def locked_total(self, link: Link) -> int:
        """Everything the owner locks into escrow at creation."""
        return self.add(
            self.add(link.amount, self.total_platform_fee(link)),
            self.total_redemption_fee_budget(link),
        )

    def platform_fee_per_redeem(self, link: Link) -> int:
        return checked_div(
            self.fee_from_bps(link.amount, link.fee_bps),
            link.max_num_redemptions,
        )
