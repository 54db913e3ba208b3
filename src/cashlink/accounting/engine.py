"""Redemption accounting engine — moves value for every link operation.

Creation locks the full obligation up front:

    locked_total = amount + total_platform_fee + total_redemption_fee_budget

Each redemption pays the recipient and the fee sinks out of that escrow:

    amount_to_redeem        from the link's distribution policy
    platform_fee_per_redeem = fee_from_bps(amount, fee_bps) // max_num_redemptions
    total_fee_to_redeem     = platform_fee_per_redeem + base + rent (+ network_fee on the first claim)
    total_owed              = amount_to_redeem + total_fee_to_redeem

Platform fee split with a referral:
    referrer_fee = fee_from_bps(platform_fee_per_redeem, referrer_fee_bps) → referrer
    referee_fee  = fee_from_bps(platform_fee_per_redeem, referee_fee_bps)  → link owner
    platform_fee = platform_fee_per_redeem - referrer_fee - referee_fee    → platform sink

The split only happens when referrer_fee_bps is given; a referee share on
its own leaves the whole platform fee with the platform sink.

Network, base and rent portions go to the fee-payer sink. Rent is not
charged when the recipient already holds an account for the mint.

When the link is fully redeemed, whatever is left in escrow (indivisible
remainders, skipped rent, unallocated weight) is swept to the owner and
the escrow is closed. Cancel and expiry refund remaining_amount and sweep
the unused fee budget the same way.

Invariants:
- remaining_amount + Σ amount_to_redeem == amount
- total_redemptions <= max_num_redemptions
- platform_fee + referrer_fee + referee_fee == platform_fee_per_redeem
- the escrow is released exactly once
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from cashlink.accounting.distribution import DistributionStrategy
from cashlink.accounting.fees import FeeCalculator, checked_sub
from cashlink.accounting.ledger import ValueLedger, escrow_account, storage_account
from cashlink.crypto.seed_source import SeedSource
from cashlink.lifecycle.state_machine import LinkStateMachine
from cashlink.models.errors import (
    AuthorizationError,
    ConfigurationError,
    DedupError,
    DistributionError,
    ErrorCode,
    FundingError,
    ReferralError,
)
from cashlink.models.link import (
    DistributionType,
    Link,
    LinkState,
    RedemptionBreakdown,
    Transfer,
)
from cashlink.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class EscrowRelease:
    """What a cancel or expiry returned to the link owner."""
    refunded: int
    swept: int
    transfers: tuple[Transfer, ...] = ()


class RedemptionEngine:
    """Runs link creation, redemption, cancel, expiry and close against a ledger.

    The engine mutates the Link it is given. Callers that need
    all-or-nothing semantics restore the link themselves on failure;
    ledger movements are undone by the ledger's transaction scope.

    Usage:
        engine = RedemptionEngine(resolver, ledger, LocalSeedSource())
        link = engine.create_link("link_1", authority="svc", owner="alice", ...)
        breakdown = engine.redeem(link, caller="svc", recipient="bob")
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: ValueLedger,
        seed_source: SeedSource,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._seeds = seed_source
        self._fees = FeeCalculator(resolver)
        self._strategy = DistributionStrategy(resolver)

    @property
    def fees(self) -> FeeCalculator:
        return self._fees

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_link(
        self,
        link_id: str,
        authority: str,
        owner: str,
        amount: int,
        fee_bps: int,
        network_fee: int,
        base_fee_to_redeem: int,
        rent_fee_to_redeem: int,
        distribution_type: DistributionType,
        max_num_redemptions: int,
        mint: Optional[str] = None,
        min_amount: Optional[int] = None,
        pass_key: Optional[str] = None,
        expires_in_days: Optional[int] = None,
        fingerprint_enabled: bool = False,
        track_claimants: bool = False,
        allow_cancel_after_redemption: bool = True,
        now: Optional[datetime] = None,
    ) -> Link:
        """Validate, fund and initialize a new link.

        The fee payer pays the storage deposit; the owner locks
        locked_total into the link's escrow. Both happen or neither does.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        self._validate_init(
            amount, fee_bps, network_fee, base_fee_to_redeem, rent_fee_to_redeem,
            distribution_type, max_num_redemptions, mint, min_amount, expires_in_days,
        )

        expires_utc = None
        if expires_in_days is not None:
            expires_utc = now + timedelta(
                seconds=expires_in_days * self._resolver.seconds_per_day()
            )

        link = Link(
            link_id=link_id,
            authority=authority,
            owner=owner,
            amount=amount,
            fee_bps=fee_bps,
            network_fee=network_fee,
            base_fee_to_redeem=base_fee_to_redeem,
            rent_fee_to_redeem=rent_fee_to_redeem,
            distribution_type=distribution_type,
            max_num_redemptions=max_num_redemptions,
            mint=mint,
            remaining_amount=amount,
            min_amount=(
                min_amount if min_amount is not None
                else self._resolver.default_min_amount()
            ),
            pass_key=pass_key,
            fingerprint_enabled=fingerprint_enabled,
            track_claimants=track_claimants,
            allow_cancel_after_redemption=allow_cancel_after_redemption,
            expires_utc=expires_utc,
        )
        locked_total = self._fees.locked_total(link)

        with self._ledger.transaction():
            deposit = self._resolver.link_storage_deposit()
            self._ledger.open_escrow(storage_account(link_id))
            if deposit > 0:
                self._ledger.transfer(
                    self._resolver.fee_payer_account(),
                    storage_account(link_id),
                    deposit,
                    memo="storage_deposit",
                )
            self._ledger.open_escrow(escrow_account(link_id), mint)
            self._ledger.transfer(
                owner, escrow_account(link_id), locked_total, mint, memo="lock",
            )

        LinkStateMachine.apply(link, LinkState.INITIALIZED, now)
        return link

    def _validate_init(
        self,
        amount: int,
        fee_bps: int,
        network_fee: int,
        base_fee_to_redeem: int,
        rent_fee_to_redeem: int,
        distribution_type: DistributionType,
        max_num_redemptions: int,
        mint: Optional[str],
        min_amount: Optional[int],
        expires_in_days: Optional[int],
    ) -> None:
        if amount <= 0:
            raise ConfigurationError(
                ErrorCode.INVALID_AMOUNT, f"amount must be positive, got {amount}",
            )
        if max_num_redemptions <= 0:
            raise ConfigurationError(
                ErrorCode.INVALID_NUMBER_OF_REDEMPTIONS,
                f"max_num_redemptions must be positive, got {max_num_redemptions}",
            )
        if not 0 <= fee_bps <= self._fees.bps_denominator:
            raise ConfigurationError(
                ErrorCode.INVALID_FEE_BPS,
                f"fee_bps must be in [0, {self._fees.bps_denominator}], got {fee_bps}",
            )
        for name, value in (
            ("network_fee", network_fee),
            ("base_fee_to_redeem", base_fee_to_redeem),
            ("rent_fee_to_redeem", rent_fee_to_redeem),
        ):
            if value < 0:
                raise ConfigurationError(
                    ErrorCode.INVALID_AMOUNT, f"{name} cannot be negative, got {value}",
                )
        if mint is not None and not mint.strip():
            raise ConfigurationError(ErrorCode.INVALID_MINT, "mint cannot be blank")
        if min_amount is not None and min_amount <= 0:
            raise ConfigurationError(
                ErrorCode.INVALID_AMOUNT,
                f"min_amount must be positive, got {min_amount}",
            )
        if expires_in_days is not None and expires_in_days <= 0:
            raise ConfigurationError(
                ErrorCode.INVALID_EXPIRY_IN_DAYS,
                f"expires_in_days must be positive, got {expires_in_days}",
            )
        self._strategy.validate_configuration(
            distribution_type, amount, max_num_redemptions, min_amount,
        )

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def redeem(
        self,
        link: Link,
        caller: str,
        recipient: str,
        pass_key: Optional[str] = None,
        referrer: Optional[str] = None,
        referrer_fee_bps: Optional[int] = None,
        referee_fee_bps: Optional[int] = None,
        weight_ppm: Optional[int] = None,
        fingerprint: Optional[str] = None,
        seed: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RedemptionBreakdown:
        """Pay one redemption out of the link's escrow.

        Preconditions are checked in a fixed order and the first failure
        wins. Nothing moves unless every precondition holds.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        self._check_authority(link, caller)
        self._check_pass_key(link, pass_key)
        LinkStateMachine.require_redeemable(link, now)
        if link.fingerprint_enabled and not (fingerprint and fingerprint.strip()):
            raise DedupError(
                ErrorCode.FINGERPRINT_REQUIRED,
                f"Link {link.link_id} requires a fingerprint",
            )
        self._check_referral(referrer, referrer_fee_bps, referee_fee_bps)

        quote = self._strategy.quote(
            link, weight_ppm=weight_ppm, seed=seed, draw_seed=self._draw_seed,
        )
        amount = quote.amount

        remaining = checked_sub(link.remaining_amount, amount)
        total_redemptions = link.total_redemptions + 1

        platform_per_redeem = self._fees.platform_fee_per_redeem(link)
        rent_fee = (
            0 if self._ledger.account_exists(recipient, link.mint)
            else link.rent_fee_to_redeem
        )
        network_fee = link.network_fee if total_redemptions == 1 else 0
        sink_fee = self._fees.add(
            self._fees.add(link.base_fee_to_redeem, rent_fee), network_fee,
        )
        total_fee = self._fees.add(platform_per_redeem, sink_fee)
        total_owed = self._fees.add(amount, total_fee)

        escrow = escrow_account(link.link_id)
        available = self._ledger.balance(escrow, link.mint)
        if available < total_owed:
            raise FundingError(
                ErrorCode.INSUFFICIENT_SETTLEMENT_FUNDS,
                f"Escrow {escrow} holds {available}, redemption owes {total_owed}",
            )

        referrer_fee = 0
        referee_fee = 0
        if referrer_fee_bps is not None:
            referrer_fee = self._fees.fee_from_bps(platform_per_redeem, referrer_fee_bps)
            referee_fee = self._fees.fee_from_bps(platform_per_redeem, referee_fee_bps or 0)
        platform_fee = checked_sub(
            checked_sub(platform_per_redeem, referrer_fee), referee_fee,
        )

        transfers: List[Transfer] = []
        with self._ledger.transaction():
            self._pay(transfers, escrow, recipient, amount, link.mint, "redemption")
            self._pay(
                transfers, escrow, self._resolver.platform_fee_account(),
                platform_fee, link.mint, "platform_fee",
            )
            if referrer is not None:
                self._pay(transfers, escrow, referrer, referrer_fee, link.mint, "referrer_fee")
            self._pay(transfers, escrow, link.owner, referee_fee, link.mint, "referee_fee")
            self._pay(
                transfers, escrow, self._resolver.fee_payer_account(),
                sink_fee, link.mint, "redemption_fees",
            )

            link.remaining_amount = remaining
            link.total_redemptions = total_redemptions
            link.total_weight_ppm = quote.total_weight_ppm

            swept = 0
            fully_redeemed = self.is_fully_redeemed(link)
            if fully_redeemed:
                swept = self._sweep_and_close(link, transfers)
                LinkStateMachine.apply(link, LinkState.REDEEMED, now)
            else:
                LinkStateMachine.apply(link, LinkState.REDEEMING, now)

        return RedemptionBreakdown(
            amount_to_redeem=amount,
            platform_fee_per_redeem=platform_per_redeem,
            platform_fee=platform_fee,
            referrer_fee=referrer_fee,
            referee_fee=referee_fee,
            base_fee=link.base_fee_to_redeem,
            rent_fee=rent_fee,
            network_fee=network_fee,
            total_fee_to_redeem=total_fee,
            total_owed=total_owed,
            swept_to_owner=swept,
            fully_redeemed=fully_redeemed,
            redemption_number=total_redemptions,
            transfers=tuple(transfers),
            min_possible=quote.min_possible,
            max_possible=quote.max_possible,
        )

    def is_fully_redeemed(self, link: Link) -> bool:
        """Completion predicate, evaluated after a redemption is applied."""
        if link.total_redemptions >= link.max_num_redemptions:
            return True
        if link.remaining_amount == 0:
            return True
        if self._resolver.fully_redeemed_rule() == "exhausted_only":
            return False
        # Dust: the remainder cannot cover min_amount for every open slot.
        return link.remaining_amount < link.min_amount * link.redemptions_remaining

    # ------------------------------------------------------------------
    # Cancel / expire / close
    # ------------------------------------------------------------------

    def cancel(
        self,
        link: Link,
        caller: str,
        pass_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EscrowRelease:
        """Refund the link to its owner and mark it CANCELED."""
        if now is None:
            now = datetime.now(timezone.utc)
        self._check_authority(link, caller)
        self._check_pass_key(link, pass_key)
        LinkStateMachine.require_cancelable(link)

        release = self._release(link)
        LinkStateMachine.apply(link, LinkState.CANCELED, now)
        return release

    def expire(self, link: Link, now: Optional[datetime] = None) -> EscrowRelease:
        """Refund a link whose expiry has passed and mark it EXPIRED."""
        if now is None:
            now = datetime.now(timezone.utc)
        LinkStateMachine.require_expirable(link, now)

        release = self._release(link)
        LinkStateMachine.apply(link, LinkState.EXPIRED, now)
        return release

    def close(
        self,
        link: Link,
        caller: str,
        destination: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Reclaim the link's storage deposit to destination. Returns the amount."""
        if now is None:
            now = datetime.now(timezone.utc)
        self._check_authority(link, caller)
        LinkStateMachine.require_closable(
            link, self._resolver.close_requires_no_redemptions(),
        )

        storage = storage_account(link.link_id)
        with self._ledger.transaction():
            reclaimed = self._ledger.balance(storage)
            if reclaimed > 0:
                self._ledger.transfer(storage, destination, reclaimed, memo="reclaim")
            self._ledger.close_escrow(storage)
        LinkStateMachine.apply(link, LinkState.CLOSED, now)
        return reclaimed

    def _release(self, link: Link) -> EscrowRelease:
        escrow = escrow_account(link.link_id)
        transfers: List[Transfer] = []
        with self._ledger.transaction():
            available = self._ledger.balance(escrow, link.mint)
            if available < link.remaining_amount:
                raise FundingError(
                    ErrorCode.INSUFFICIENT_SETTLEMENT_FUNDS,
                    f"Escrow {escrow} holds {available}, "
                    f"refund owes {link.remaining_amount}",
                )
            self._pay(
                transfers, escrow, link.owner, link.remaining_amount, link.mint, "refund",
            )
            swept = self._sweep_and_close(link, transfers)
        return EscrowRelease(
            refunded=link.remaining_amount,
            swept=swept,
            transfers=tuple(transfers),
        )

    def _sweep_and_close(self, link: Link, transfers: List[Transfer]) -> int:
        escrow = escrow_account(link.link_id)
        leftover = self._ledger.balance(escrow, link.mint)
        self._pay(transfers, escrow, link.owner, leftover, link.mint, "sweep")
        self._ledger.close_escrow(escrow, link.mint)
        link.swept_amount = self._fees.add(link.swept_amount, leftover)
        return leftover

    # ------------------------------------------------------------------
    # Guards and helpers
    # ------------------------------------------------------------------

    def _draw_seed(self) -> int:
        try:
            return self._seeds.next_seed()
        except Exception as exc:
            raise DistributionError(
                ErrorCode.SEED_UNAVAILABLE,
                f"Seed source failed: {exc}",
            ) from exc

    def _pay(
        self,
        transfers: List[Transfer],
        source: str,
        destination: str,
        amount: int,
        mint: Optional[str],
        memo: str,
    ) -> None:
        """Transfer when there is something to move; zero shares move nothing."""
        if amount > 0:
            transfers.append(
                self._ledger.transfer(source, destination, amount, mint, memo=memo)
            )

    @staticmethod
    def _check_authority(link: Link, caller: str) -> None:
        if caller != link.authority:
            raise AuthorizationError(
                ErrorCode.INVALID_AUTHORITY_ID,
                f"{caller} is not the authority of link {link.link_id}",
            )

    @staticmethod
    def _check_pass_key(link: Link, pass_key: Optional[str]) -> None:
        if not link.is_pass_gated:
            if pass_key is not None:
                raise AuthorizationError(
                    ErrorCode.INVALID_PASS_KEY,
                    f"Link {link.link_id} is not pass-key gated",
                )
            return
        if pass_key is None or not hmac.compare_digest(
            pass_key.encode("utf-8"), link.pass_key.encode("utf-8"),
        ):
            raise AuthorizationError(
                ErrorCode.INVALID_PASS_KEY,
                f"Pass key does not match link {link.link_id}",
            )

    def _check_referral(
        self,
        referrer: Optional[str],
        referrer_fee_bps: Optional[int],
        referee_fee_bps: Optional[int],
    ) -> None:
        if referrer_fee_bps is None:
            return
        if referrer is None:
            raise ReferralError(
                ErrorCode.REFERRER_REQUIRED,
                "referral fees given without a referrer",
            )
        referrer_bps = referrer_fee_bps
        referee_bps = referee_fee_bps or 0
        if (
            referrer_bps < 0
            or referee_bps < 0
            or referrer_bps + referee_bps > self._fees.bps_denominator
        ):
            raise ReferralError(
                ErrorCode.INVALID_REFERRAL_FEES,
                f"referrer ({referrer_bps}) + referee ({referee_bps}) bps must be "
                f"non-negative and at most {self._fees.bps_denominator}",
            )
