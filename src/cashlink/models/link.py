"""Link models — the escrow record, its lifecycle states, and redemption records.

All amounts are integers in the mint's smallest unit. No floats in finance.

Invariants enforced around these models:
- remaining_amount + sum(amount_to_redeem) == amount
- total_redemptions <= max_num_redemptions
- total_weight_ppm <= 1_000_000 (Weighted links only)
- Lifecycle is a strict state machine (no skipped or repeated terminal states)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from cashlink.models.errors import ErrorCode, LinkStateError


LINK_SCHEMA_VERSION = 1


class LinkState(str, enum.Enum):
    """Lifecycle state of a link.

    State machine:
        UNINITIALIZED → INITIALIZED
        INITIALIZED → REDEEMING → ... → REDEEMED
        INITIALIZED | REDEEMING → CANCELED
        INITIALIZED | REDEEMING → EXPIRED
        REDEEMED | CANCELED | EXPIRED → CLOSED
    """
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    REDEEMING = "redeeming"
    REDEEMED = "redeemed"
    CANCELED = "canceled"
    EXPIRED = "expired"
    CLOSED = "closed"


class DistributionType(str, enum.Enum):
    """How a link's amount is split across redemptions."""
    FIXED = "fixed"
    RANDOM = "random"
    WEIGHTED = "weighted"
    EQUAL = "equal"


# Valid link state transitions
LINK_TRANSITIONS: Dict[LinkState, frozenset] = {
    LinkState.UNINITIALIZED: frozenset({LinkState.INITIALIZED}),
    LinkState.INITIALIZED: frozenset({
        LinkState.REDEEMING,
        LinkState.REDEEMED,
        LinkState.CANCELED,
        LinkState.EXPIRED,
    }),
    LinkState.REDEEMING: frozenset({
        LinkState.REDEEMING,
        LinkState.REDEEMED,
        LinkState.CANCELED,
        LinkState.EXPIRED,
    }),
    LinkState.REDEEMED: frozenset({LinkState.CLOSED}),
    LinkState.CANCELED: frozenset({LinkState.CLOSED}),
    LinkState.EXPIRED: frozenset({LinkState.CLOSED}),
    LinkState.CLOSED: frozenset(),
}


@dataclass
class Link:
    """A sender-funded, possibly multi-redemption payment drop.

    Mutable — the engine updates balances and counters on every
    redemption. State changes go through transition_to().
    """
    link_id: str
    authority: str
    owner: str
    amount: int
    fee_bps: int
    network_fee: int
    base_fee_to_redeem: int
    rent_fee_to_redeem: int
    distribution_type: DistributionType
    max_num_redemptions: int
    mint: Optional[str] = None
    remaining_amount: int = 0
    total_redemptions: int = 0
    min_amount: int = 1
    total_weight_ppm: int = 0
    pass_key: Optional[str] = None
    fingerprint_enabled: bool = False
    track_claimants: bool = False
    allow_cancel_after_redemption: bool = True
    state: LinkState = LinkState.UNINITIALIZED
    swept_amount: int = 0
    schema_version: int = LINK_SCHEMA_VERSION
    created_utc: Optional[datetime] = None
    last_redeemed_utc: Optional[datetime] = None
    redeemed_utc: Optional[datetime] = None
    canceled_utc: Optional[datetime] = None
    expired_utc: Optional[datetime] = None
    closed_utc: Optional[datetime] = None
    expires_utc: Optional[datetime] = None

    @property
    def is_pass_gated(self) -> bool:
        return self.pass_key is not None

    @property
    def redemptions_remaining(self) -> int:
        return self.max_num_redemptions - self.total_redemptions

    @property
    def redeemed_total(self) -> int:
        """Sum of amounts paid to recipients so far."""
        return self.amount - self.remaining_amount

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_utc is not None and now > self.expires_utc

    def transition_to(self, new_state: LinkState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = LINK_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise LinkStateError(
                ErrorCode.INVALID_TRANSITION,
                f"Invalid link transition: {self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}",
            )
        self.state = new_state


@dataclass(frozen=True)
class RedemptionRecord:
    """Immutable record of one claim, kept when a link tracks claimants."""
    link_id: str
    claimant: str
    amount: int
    redeemed_utc: datetime


@dataclass(frozen=True)
class FingerprintRecord:
    """Write-once dedup marker for a (link, device/session token) pair."""
    link_id: str
    fingerprint: str
    created_utc: datetime

    @staticmethod
    def normalize(token: str) -> str:
        return token.strip().lower()


@dataclass(frozen=True)
class Transfer:
    """A single value movement performed by the engine."""
    source: str
    destination: str
    amount: int
    mint: Optional[str]
    memo: str = ""


@dataclass(frozen=True)
class RedemptionBreakdown:
    """Full accounting of a single redemption.

    Published with every redemption so each fee share is auditable.

    Invariant: platform_fee + referrer_fee + referee_fee == platform_fee_per_redeem
    Invariant: total_owed == amount_to_redeem + total_fee_to_redeem
    """
    amount_to_redeem: int
    platform_fee_per_redeem: int
    platform_fee: int
    referrer_fee: int
    referee_fee: int
    base_fee: int
    rent_fee: int
    network_fee: int
    total_fee_to_redeem: int
    total_owed: int
    swept_to_owner: int
    fully_redeemed: bool
    redemption_number: int
    transfers: tuple[Transfer, ...] = field(default_factory=tuple)
    min_possible: Optional[int] = None
    max_possible: Optional[int] = None
