"""Link state machine — lifecycle guards and transitions.

Link lifecycle:
    UNINITIALIZED → INITIALIZED → REDEEMING → ... → REDEEMED → CLOSED
    INITIALIZED | REDEEMING → CANCELED → CLOSED
    INITIALIZED | REDEEMING → EXPIRED → CLOSED

State semantics:
- INITIALIZED: escrow funded, no redemption yet.
- REDEEMING: at least one redemption, more possible.
- REDEEMED: fully redeemed; escrow swept and closed.
- CANCELED: sender pulled the link; escrow refunded and closed.
- EXPIRED: expiry passed; escrow refunded and closed.
- CLOSED: terminal; storage deposit reclaimed.

Fail-closed: every guard raises a LinkStateError carrying the specific
error code for the state the link is in. There are no implicit transitions.
"""

from __future__ import annotations

from datetime import datetime

from cashlink.models.errors import ErrorCode, LinkStateError
from cashlink.models.link import LINK_TRANSITIONS, Link, LinkState


# State → error raised when an operation meets a link that cannot proceed
_BLOCKED: dict[LinkState, tuple[ErrorCode, str]] = {
    LinkState.UNINITIALIZED: (ErrorCode.ACCOUNT_NOT_INITIALIZED, "is not initialized"),
    LinkState.CANCELED: (ErrorCode.ACCOUNT_ALREADY_CANCELED, "is already canceled"),
    LinkState.REDEEMED: (ErrorCode.ACCOUNT_ALREADY_REDEEMED, "is already fully redeemed"),
    LinkState.EXPIRED: (ErrorCode.CASHLINK_EXPIRED, "has expired"),
    LinkState.CLOSED: (ErrorCode.ACCOUNT_ALREADY_CLOSED, "is already closed"),
}

_ACTIVE = (LinkState.INITIALIZED, LinkState.REDEEMING)
_CLOSABLE = (LinkState.REDEEMED, LinkState.CANCELED, LinkState.EXPIRED)


class LinkStateMachine:
    """Validates and applies link state transitions.

    Pure computation: guards and state changes only. Value movement,
    event logging and persistence are handled by the engine and service.
    """

    @staticmethod
    def require_active(link: Link) -> None:
        """Raise unless the link is INITIALIZED or REDEEMING."""
        if link.state in _ACTIVE:
            return
        code, reason = _BLOCKED[link.state]
        raise LinkStateError(code, f"Link {link.link_id} {reason}")

    @staticmethod
    def require_redeemable(link: Link, now: datetime) -> None:
        """State and expiry guards for a redemption, in precondition order."""
        LinkStateMachine.require_active(link)
        if link.is_expired_at(now):
            raise LinkStateError(
                ErrorCode.CASHLINK_EXPIRED,
                f"Link {link.link_id} expired at {link.expires_utc.isoformat()}",
            )
        if link.total_redemptions >= link.max_num_redemptions:
            raise LinkStateError(
                ErrorCode.MAX_REDEMPTIONS_REACHED,
                f"Link {link.link_id} has used all {link.max_num_redemptions} redemptions",
            )
        if link.remaining_amount <= 0:
            raise LinkStateError(
                ErrorCode.NO_REMAINING_AMOUNT,
                f"Link {link.link_id} has nothing left to redeem",
            )

    @staticmethod
    def require_cancelable(link: Link) -> None:
        LinkStateMachine.require_active(link)
        if not link.allow_cancel_after_redemption and link.total_redemptions > 0:
            raise LinkStateError(
                ErrorCode.CANCEL_NOT_ALLOWED_AFTER_REDEMPTION,
                f"Link {link.link_id} was created without cancel-after-redemption "
                f"and has {link.total_redemptions} redemption(s)",
            )

    @staticmethod
    def require_expirable(link: Link, now: datetime) -> None:
        LinkStateMachine.require_active(link)
        if not link.is_expired_at(now):
            when = link.expires_utc.isoformat() if link.expires_utc else "never"
            raise LinkStateError(
                ErrorCode.CASHLINK_NOT_EXPIRED,
                f"Link {link.link_id} has not expired (expires {when})",
            )

    @staticmethod
    def require_closable(link: Link, close_requires_no_redemptions: bool) -> None:
        if link.state == LinkState.CLOSED:
            raise LinkStateError(
                ErrorCode.ACCOUNT_ALREADY_CLOSED,
                f"Link {link.link_id} is already closed",
            )
        if link.state not in _CLOSABLE:
            raise LinkStateError(
                ErrorCode.ACCOUNT_NOT_CLOSABLE,
                f"Link {link.link_id} is {link.state.value}; only redeemed, "
                f"canceled or expired links can be closed",
            )
        if (
            close_requires_no_redemptions
            and link.state == LinkState.CANCELED
            and link.total_redemptions > 0
        ):
            raise LinkStateError(
                ErrorCode.ACCOUNT_HAS_REDEMPTIONS,
                f"Canceled link {link.link_id} has {link.total_redemptions} "
                f"redemption(s) and cannot be closed",
            )

    @staticmethod
    def apply(link: Link, target: LinkState, now: datetime) -> None:
        """Transition the link and stamp the matching timestamp."""
        link.transition_to(target)
        if target == LinkState.INITIALIZED:
            link.created_utc = now
        elif target == LinkState.REDEEMING:
            link.last_redeemed_utc = now
        elif target == LinkState.REDEEMED:
            link.last_redeemed_utc = now
            link.redeemed_utc = now
        elif target == LinkState.CANCELED:
            link.canceled_utc = now
        elif target == LinkState.EXPIRED:
            link.expired_utc = now
        elif target == LinkState.CLOSED:
            link.closed_utc = now

    @staticmethod
    def is_terminal(state: LinkState) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return not LINK_TRANSITIONS.get(state)

    @staticmethod
    def valid_transitions(state: LinkState) -> set[LinkState]:
        """Return the set of valid target states from the given state."""
        return set(LINK_TRANSITIONS.get(state, frozenset()))
