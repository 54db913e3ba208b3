"""Tests for the link state machine — proves lifecycle guards are fail-closed."""

import pytest
from datetime import datetime, timedelta, timezone

from cashlink.lifecycle.state_machine import LinkStateMachine
from cashlink.models.errors import ErrorCode, LinkStateError
from cashlink.models.link import DistributionType, Link, LinkState


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _link(state: LinkState = LinkState.INITIALIZED, **overrides) -> Link:
    params = dict(
        link_id="link_sm",
        authority="svc",
        owner="alice",
        amount=1000,
        fee_bps=0,
        network_fee=0,
        base_fee_to_redeem=0,
        rent_fee_to_redeem=0,
        distribution_type=DistributionType.FIXED,
        max_num_redemptions=4,
        remaining_amount=1000,
        state=state,
    )
    params.update(overrides)
    return Link(**params)


class TestTransitions:
    def test_happy_path(self) -> None:
        link = _link(LinkState.UNINITIALIZED)
        for target in (
            LinkState.INITIALIZED,
            LinkState.REDEEMING,
            LinkState.REDEEMING,
            LinkState.REDEEMED,
            LinkState.CLOSED,
        ):
            LinkStateMachine.apply(link, target, NOW)
        assert link.state == LinkState.CLOSED

    def test_cannot_skip_initialization(self) -> None:
        link = _link(LinkState.UNINITIALIZED)
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.apply(link, LinkState.REDEEMING, NOW)
        assert exc.value.code == ErrorCode.INVALID_TRANSITION
        assert link.state == LinkState.UNINITIALIZED

    def test_cannot_close_active_link(self) -> None:
        with pytest.raises(LinkStateError):
            LinkStateMachine.apply(_link(LinkState.REDEEMING), LinkState.CLOSED, NOW)

    def test_canceled_cannot_be_redeemed(self) -> None:
        with pytest.raises(LinkStateError):
            LinkStateMachine.apply(_link(LinkState.CANCELED), LinkState.REDEEMED, NOW)

    def test_only_closed_is_terminal(self) -> None:
        terminal = [s for s in LinkState if LinkStateMachine.is_terminal(s)]
        assert terminal == [LinkState.CLOSED]

    def test_valid_transitions_from_initialized(self) -> None:
        assert LinkStateMachine.valid_transitions(LinkState.INITIALIZED) == {
            LinkState.REDEEMING,
            LinkState.REDEEMED,
            LinkState.CANCELED,
            LinkState.EXPIRED,
        }


class TestTimestamps:
    def test_initialize_sets_created(self) -> None:
        link = _link(LinkState.UNINITIALIZED)
        LinkStateMachine.apply(link, LinkState.INITIALIZED, NOW)
        assert link.created_utc == NOW

    def test_partial_redemption_sets_last_redeemed_only(self) -> None:
        link = _link()
        LinkStateMachine.apply(link, LinkState.REDEEMING, NOW)
        assert link.last_redeemed_utc == NOW
        assert link.redeemed_utc is None

    def test_full_redemption_sets_both(self) -> None:
        link = _link(LinkState.REDEEMING)
        LinkStateMachine.apply(link, LinkState.REDEEMED, NOW)
        assert link.last_redeemed_utc == NOW
        assert link.redeemed_utc == NOW

    @pytest.mark.parametrize("target, attr", [
        (LinkState.CANCELED, "canceled_utc"),
        (LinkState.EXPIRED, "expired_utc"),
    ])
    def test_release_timestamps(self, target: LinkState, attr: str) -> None:
        link = _link()
        LinkStateMachine.apply(link, target, NOW)
        assert getattr(link, attr) == NOW


class TestRedeemGuard:
    @pytest.mark.parametrize("state, code", [
        (LinkState.UNINITIALIZED, ErrorCode.ACCOUNT_NOT_INITIALIZED),
        (LinkState.REDEEMED, ErrorCode.ACCOUNT_ALREADY_REDEEMED),
        (LinkState.CANCELED, ErrorCode.ACCOUNT_ALREADY_CANCELED),
        (LinkState.EXPIRED, ErrorCode.CASHLINK_EXPIRED),
        (LinkState.CLOSED, ErrorCode.ACCOUNT_ALREADY_CLOSED),
    ])
    def test_inactive_states(self, state: LinkState, code: ErrorCode) -> None:
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_redeemable(_link(state), NOW)
        assert exc.value.code == code

    def test_active_link_passes(self) -> None:
        LinkStateMachine.require_redeemable(_link(), NOW)
        LinkStateMachine.require_redeemable(_link(LinkState.REDEEMING), NOW)

    def test_expiry_boundary_is_inclusive(self) -> None:
        link = _link(expires_utc=NOW)
        LinkStateMachine.require_redeemable(link, NOW)
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_redeemable(link, NOW + timedelta(seconds=1))
        assert exc.value.code == ErrorCode.CASHLINK_EXPIRED

    def test_max_redemptions(self) -> None:
        link = _link(LinkState.REDEEMING, total_redemptions=4)
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_redeemable(link, NOW)
        assert exc.value.code == ErrorCode.MAX_REDEMPTIONS_REACHED

    def test_nothing_remaining(self) -> None:
        link = _link(LinkState.REDEEMING, total_redemptions=1, remaining_amount=0)
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_redeemable(link, NOW)
        assert exc.value.code == ErrorCode.NO_REMAINING_AMOUNT

    def test_expiry_checked_before_counters(self) -> None:
        link = _link(
            LinkState.REDEEMING, total_redemptions=4,
            expires_utc=NOW - timedelta(days=1),
        )
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_redeemable(link, NOW)
        assert exc.value.code == ErrorCode.CASHLINK_EXPIRED


class TestCancelExpireGuards:
    def test_cancel_after_redemption_blocked_by_link_flag(self) -> None:
        link = _link(
            LinkState.REDEEMING, total_redemptions=1,
            allow_cancel_after_redemption=False,
        )
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_cancelable(link)
        assert exc.value.code == ErrorCode.CANCEL_NOT_ALLOWED_AFTER_REDEMPTION

    def test_cancel_canceled_link(self) -> None:
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_cancelable(_link(LinkState.CANCELED))
        assert exc.value.code == ErrorCode.ACCOUNT_ALREADY_CANCELED

    def test_expire_needs_passed_expiry(self) -> None:
        link = _link(expires_utc=NOW + timedelta(days=1))
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_expirable(link, NOW)
        assert exc.value.code == ErrorCode.CASHLINK_NOT_EXPIRED
        LinkStateMachine.require_expirable(link, NOW + timedelta(days=2))


class TestCloseGuard:
    @pytest.mark.parametrize("state", [LinkState.INITIALIZED, LinkState.REDEEMING])
    def test_active_not_closable(self, state: LinkState) -> None:
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_closable(_link(state), True)
        assert exc.value.code == ErrorCode.ACCOUNT_NOT_CLOSABLE

    def test_closed_twice(self) -> None:
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_closable(_link(LinkState.CLOSED), True)
        assert exc.value.code == ErrorCode.ACCOUNT_ALREADY_CLOSED

    def test_canceled_with_redemptions(self) -> None:
        link = _link(LinkState.CANCELED, total_redemptions=2)
        with pytest.raises(LinkStateError) as exc:
            LinkStateMachine.require_closable(link, True)
        assert exc.value.code == ErrorCode.ACCOUNT_HAS_REDEMPTIONS
        LinkStateMachine.require_closable(link, False)

    @pytest.mark.parametrize("state", [
        LinkState.REDEEMED, LinkState.CANCELED, LinkState.EXPIRED,
    ])
    def test_released_states_closable(self, state: LinkState) -> None:
        LinkStateMachine.require_closable(_link(state), True)
