"""Cash link service — unified facade for the redemption accounting engine.

This is the primary interface for programmatic access to cash links.
It orchestrates:
- Authority verification (who is calling)
- The redemption engine (fees, distribution, escrow movements)
- Claim deduplication (fingerprints, per-claimant records)
- Audit logging (event log) and persistence (state store)

Every operation is all-or-nothing. Ledger movements happen inside a
ledger transaction; in-memory mutations are undone by rollback closures.
Audit events are never silently dropped: if the event cannot be
appended, the operation is rolled back (fail-closed).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from cashlink.accounting.engine import EscrowRelease, RedemptionEngine
from cashlink.accounting.ledger import EscrowLedger, escrow_account
from cashlink.crypto.authority import AuthorityVerifier, DirectAuthority, authority_message
from cashlink.crypto.seed_source import LocalSeedSource, SeedSource
from cashlink.lifecycle.claims import ClaimRegistry
from cashlink.models.errors import (
    CashLinkError,
    ConfigurationError,
    ErrorCode,
    LinkStateError,
)
from cashlink.models.link import (
    DistributionType,
    Link,
    RedemptionBreakdown,
    RedemptionRecord,
)
from cashlink.persistence.event_log import EventKind, EventLog, EventRecord
from cashlink.persistence.state_store import StateStore
from cashlink.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class _AuditFailure(Exception):
    """Raised inside a ledger transaction to unwind it when audit fails."""


class CashLinkService:
    """Unified cash link facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = CashLinkService(resolver)

        service.fund_account("alice", 50_000)
        service.fund_account("fee_payer", 10_000)
        result = service.init_link(
            authority="svc", owner="alice", amount=10_000, fee_bps=100,
            network_fee=50, base_fee_to_redeem=10, rent_fee_to_redeem=5,
            distribution_type="fixed", max_num_redemptions=2,
        )
        link_id = result.data["link_id"]
        result = service.redeem(link_id, authority="svc", recipient="bob")

    Persistence (optional):
        service = CashLinkService(resolver, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[EscrowLedger] = None,
        seed_source: Optional[SeedSource] = None,
        authority_verifier: Optional[AuthorityVerifier] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._event_log = event_log
        self._state_store = state_store
        self._verifier = authority_verifier or DirectAuthority()

        # Load persisted state or start fresh
        if state_store is not None:
            self._links: Dict[str, Link] = state_store.load_links()
            self._claims = state_store.load_claims()
            self._ledger = ledger if ledger is not None else state_store.load_ledger()
        else:
            self._links = {}
            self._claims = ClaimRegistry()
            self._ledger = ledger if ledger is not None else EscrowLedger()

        self._engine = RedemptionEngine(
            resolver, self._ledger, seed_source or LocalSeedSource(),
        )

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0

        # Set when a StateStore write fails after the audit event is durable.
        # In-memory state stays aligned with the audit trail; the store is stale.
        self._persistence_degraded: bool = False

    @property
    def ledger(self) -> EscrowLedger:
        return self._ledger

    @property
    def engine(self) -> RedemptionEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    def fund_account(
        self,
        account: str,
        amount: int,
        mint: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Credit external value into the ledger (deposits, faucets, tests)."""
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            with self._ledger.transaction():
                self._ledger.credit(account, amount, mint)
                self._audit(
                    EventKind.ACCOUNT_FUNDED, "system",
                    {"account": account, "amount": amount, "mint": mint},
                    now,
                )
        except (ValueError, _AuditFailure) as e:
            return ServiceResult(success=False, errors=[str(e)])
        return self._committed({
            "account": account,
            "balance": self._ledger.balance(account, mint),
        })

    # ------------------------------------------------------------------
    # Link lifecycle
    # ------------------------------------------------------------------

    def init_link(
        self,
        authority: str,
        owner: str,
        amount: int,
        fee_bps: int,
        network_fee: int,
        base_fee_to_redeem: int,
        rent_fee_to_redeem: int,
        distribution_type: DistributionType | str,
        max_num_redemptions: int,
        mint: Optional[str] = None,
        min_amount: Optional[int] = None,
        pass_key: Optional[str] = None,
        expires_in_days: Optional[int] = None,
        fingerprint_enabled: bool = False,
        track_claimants: bool = False,
        allow_cancel_after_redemption: bool = True,
        link_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create, validate and fund a new link.

        The owner locks amount + platform fees + the redemption fee budget
        into the link's escrow; the fee payer pays the storage deposit.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if link_id is None:
            link_id = f"link_{uuid4().hex[:12]}"
        if link_id in self._links:
            return self._fail(CashLinkError(
                ErrorCode.LINK_ALREADY_EXISTS, f"Link ID already exists: {link_id}",
            ))

        try:
            kind = DistributionType(distribution_type)
        except ValueError:
            return self._fail(ConfigurationError(
                ErrorCode.INVALID_DISTRIBUTION_TYPE,
                f"Unknown distribution type: {distribution_type}",
            ))

        def _rollback() -> None:
            self._links.pop(link_id, None)

        try:
            with self._ledger.transaction():
                link = self._engine.create_link(
                    link_id=link_id,
                    authority=authority,
                    owner=owner,
                    amount=amount,
                    fee_bps=fee_bps,
                    network_fee=network_fee,
                    base_fee_to_redeem=base_fee_to_redeem,
                    rent_fee_to_redeem=rent_fee_to_redeem,
                    distribution_type=kind,
                    max_num_redemptions=max_num_redemptions,
                    mint=mint,
                    min_amount=min_amount,
                    pass_key=pass_key,
                    expires_in_days=expires_in_days,
                    fingerprint_enabled=fingerprint_enabled,
                    track_claimants=track_claimants,
                    allow_cancel_after_redemption=allow_cancel_after_redemption,
                    now=now,
                )
                self._links[link_id] = link
                locked_total = self._engine.fees.locked_total(link)
                self._audit(
                    EventKind.LINK_INITIALIZED, owner,
                    {
                        "link_id": link_id,
                        "authority": authority,
                        "owner": owner,
                        "mint": mint,
                        "amount": amount,
                        "locked_total": locked_total,
                        "distribution_type": kind.value,
                        "max_num_redemptions": max_num_redemptions,
                        "pass_gated": link.is_pass_gated,
                    },
                    now,
                )
        except (CashLinkError, ValueError, _AuditFailure) as e:
            _rollback()
            return self._fail(e)

        return self._committed({
            "link_id": link_id,
            "state": link.state.value,
            "locked_total": locked_total,
            "escrow_account": escrow_account(link_id),
            "expires_utc": link.expires_utc.isoformat() if link.expires_utc else None,
        })

    def redeem(
        self,
        link_id: str,
        authority: str,
        recipient: str,
        pass_key: Optional[str] = None,
        referrer: Optional[str] = None,
        referrer_fee_bps: Optional[int] = None,
        referee_fee_bps: Optional[int] = None,
        weight_ppm: Optional[int] = None,
        fingerprint: Optional[str] = None,
        seed: Optional[int] = None,
        signature: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Pay one redemption of a link to recipient."""
        if now is None:
            now = datetime.now(timezone.utc)

        try:
            link = self._get(link_id)
        except CashLinkError as e:
            return self._fail(e)
        snapshot = replace(link)
        marked_fingerprint = False
        marked_claim = False

        def _rollback() -> None:
            link.__dict__.update(snapshot.__dict__)
            if marked_fingerprint:
                self._claims.discard_fingerprint(link_id, fingerprint)
            if marked_claim:
                self._claims.discard_claim(link_id, recipient)

        try:
            caller = self._resolve_caller(authority, signature, "redeem", link)
            with self._ledger.transaction():
                breakdown = self._engine.redeem(
                    link,
                    caller=caller,
                    recipient=recipient,
                    pass_key=pass_key,
                    referrer=referrer,
                    referrer_fee_bps=referrer_fee_bps,
                    referee_fee_bps=referee_fee_bps,
                    weight_ppm=weight_ppm,
                    fingerprint=fingerprint,
                    seed=seed,
                    now=now,
                )
                if link.fingerprint_enabled:
                    self._claims.record_fingerprint(link_id, fingerprint, now)
                    marked_fingerprint = True
                if link.track_claimants:
                    self._claims.record_claim(
                        link_id, recipient, breakdown.amount_to_redeem, now,
                    )
                    marked_claim = True
                self._audit(
                    EventKind.LINK_REDEEMED, caller,
                    {
                        "link_id": link_id,
                        "recipient": recipient,
                        "referrer": referrer,
                        "state": link.state.value,
                        "remaining_amount": link.remaining_amount,
                        "breakdown": _breakdown_payload(breakdown),
                    },
                    now,
                )
        except (CashLinkError, ValueError, _AuditFailure) as e:
            _rollback()
            return self._fail(e)

        return self._committed({
            "link_id": link_id,
            "state": link.state.value,
            "amount_to_redeem": breakdown.amount_to_redeem,
            "total_fee_to_redeem": breakdown.total_fee_to_redeem,
            "remaining_amount": link.remaining_amount,
            "fully_redeemed": breakdown.fully_redeemed,
            "breakdown": breakdown,
        })

    def cancel(
        self,
        link_id: str,
        authority: str,
        pass_key: Optional[str] = None,
        signature: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Cancel a link: refund remaining_amount and unused fees to the owner."""
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            link = self._get(link_id)
        except CashLinkError as e:
            return self._fail(e)
        return self._release(
            link,
            EventKind.LINK_CANCELED,
            lambda caller: self._engine.cancel(link, caller, pass_key=pass_key, now=now),
            authority,
            signature,
            "cancel",
            now,
        )

    def expire(self, link_id: str, now: Optional[datetime] = None) -> ServiceResult:
        """Expire a link whose expiry has passed. Anyone may trigger this."""
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            link = self._get(link_id)
        except CashLinkError as e:
            return self._fail(e)
        return self._release(
            link,
            EventKind.LINK_EXPIRED,
            lambda caller: self._engine.expire(link, now=now),
            None,
            None,
            "expire",
            now,
        )

    def close(
        self,
        link_id: str,
        authority: str,
        destination: str,
        signature: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Close a settled link and reclaim its storage deposit."""
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            link = self._get(link_id)
        except CashLinkError as e:
            return self._fail(e)
        snapshot = replace(link)

        def _rollback() -> None:
            link.__dict__.update(snapshot.__dict__)

        try:
            caller = self._resolve_caller(authority, signature, "close", link)
            with self._ledger.transaction():
                reclaimed = self._engine.close(link, caller, destination, now=now)
                self._audit(
                    EventKind.LINK_CLOSED, caller,
                    {
                        "link_id": link_id,
                        "destination": destination,
                        "reclaimed": reclaimed,
                    },
                    now,
                )
        except (CashLinkError, ValueError, _AuditFailure) as e:
            _rollback()
            return self._fail(e)

        return self._committed({
            "link_id": link_id,
            "state": link.state.value,
            "reclaimed": reclaimed,
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_link(self, link_id: str) -> Optional[Link]:
        """Look up a link."""
        return self._links.get(link_id)

    def links(self) -> List[Link]:
        return list(self._links.values())

    def get_redemptions(self, link_id: str) -> List[RedemptionRecord]:
        """Per-claimant redemption records (links created with track_claimants)."""
        return self._claims.redemptions(link_id)

    def escrow_balance(self, link_id: str) -> int:
        link = self._links.get(link_id)
        mint = link.mint if link is not None else None
        return self._ledger.balance(escrow_account(link_id), mint)

    def status(self) -> dict[str, Any]:
        """Service status summary."""
        return {
            "links": {
                "total": len(self._links),
                "by_state": self._count_links_by_state(),
            },
            "escrowed": sum(
                self.escrow_balance(link.link_id) for link in self._links.values()
            ),
            "events": self._event_log.count if self._event_log is not None else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _release(
        self,
        link: Link,
        kind: EventKind,
        operation: Callable[[str], EscrowRelease],
        authority: Optional[str],
        signature: Optional[str],
        action: str,
        now: datetime,
    ) -> ServiceResult:
        """Shared cancel/expire path: refund, sweep, audit."""
        snapshot = replace(link)

        def _rollback() -> None:
            link.__dict__.update(snapshot.__dict__)

        try:
            caller = (
                self._resolve_caller(authority, signature, action, link)
                if authority is not None else "system"
            )
            with self._ledger.transaction():
                release = operation(caller)
                self._audit(
                    kind, caller,
                    {
                        "link_id": link.link_id,
                        "owner": link.owner,
                        "refunded": release.refunded,
                        "swept": release.swept,
                    },
                    now,
                )
        except (CashLinkError, ValueError, _AuditFailure) as e:
            _rollback()
            return self._fail(e)

        return self._committed({
            "link_id": link.link_id,
            "state": link.state.value,
            "refunded": release.refunded,
            "swept": release.swept,
        })

    def _get(self, link_id: str) -> Link:
        link = self._links.get(link_id)
        if link is None:
            raise LinkStateError(ErrorCode.LINK_NOT_FOUND, f"Link not found: {link_id}")
        return link

    def _resolve_caller(
        self,
        authority: str,
        signature: Optional[str],
        action: str,
        link: Link,
    ) -> str:
        message = authority_message(action, link.link_id, link.total_redemptions)
        return self._verifier.resolve(authority, signature, message)

    def _next_event_id(self) -> str:
        """ID for the next event. The counter only advances on a durable append."""
        return f"EVT-{self._event_counter + 1:08d}"

    def _audit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> None:
        """Append the audit event for an operation. Fail-closed.

        Called inside the operation's ledger transaction: raising here
        unwinds every value movement the operation made.
        """
        if self._event_log is None:
            return
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
                timestamp_utc=now,
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            raise _AuditFailure(f"Event log failure: {e}") from e
        self._event_counter += 1

    def _committed(self, data: dict[str, Any]) -> ServiceResult:
        warning = self._safe_persist_post_audit()
        if warning:
            data["persistence_warning"] = warning
        return ServiceResult(success=True, data=data)

    @staticmethod
    def _fail(error: Exception) -> ServiceResult:
        data: dict[str, Any] = {}
        if isinstance(error, CashLinkError):
            data["error_code"] = error.code.value
        return ServiceResult(success=False, errors=[str(error)], data=data)

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        NOTE: This method can raise OSError.
        """
        if self._state_store is None:
            return
        self._state_store.save(self._links, self._claims, self._ledger)

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after the audit event has been committed.

        MUST NOT rollback in-memory state: the audit trail is already
        durable. If persist fails, in-memory state remains correct
        (aligned with audit events), but the StateStore is stale.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            return f"Persistence degraded: {e}; state committed in audit trail but StateStore is stale"

    def _count_links_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for link in self._links.values():
            counts[link.state.value] = counts.get(link.state.value, 0) + 1
        return counts


def _breakdown_payload(breakdown: RedemptionBreakdown) -> dict[str, Any]:
    payload = asdict(breakdown)
    payload["transfers"] = [asdict(t) for t in breakdown.transfers]
    return payload
